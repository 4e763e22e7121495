"""MCP server package initialization"""

from feed_notifier.server.app import create_mcp_server, create_scheduler

__all__ = ["create_mcp_server", "create_scheduler"]
