"""feed_notifier - MCP Server

This module implements the MCP server using FastMCP with multi-transport support
(STDIO, SSE, and Streamable HTTP) and runs the crawl and notify schedule in the
same event loop.
"""

import asyncio
import os
import sys
from typing import Optional

import click
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from feed_notifier.config import ServerConfig, get_config
from feed_notifier.logging_config import setup_logging, logger
from feed_notifier.scheduler import Scheduler
from feed_notifier.storage.database import close_database
from feed_notifier.tools.feed_tools import FeedTools


def create_mcp_server(
    config: Optional[ServerConfig] = None,
    feed_tools: Optional[FeedTools] = None,
) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config: Optional server configuration
        feed_tools: Optional tool set (built from config if not provided)

    Returns:
        Configured FastMCP server instance
    """
    if config is None:
        config = get_config()
    if feed_tools is None:
        feed_tools = FeedTools.from_config(config)

    setup_logging(config)
    logger.info(f"Server config: {config.name} at log level {config.log_level}")

    # Configure DNS rebinding protection (disabled by default for development)
    dns_protection = os.getenv("MCP_DNS_REBINDING_PROTECTION", "false").lower() == "true"
    allowed_hosts_env = os.getenv("MCP_ALLOWED_HOSTS", "")
    allowed_hosts = [h.strip() for h in allowed_hosts_env.split(",") if h.strip()] if allowed_hosts_env else []

    logger.info(f"DNS rebinding protection: {'enabled' if dns_protection else 'disabled'}")
    if dns_protection and allowed_hosts:
        logger.info(f"Allowed hosts: {allowed_hosts}")

    mcp_server = FastMCP(
        config.name or "feed_notifier",
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=dns_protection,
            allowed_hosts=allowed_hosts
        )
    )

    register_tools(mcp_server, feed_tools)

    logger.info("Server initialization complete")
    return mcp_server


def register_tools(mcp_server: FastMCP, feed_tools: FeedTools) -> None:
    """Register all feed tools with the MCP server."""
    for tool_func in feed_tools.tools:
        tool_name = tool_func.__name__
        mcp_server.tool(name=tool_name)(tool_func)
        logger.info(f"Registered feed tool: {tool_name}")

    logger.info(f"Server '{mcp_server.name}' initialized with {len(feed_tools.tools)} tools")


def create_scheduler(config: ServerConfig, feed_tools: FeedTools) -> Scheduler:
    """Build the crawl/notify schedule sharing the tools' components and cycle lock."""
    return Scheduler(
        crawl=feed_tools.crawl_cycle,
        notify=feed_tools.notify_cycle,
        crawl_interval=config.crawl_interval_secs,
        notify_interval=config.notify_interval_secs,
        lock=feed_tools.cycle_lock,
    )


@click.command()
@click.option(
    "--port",
    default=3001,
    help="Port to listen on for SSE or Streamable HTTP transport"
)
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (use 0.0.0.0 for Docker)"
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="Transport type (stdio, sse, or streamable-http)"
)
@click.option(
    "--crawl-interval-secs",
    type=int,
    default=None,
    help="Seconds between feed crawl cycles (default 3600)"
)
@click.option(
    "--notify-interval-secs",
    type=int,
    default=None,
    help="Seconds between notification cycles (default 300)"
)
def main(
    port: int,
    host: str,
    transport: str,
    crawl_interval_secs: Optional[int] = None,
    notify_interval_secs: Optional[int] = None,
) -> int:
    """Run the feed_notifier server with specified transport."""
    config = get_config()
    if crawl_interval_secs:
        config.crawl_interval_secs = crawl_interval_secs
    if notify_interval_secs:
        config.notify_interval_secs = notify_interval_secs

    feed_tools = FeedTools.from_config(config)
    server = create_mcp_server(config, feed_tools)
    scheduler = create_scheduler(config, feed_tools)

    async def run_server():
        """Inner async function to run the server and the schedule together."""
        stop = asyncio.Event()
        schedule_task = asyncio.create_task(scheduler.run(stop))

        try:
            if transport == "stdio":
                logger.info("Starting server with STDIO transport")
                await server.run_stdio_async()
            elif transport == "sse":
                logger.info(f"Starting server with SSE transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                await server.run_sse_async()
            elif transport == "streamable-http":
                logger.info(f"Starting server with Streamable HTTP transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                server.settings.streamable_http_path = "/mcp"
                await server.run_streamable_http_async()
            else:
                raise ValueError(f"Unknown transport: {transport}")
        finally:
            stop.set()
            await schedule_task
            await close_database()

    try:
        asyncio.run(run_server())
        return 0
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        return 0
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        return 1


def main_stdio() -> int:
    """Entry point for STDIO transport (convenience wrapper)."""
    return main.callback(port=3001, host="127.0.0.1", transport="stdio")


def main_http() -> int:
    """Entry point for Streamable HTTP transport (convenience wrapper)."""
    return main.callback(port=3001, host="127.0.0.1", transport="streamable-http")


if __name__ == "__main__":
    sys.exit(main())
