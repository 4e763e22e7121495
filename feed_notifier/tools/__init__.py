"""MCP tools for feed_notifier."""

from .feed_tools import FeedTools

__all__ = ["FeedTools"]
