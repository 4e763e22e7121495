"""Test helpers for building feed documents and mocked HTTP clients."""

from unittest.mock import AsyncMock, MagicMock


def rss_document(items, title="Test Feed"):
    """Build an RSS 2.0 document from (title, link, pub_date) tuples."""
    parts = []
    for item_title, link, pub_date in items:
        pub = f"<pubDate>{pub_date}</pubDate>" if pub_date else ""
        parts.append(f"<item><title>{item_title}</title><link>{link}</link>{pub}</item>")

    return f"""<?xml version="1.0"?>
    <rss version="2.0">
        <channel>
            <title>{title}</title>
            {''.join(parts)}
        </channel>
    </rss>
    """.encode("utf-8")


def mock_http_client(response=None, side_effect=None):
    """Build a patched httpx.AsyncClient whose get/post return `response`."""
    mock_instance = AsyncMock()
    mock_instance.get = AsyncMock(return_value=response, side_effect=side_effect)
    mock_instance.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    return mock_instance


def mock_response(status_code=200, content=b"", headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.headers = headers or {}
    return response
