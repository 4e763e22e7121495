"""Main module for feed_notifier MCP server.

This module allows the server to be run as a Python module using:
python -m feed_notifier

It delegates to the server application's main function.
"""

import sys

from feed_notifier.server.app import main

if __name__ == "__main__":
    sys.exit(main())
