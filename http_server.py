#!/usr/bin/env python3
"""
Weekly Tunes HTTP Server Runner
"""

from dotenv import load_dotenv

from weeklytunes.crosscutting.logging import setup_logging
from weeklytunes.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging('INFO')
    server = HTTPServer(
        host='localhost',
        port=3000,
        debug=True
    )
    server.run()


if __name__ == '__main__':
    main()
