#!/usr/bin/env python3
"""
Chat Relay Client - Main Entry Point

Usage:
    python main_client.py [--username NAME] [--color #RRGGBB] [--server-ip HOST] [--port PORT]
"""

import argparse
import asyncio
import sys

from common.constants import DEFAULT_COLOR, DEFAULT_HOST, DEFAULT_PORT


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Chat Relay Client')
    parser.add_argument('--username', type=str, default=None,
                        help='Username for chat (default: asked on startup)')
    parser.add_argument('--color', type=str, default=DEFAULT_COLOR,
                        help=f'Display color as #RRGGBB (default: {DEFAULT_COLOR})')
    parser.add_argument('--server-ip', type=str, default=DEFAULT_HOST,
                        help=f'Server IP address (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'Server port (default: {DEFAULT_PORT})')

    args = parser.parse_args(argv)

    from client.main_client import ChatRelayClient
    from client.utils.logger import logger

    username = args.username
    if not username:
        username = input("Enter username: ").strip() or "anonymous"

    client = ChatRelayClient(
        host=args.server_ip,
        port=args.port,
        username=username,
        color=args.color
    )

    try:
        asyncio.run(client.interactive_mode())
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted by user")
    except OSError as e:
        logger.log_error("client", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
