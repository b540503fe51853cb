#!/usr/bin/env python3
"""
Chat Relay Server - Main Entry Point

Usage:
    python main_server.py

Optional arguments:
    --host HOST             Bind address (default: 0.0.0.0)
    --port PORT             TCP port (default: 9000)
    --grace-seconds SECS    Identity hold after a dropped connection (default: 120, 0 disables)
    --max-message-size N    Longest accepted JSON line in bytes (default: 1048576)
    --outbox-size N         Queued frames per connection before it is dropped (default: 1000)
    --logs-dir DIR          Chat transcript directory (default: logs)
    --debug                 Verbose logging
"""

import argparse
import asyncio
import logging

from common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, RECOVERY_GRACE_SECONDS, LOG_DIR, MAX_MESSAGE_SIZE, OUTBOX_SIZE
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Chat Relay Server')
    parser.add_argument('--host', type=str, default=DEFAULT_SERVER_HOST,
                        help=f'Host to bind to (default: {DEFAULT_SERVER_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'TCP port (default: {DEFAULT_PORT})')
    parser.add_argument('--grace-seconds', type=float, default=RECOVERY_GRACE_SECONDS,
                        help=f'Seconds to hold an identity after a dropped connection (default: {RECOVERY_GRACE_SECONDS})')
    parser.add_argument('--max-message-size', type=int, default=MAX_MESSAGE_SIZE,
                        help=f'Longest accepted JSON line in bytes (default: {MAX_MESSAGE_SIZE})')
    parser.add_argument('--outbox-size', type=int, default=OUTBOX_SIZE,
                        help=f'Queued frames per connection before it is dropped as too slow (default: {OUTBOX_SIZE})')
    parser.add_argument('--logs-dir', type=str, default=LOG_DIR,
                        help=f'Directory for the chat transcript (default: {LOG_DIR})')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    return parser.parse_args(argv)


def build_config(args):
    from server.utils.config import ServerConfig

    return ServerConfig(
        host=args.host,
        port=args.port,
        recovery_grace_seconds=args.grace_seconds,
        max_message_size=args.max_message_size,
        outbox_size=args.outbox_size,
        logs_dir=args.logs_dir
    )


def main(argv=None):
    from server.main_server import ChatRelayServer
    from server.utils.logger import logger

    args = parse_args(argv)
    if args.debug:
        logger.set_level(logging.DEBUG)

    server = ChatRelayServer(build_config(args))
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    except OSError as e:
        logger.log_error("server", e)


if __name__ == "__main__":
    main()
