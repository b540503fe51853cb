"""
Server package for the chat relay.

This package contains all server-side functionality including:
- Identity claiming and session lifecycle
- Message log and broadcast fan-out
- TCP connection management
- Configuration and utilities
"""
