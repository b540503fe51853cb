"""
Client package for the chat relay.

This package contains the protocol client used by the command-line interface:
- Identity claiming and session resume
- Chat, mention and typing events
- Configuration and utilities
"""
