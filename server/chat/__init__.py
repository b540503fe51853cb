"""
Chat module for server-side coordination.

Handles:
- Identity registry and connection sessions
- Presence directory and mention resolution
- Message log and broadcast routing
- Typing state
"""
