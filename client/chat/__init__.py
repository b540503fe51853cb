"""
Chat module for client-side messaging functionality.

Handles:
- Claim and resume requests
- Sending chat messages with mentions and replies
- Typing notifications
- Active user and typing state tracking
"""
