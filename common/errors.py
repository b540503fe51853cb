"""
Error taxonomy shared by client and server.

All errors are recoverable: the client corrects its input and retries.
None of them closes the connection.
"""


class ChatError(Exception):
    """Base class for errors reported back to a single connection."""

    code = 'chat_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(ChatError):
    """Malformed name or color."""

    code = 'invalid_input'


class NameTaken(ChatError):
    """The requested name is held by another connection."""

    code = 'name_taken'


class Unauthenticated(ChatError):
    """An action that needs an identity was attempted without one."""

    code = 'unauthenticated'
