class ChatError(Exception):
    """Base class for errors reported to a single session as an `error` event."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PersistenceError(ChatError):
    code = "persistence"


class ValidationError(ChatError):
    code = "validation"


class AuthorizationError(ChatError):
    code = "authorization"
