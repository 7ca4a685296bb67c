from typing import Optional


class DiyChatError(Exception):
    """Base class for errors raised by diychat."""


class ConfigurationError(DiyChatError):
    """No usable project or backend for a turn."""


class CapabilityError(DiyChatError):
    """The selected model cannot accept the content of the turn."""


class ProviderError(DiyChatError):
    """
    Transport or protocol failure talking to an upstream provider.

    Attributes:
        status_code: HTTP status of the upstream response, if there was one.
        body: Raw response body, if there was one.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(DiyChatError, LookupError):
    """A stored record does not exist."""


class ProtectedResourceError(DiyChatError):
    """The record exists but may not be modified this way."""
