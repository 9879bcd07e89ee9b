"""Parley Core exceptions."""


class ParleyError(Exception):
    """Base exception for parley-core."""

    pass


class ConfigError(ParleyError):
    """Configuration error."""

    pass


class ProviderError(ParleyError):
    """Error raised by or about a model provider."""

    pass


class UnknownProviderError(ProviderError):
    """No adapter is registered for the requested provider kind."""

    pass


class TransportError(ProviderError):
    """The upstream stream failed (connection, non-2xx status, malformed chunk)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RequestInFlightError(ParleyError):
    """A stream with the same request ID is already running."""

    pass


class NotFoundError(ParleyError):
    """Resource not found."""

    pass


class SessionNotFoundError(NotFoundError):
    """Session not found."""

    pass


class MessageNotFoundError(NotFoundError):
    """Message not found."""

    pass
