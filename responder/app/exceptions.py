"""Custom exceptions for the responder."""


class ResponderError(Exception):
    """Base class for responder exceptions."""

    def __init__(self, message: str = "Responder error"):
        self.message = message
        super().__init__(message)


class AlreadyRunningError(ResponderError):
    """Raised when ``Server.start`` is called while the server is running."""

    def __init__(self, message: str = "ntp responder: already running"):
        super().__init__(message)


class BindError(ResponderError):
    """Raised when the listen address cannot be resolved or bound.

    The server stays idle after this error.
    """

    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"cannot listen on {address}: {reason}")


class PacketError(ResponderError, ValueError):
    """Raised when bytes cannot be decoded into (or encoded from) an NTP header."""
