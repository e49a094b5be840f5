"""Exceptions raised at the service boundary.

Components catch these, log them, and surface them to the UI through
Qt signals; nothing here is fatal to the process.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for any failed call to the capture/export service."""

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command


class CommandRejected(GatewayError):
    """The service received the command and answered with an error."""


class GatewayUnavailable(GatewayError):
    """The backend process is not running or its pipe is broken."""


class GatewayTimeout(GatewayError):
    """No response arrived within the allotted time."""


class SyncLostError(Exception):
    """A mutation succeeded but the read-back that follows it failed.

    The local caches may no longer match the service until the next
    successful refresh.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None,
                 result: object = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} succeeded but state may be out of sync{detail}")
        self.operation = operation
        self.cause = cause
        # What the mutation itself returned
        self.result = result


def describe(exc: BaseException) -> str:
    """Short user-facing text for an exception."""
    msg = str(exc)
    return msg if msg else exc.__class__.__name__
