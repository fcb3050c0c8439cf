"""
Error taxonomy for subscription storage and dispatch.

Each error carries the stage of the operation it failed in, so callers can
tell a failed read from a failed decode, a missing record, or a failed write.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all jira-relay errors."""

    stage = "unknown"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        cause = self.__cause__
        if cause is not None:
            return f"{self.message}: {cause}"
        return self.message


class ValidationError(RelayError):
    """Malformed subscription rejected before any store access."""

    stage = "validate"


class DecodeError(RelayError):
    """Persisted blob is present but malformed."""

    stage = "decode"


class NotFoundError(RelayError):
    stage = "lookup"


class StoreReadError(RelayError):
    stage = "read"


class StoreWriteError(RelayError):
    stage = "write"


class ConcurrentModificationError(RelayError):
    """Compare-and-set kept losing to other writers."""

    stage = "write"

    def __init__(self, key: str, attempts: int):
        super().__init__(f"gave up writing {key!r} after {attempts} conflicting attempts")
        self.key = key
        self.attempts = attempts
