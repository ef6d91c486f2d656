"""Exception types raised by the blockday engine."""

from __future__ import annotations


class BlockdayError(Exception):
    """Base class for all engine errors."""


class InvalidTransition(BlockdayError, ValueError):
    """An intent was issued from a state that does not allow it.

    These are caller contract violations: the engine never retries them and
    leaves its state untouched.
    """

    def __init__(self, message: str, state: str | None = None) -> None:
        super().__init__(message)
        self.state = state


class PersistenceError(BlockdayError):
    """The block store could not read or write a record.

    The in-memory engine state stays authoritative; the caller retries the
    write with the same run id.
    """
