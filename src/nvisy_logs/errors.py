"""Errors raised while searching and paging logs."""

from enum import StrEnum
from typing import final


class ErrorKind(StrEnum):
    """What went wrong, so callers can tell bad input from a backend outage."""

    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    """Unknown log group, or no group matching a lookup."""

    INVALID_INPUT = "invalid_input"
    """Bad time range, window size or correlation id."""

    TIMEOUT = "timeout"
    """A search outlived its polling deadline and was stopped."""

    PROVIDER = "provider"
    DECODE = "decode"
    """A search row carried an unreadable timestamp."""


@final
class LogsError(Exception):
    """Failure of a log backend call, cursor page or driver run.

    `source` keeps the underlying boto3 or timeout exception, if any.
    """

    __slots__ = ("kind", "message", "source")

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER,
        source: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.source = source

    def __repr__(self) -> str:
        return f"LogsError({self.message!r}, kind={self.kind!r})"
