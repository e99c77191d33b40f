"""Data types for log retrieval.

These types represent the items that flow through drivers:
- `LogRecord` for one decoded log line handed to the consumer
- `SourceEvent` for one raw event read from a source page
- `SourceDescriptor` for one paginated source (a CloudWatch log stream)
- `LogGroup` for one group of sources
- `Window` for the live time window of a driver run
"""

from datetime import datetime

from pydantic import BaseModel, Field

from nvisy_logs.errors import ErrorKind, LogsError

# JSON-compatible value type
type JsonValue = str | int | float | bool | None | list["JsonValue"] | dict[str, "JsonValue"]

# Context associated with a log record.
type Context = dict[str, JsonValue]

TIMESTAMP_FIELD = "@timestamp"
"""Search row field holding the record timestamp."""

MESSAGE_FIELD = "@message"
"""Search row field holding the record message."""

PTR_FIELD = "@ptr"
"""Search row field holding the backend-unique record pointer (dedup key)."""

STREAM_FIELD = "@logStream"
"""Context key holding the source id of a cursor-produced record."""


class LogRecord(BaseModel, frozen=True):
    """A single log line, decoded from a backend row or event."""

    timestamp: datetime
    """When the line was logged (UTC)."""

    message: str
    """Raw message text."""

    context: Context = Field(default_factory=dict)
    """Backend metadata, including reserved `@` keys."""

    @property
    def dedup_key(self) -> str | None:
        """Backend pointer identifying this record, if the backend assigned one."""
        ptr = self.context.get(PTR_FIELD)
        return ptr if isinstance(ptr, str) else None


class SourceEvent(BaseModel, frozen=True):
    """A raw event read from one source page."""

    timestamp: datetime
    message: str


class SourceDescriptor(BaseModel, frozen=True):
    """A paginated log source (one process or container log stream)."""

    id: str
    """Source name, unique within its group."""

    first_event_time: datetime
    """Timestamp of the oldest event in the source."""

    last_event_time: datetime
    """Timestamp of the newest event in the source."""


class LogGroup(BaseModel, frozen=True):
    """A group of log sources."""

    name: str
    created: datetime | None = None
    stored_bytes: int | None = None


class Window(BaseModel):
    """The live time window of one driver run.

    Mutated in place as the run advances; never shared between runs.
    """

    start: datetime
    end: datetime
    size: float
    """Window size in seconds."""


def require_aware(**bounds: datetime) -> None:
    """Reject range bounds without a timezone.

    Source and search timestamps are always UTC-aware; a naive bound
    cannot be ordered against them.
    """
    for name, value in bounds.items():
        if value.utcoffset() is None:
            msg = f"Range {name} {value.isoformat()} has no timezone"
            raise LogsError(msg, kind=ErrorKind.INVALID_INPUT)
