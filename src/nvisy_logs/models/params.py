"""Parameter types for driver and client configuration.

Params define how drivers operate (window sizes, caps, polling), while
contexts carry runtime state (tokens, job status).
"""

from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_QUERY = "fields @timestamp, @message | sort @timestamp asc"


class DriverKind(str, Enum):
    """Retrieval mode used for a category of logs."""

    QUERY = "query"
    """Windowed search queries (CloudWatch Logs Insights)."""

    STREAM = "stream"
    """Per-source pagination merged by timestamp."""


class QueryParams(BaseModel, frozen=True):
    """Parameters for the adaptive-window query driver."""

    window_seconds: float = Field(default=3600, gt=0)
    """Initial window size."""

    dynamic: bool = True
    """Resize the window after every batch."""

    row_cap: int = Field(default=10000, gt=0)
    """Maximum rows the backend returns for one query."""

    fill_target: float = Field(default=0.8, gt=0, le=1)
    """Batches below `fill_target * row_cap` rows grow the window."""

    shrink_ratio: float = Field(default=0.9, gt=0, le=1)
    """Truncated batches spanning less than `shrink_ratio * window` shrink it."""

    poll_interval: float = Field(default=0.1, ge=0)
    """First delay between completion polls, doubled after every poll."""

    poll_max_interval: float = Field(default=2.0, ge=0)
    """Upper bound for the delay between completion polls."""

    poll_timeout: float | None = Field(default=None, gt=0)
    """Deadline for one query to complete. None waits indefinitely."""

    durations_kept: int = Field(default=100, ge=1)
    """How many of the most recent query durations the driver keeps."""

    query: str = DEFAULT_QUERY
    """Query text used for full-range retrieval."""

    correlation_field: str = "@requestId"
    """Field filtered on for correlation-id retrieval."""


class MergeParams(BaseModel, frozen=True):
    """Parameters for the stream-merge driver."""

    window_seconds: float = Field(default=3600, gt=0)
    """Merge window size."""

    grouped_by_day: bool = False
    """List sources once per calendar day using a day name prefix."""

    day_prefix_format: str = "%Y/%m/%d"
    """strftime format of the day prefix of source names."""


class ClientParams(BaseModel, frozen=True):
    """Parameters for the log client facade."""

    group_driver: DriverKind = DriverKind.STREAM
    """Driver used for named log groups."""

    task_driver: DriverKind = DriverKind.QUERY
    """Driver used for task log groups."""

    task_group_prefix: str = "/aws/lambda/"
    """Prefix turning a task name into its log group name."""

    query: QueryParams = Field(default_factory=QueryParams)
    merge: MergeParams = Field(default_factory=MergeParams)
