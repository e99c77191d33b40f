"""Context types returned by backend calls.

Contexts carry the state needed to continue a paginated listing or an
asynchronous search: continuation tokens and job status. They only track
*where* to resume, not *how much* to read (that's in Params).
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from nvisy_logs.models.datatypes import LogGroup, SourceDescriptor, SourceEvent


class SearchStatus(StrEnum):
    """Status of a submitted search job."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class SearchResult(BaseModel, frozen=True):
    """State of a search job as reported by one poll."""

    status: SearchStatus
    rows: list[dict[str, str]] = Field(default_factory=list)
    """Result rows as field to value mappings, in backend order."""


class SourcePage(BaseModel, frozen=True):
    """One page of a source listing."""

    sources: list[SourceDescriptor] = Field(default_factory=list)
    next_token: str | None = None
    """Token for the next page, absent on the last page."""


class EventPage(BaseModel, frozen=True):
    """One page of events from a single source.

    Pagination ends when `next_token` is absent or equals the token that
    was sent to fetch this page.
    """

    events: list[SourceEvent] = Field(default_factory=list)
    next_token: str | None = None


class GroupPage(BaseModel, frozen=True):
    """One page of a group listing."""

    groups: list[LogGroup] = Field(default_factory=list)
    next_token: str | None = None
