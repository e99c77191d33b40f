"""Core protocols for log backends and drivers."""

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Protocol, Self, TypeVar, runtime_checkable

from nvisy_logs.models.contexts import EventPage, GroupPage, SearchResult, SourcePage
from nvisy_logs.models.datatypes import LogRecord

Cred_contra = TypeVar("Cred_contra", contravariant=True)
Params_contra = TypeVar("Params_contra", contravariant=True)


@runtime_checkable
class LogBackend(Protocol):
    """Protocol for a remote, paginated log store.

    Every method is a suspension point and may raise `LogsError`.
    Implementations hold no per-call mutable state, so one backend can
    serve many concurrent calls.
    """

    async def submit_search(
        self,
        group_id: str,
        query_text: str,
        start: datetime,
        end: datetime,
        row_cap: int,
    ) -> str:
        """Start a bounded time-range search and return its job id."""
        ...

    async def poll_search(self, job_id: str) -> SearchResult:
        """Return the current status of a search, with rows once complete."""
        ...

    async def stop_search(self, job_id: str) -> None:
        """Ask the backend to stop a running search."""
        ...

    async def list_sources(
        self,
        group_id: str,
        name_prefix: str | None = None,
        token: str | None = None,
    ) -> SourcePage:
        """List one page of sources in a group."""
        ...

    async def list_events(
        self,
        group_id: str,
        source_id: str,
        start: datetime,
        end: datetime,
        token: str | None = None,
    ) -> EventPage:
        """List one page of time-ordered events from a single source."""
        ...

    async def list_groups(self, token: str | None = None) -> GroupPage:
        """List one page of groups."""
        ...


@runtime_checkable
class LogDriver(Protocol):
    """Protocol for a retrieval mode producing time-ordered records."""

    def stream_full_range(
        self, group_id: str, start: datetime, end: datetime
    ) -> AsyncIterator[LogRecord]:
        """Yield every record of a group in `[start, end)` by timestamp."""
        ...

    def stream_by_correlation(
        self, group_id: str, correlation_id: str, start: datetime, end: datetime
    ) -> AsyncIterator[LogRecord]:
        """Yield the records of a group that carry a correlation id."""
        ...


@runtime_checkable
class Provider(Protocol[Cred_contra, Params_contra]):
    """Protocol for backend lifecycle management."""

    @classmethod
    async def connect(cls, credentials: Cred_contra, params: Params_contra) -> Self:
        """Establish connection to the external service."""
        ...

    async def disconnect(self) -> None:
        """Release resources and close connections."""
        ...
