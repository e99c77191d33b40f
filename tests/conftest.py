"""Shared fixtures: an in-memory log backend and async helpers."""

import asyncio
import itertools
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.contexts import (
    EventPage,
    GroupPage,
    SearchResult,
    SearchStatus,
    SourcePage,
)
from nvisy_logs.models.datatypes import LogGroup, LogRecord, SourceDescriptor, SourceEvent

T0 = datetime(2022, 6, 1, 9, 0, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    """Return T0 shifted by `seconds`."""
    return T0 + timedelta(seconds=seconds)


def row(ts: datetime, message: str, ptr: str | None = None) -> dict[str, str]:
    """Build a search row the way Logs Insights renders it."""
    result = {
        "@timestamp": ts.strftime("%Y-%m-%d %H:%M:%S.") + f"{ts.microsecond // 1000:03d}",
        "@message": message,
    }
    result["@ptr"] = ptr or f"ptr-{message}"
    return result


def collect(records: AsyncIterator[LogRecord], limit: int | None = None) -> list[LogRecord]:
    """Drain an async iterator, optionally stopping after `limit` records."""

    async def _run() -> list[LogRecord]:
        out: list[LogRecord] = []
        async for record in records:
            out.append(record)
            if limit is not None and len(out) >= limit:
                break
        return out

    return asyncio.run(_run())


@dataclass
class Search:
    group_id: str
    query_text: str
    start: datetime
    end: datetime
    row_cap: int
    rows: list[dict[str, str]]
    polls: int = 0
    stopped: bool = False


@dataclass
class FakeBackend:
    """In-memory LogBackend.

    Searches either filter `rows` by time range or, when `script` is set,
    return the scripted batches one per search. Log streams paginate with
    CloudWatch's convention of repeating the token on the last page.
    """

    rows: dict[str, list[dict[str, str]]] = field(default_factory=dict)
    script: list[list[dict[str, str]]] | None = None
    pending_polls: int = 0
    final_status: SearchStatus = SearchStatus.COMPLETE

    streams: dict[str, dict[str, list[SourceEvent]]] = field(default_factory=dict)
    page_size: int = 2
    source_page_size: int = 2
    groups: list[str] = field(default_factory=list)

    searches: list[Search] = field(default_factory=list)
    event_calls: dict[str, int] = field(default_factory=dict)
    source_prefixes: list[str | None] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=itertools.count)

    async def submit_search(
        self,
        group_id: str,
        query_text: str,
        start: datetime,
        end: datetime,
        row_cap: int,
    ) -> str:
        if self.script is not None:
            rows = self.script.pop(0) if self.script else []
        else:
            rows = [
                r
                for r in self.rows.get(group_id, [])
                if start <= _row_time(r) < end
            ]
            rows.sort(key=_row_time)
        self.searches.append(Search(group_id, query_text, start, end, row_cap, rows[:row_cap]))
        return f"job-{next(self._ids)}"

    def _search(self, job_id: str) -> Search:
        return self.searches[int(job_id.removeprefix("job-"))]

    async def poll_search(self, job_id: str) -> SearchResult:
        search = self._search(job_id)
        search.polls += 1
        if search.polls <= self.pending_polls:
            return SearchResult(status=SearchStatus.PENDING)
        if self.final_status != SearchStatus.COMPLETE:
            return SearchResult(status=self.final_status)
        return SearchResult(status=SearchStatus.COMPLETE, rows=search.rows)

    async def stop_search(self, job_id: str) -> None:
        self._search(job_id).stopped = True

    async def list_sources(
        self,
        group_id: str,
        name_prefix: str | None = None,
        token: str | None = None,
    ) -> SourcePage:
        if group_id not in self.streams:
            msg = f"Group {group_id} does not exist"
            raise LogsError(msg, kind=ErrorKind.NOT_FOUND)
        if token is None:
            self.source_prefixes.append(name_prefix)

        sources = [
            SourceDescriptor(
                id=name,
                first_event_time=events[0].timestamp,
                last_event_time=events[-1].timestamp,
            )
            for name, events in sorted(self.streams[group_id].items())
            if events and (name_prefix is None or name.startswith(name_prefix))
        ]
        offset = int(token or 0)
        end = offset + self.source_page_size
        next_token = str(end) if end < len(sources) else None
        return SourcePage(sources=sources[offset:end], next_token=next_token)

    async def list_events(
        self,
        group_id: str,
        source_id: str,
        start: datetime,
        end: datetime,
        token: str | None = None,
    ) -> EventPage:
        self.event_calls[source_id] = self.event_calls.get(source_id, 0) + 1
        events = [e for e in self.streams[group_id][source_id] if start <= e.timestamp <= end]
        offset = int(token.removeprefix("f/")) if token else 0
        page = events[offset : offset + self.page_size]
        return EventPage(events=page, next_token=f"f/{offset + len(page)}")

    async def list_groups(self, token: str | None = None) -> GroupPage:
        offset = int(token or 0)
        names = self.groups[offset : offset + 2]
        next_token = str(offset + 2) if offset + 2 < len(self.groups) else None
        return GroupPage(groups=[LogGroup(name=n) for n in names], next_token=next_token)


def _row_time(r: dict[str, str]) -> datetime:
    return datetime.fromisoformat(r["@timestamp"].replace(" ", "T")).replace(tzinfo=UTC)


def events(*items: tuple[float, str]) -> list[SourceEvent]:
    """Build source events from (offset seconds, message) pairs."""
    return [SourceEvent(timestamp=at(offset), message=message) for offset, message in items]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
