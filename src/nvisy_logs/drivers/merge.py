"""Sliding-window k-way merge over per-source cursors.

Sources paginate independently and give no ordering across each other.
The merge reads every source up to the end of a bounded time window,
sorts what it collected and yields it before moving on. Memory is bounded
by the volume of one window across all sources rather than the whole
range. A window that is too small only costs extra round trips: events
past the window end stay held in their cursor for a later window.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, ClassVar

from nvisy_logs.cursor import SourceCursor
from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.datatypes import LogRecord, SourceDescriptor, Window, require_aware
from nvisy_logs.models.params import MergeParams

if TYPE_CHECKING:
    from nvisy_logs.protocols import LogBackend

logger = logging.getLogger(__name__)


def days_between(start: datetime, end: datetime) -> list[datetime]:
    """Return UTC midnight of every UTC calendar day touched by `[start, end]`."""
    end = end.astimezone(UTC)
    day = start.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    days: list[datetime] = []
    while day <= end:
        days.append(day)
        day += timedelta(days=1)
    return days


async def _peek_all(
    cursors: Sequence[SourceCursor], max_timestamp: datetime | None
) -> list[LogRecord | None]:
    """Peek every cursor concurrently and wait for all of them."""
    tasks = [asyncio.ensure_future(c.peek_at_or_before(max_timestamp)) for c in cursors]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            _ = task.cancel()


class StreamMergeDriver:
    """Stream records of a log group by merging its sources in time order."""

    __slots__: ClassVar[tuple[str, ...]] = ("_backend", "_params", "peak_pending", "rounds")

    _backend: "LogBackend"
    _params: MergeParams

    def __init__(self, backend: "LogBackend", params: MergeParams | None = None) -> None:
        self._backend = backend
        self._params = params or MergeParams()
        self.peak_pending = 0
        self.rounds = 0

    async def discover(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
        grouped_by_day: bool | None = None,
    ) -> list[SourceCursor]:
        """Find the sources of a group overlapping `[start, end]`.

        When grouped by day, sources are listed once per UTC calendar day
        with the day as name prefix, which keeps listings of long-lived
        groups small. Sources without event timestamps are skipped.
        """
        require_aware(start=start, end=end)
        if grouped_by_day is None:
            grouped_by_day = self._params.grouped_by_day

        if grouped_by_day:
            prefixes: list[str | None] = [
                day.strftime(self._params.day_prefix_format) for day in days_between(start, end)
            ]
        else:
            prefixes = [None]

        cursors: dict[str, SourceCursor] = {}
        for prefix in prefixes:
            async for source in self._list_sources(group_id, prefix):
                if source.id in cursors:
                    continue
                if source.first_event_time <= end and source.last_event_time >= start:
                    cursors[source.id] = SourceCursor(self._backend, group_id, source, start, end)

        logger.debug("Found %d sources in %s overlapping the range", len(cursors), group_id)
        return list(cursors.values())

    async def _list_sources(
        self, group_id: str, prefix: str | None
    ) -> AsyncIterator[SourceDescriptor]:
        token: str | None = None
        while True:
            page = await self._backend.list_sources(group_id, name_prefix=prefix, token=token)
            for source in page.sources:
                yield source
            token = page.next_token
            if not token:
                break

    async def merge(
        self,
        cursors: Sequence[SourceCursor],
        start: datetime,
        end: datetime,
        window_seconds: float | None = None,
    ) -> AsyncIterator[LogRecord]:
        """Yield the events of all cursors in `[start, end]` by timestamp.

        Each round peeks every active cursor up to the window end. As long
        as any cursor returns an event the same window is drained again.
        When a round comes back empty the window is complete: its events
        are sorted (stable, so ties keep arrival order), yielded, and the
        window moves on.
        """
        require_aware(start=start, end=end)
        size = window_seconds if window_seconds is not None else self._params.window_seconds
        if size <= 0:
            msg = f"Merge window must be positive, got {size}s"
            raise LogsError(msg, kind=ErrorKind.INVALID_INPUT)
        window = Window(start=start, end=min(end, start + timedelta(seconds=size)), size=size)
        pending: list[LogRecord] = []
        active = self._select(cursors, window)

        while window.start < end:
            results = await _peek_all(active, window.end)
            self.rounds += 1
            ready = [r for r in results if r is not None]

            if ready:
                pending.extend(ready)
                self.peak_pending = max(self.peak_pending, len(pending))
                continue

            pending.sort(key=lambda r: r.timestamp)
            for record in pending:
                yield record
            pending.clear()

            window.start = window.end
            window.end = min(end, window.start + timedelta(seconds=size))
            active = self._select(cursors, window)

    @staticmethod
    def _select(cursors: Sequence[SourceCursor], window: Window) -> list[SourceCursor]:
        """Return the live cursors whose span overlaps the window."""
        return [
            c
            for c in cursors
            if not c.is_exhausted() and c.overlaps(window.start, window.end)
        ]

    async def locate_and_follow(
        self, cursors: Sequence[SourceCursor], marker: str
    ) -> AsyncIterator[LogRecord]:
        """Find the source logging `marker` and yield its matching events.

        Scans all cursors together, without a window, until an event
        contains the marker. From then on only that cursor is read and
        every event containing the marker is yielded.
        """
        live = list(cursors)
        found: SourceCursor | None = None

        while found is None:
            live = [c for c in live if not c.is_exhausted()]
            results = await _peek_all(live, None)
            if all(r is None for r in results):
                return
            for cursor, record in zip(live, results, strict=True):
                if record is not None and marker in record.message:
                    found = cursor
                    logger.debug("Marker %r found in source %s", marker, cursor.source_id)
                    yield record
                    break

        while (record := await found.peek_at_or_before()) is not None:
            if marker in record.message:
                yield record

    def stream_full_range(
        self, group_id: str, start: datetime, end: datetime
    ) -> AsyncIterator[LogRecord]:
        return self._discover_then(group_id, start, end, None)

    def stream_by_correlation(
        self, group_id: str, correlation_id: str, start: datetime, end: datetime
    ) -> AsyncIterator[LogRecord]:
        return self._discover_then(group_id, start, end, correlation_id)

    async def _discover_then(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
        marker: str | None,
    ) -> AsyncIterator[LogRecord]:
        if marker is None:
            cursors = await self.discover(group_id, start, end)
            records = self.merge(cursors, start, end)
        else:
            cursors = await self.discover(group_id, start, end, grouped_by_day=True)
            records = self.locate_and_follow(cursors, marker)
        async for record in records:
            yield record
