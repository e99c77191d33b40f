"""Lazy forward paginator over one log source."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, ClassVar

from nvisy_logs.models.datatypes import STREAM_FIELD, LogRecord, SourceDescriptor, SourceEvent

if TYPE_CHECKING:
    from nvisy_logs.protocols import LogBackend

logger = logging.getLogger(__name__)


class SourceCursor:
    """Client-side cursor over the events of one source.

    The cursor starts cold and issues no request until the first peek.
    It then pages forward through the backend token chain, holding at most
    one event that was read but not yet handed out. Once the backend
    signals the end of pagination the cursor is exhausted for good and
    never contacts the backend again.
    """

    __slots__: ClassVar[tuple[str, ...]] = (
        "_backend",
        "_end",
        "_exhausted",
        "_group_id",
        "_held",
        "_index",
        "_page",
        "_started",
        "_start",
        "_token",
        "descriptor",
        "fetches",
    )

    descriptor: SourceDescriptor
    fetches: int

    def __init__(
        self,
        backend: "LogBackend",
        group_id: str,
        descriptor: SourceDescriptor,
        start: datetime,
        end: datetime,
    ) -> None:
        self._backend = backend
        self._group_id = group_id
        self._start = start
        self._end = end
        self.descriptor = descriptor
        self.fetches = 0

        self._token: str | None = None
        self._page: list[SourceEvent] = []
        self._index = 0
        self._held: LogRecord | None = None
        self._started = False
        self._exhausted = False

    def __repr__(self) -> str:
        return f"SourceCursor({self.descriptor.id!r}, exhausted={self._exhausted})"

    @property
    def source_id(self) -> str:
        return self.descriptor.id

    def is_exhausted(self) -> bool:
        return self._exhausted

    def source_span(self) -> tuple[datetime, datetime]:
        """Return the first and last event times of the source."""
        return (self.descriptor.first_event_time, self.descriptor.last_event_time)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Check whether the source may hold events in `[start, end]`."""
        first, last = self.source_span()
        return last >= start and first <= end

    async def peek_at_or_before(self, max_timestamp: datetime | None = None) -> LogRecord | None:
        """Return the next event if it is at or before `max_timestamp`.

        A returned event is consumed. An event past the bound stays held
        and is offered again on the next call. Returns None once the
        source is exhausted.
        """
        if self._exhausted:
            return None

        if self._held is None:
            self._held = await self._pull()
            if self._held is None:
                self._exhausted = True
                logger.debug("Source %s exhausted after %d fetches", self.source_id, self.fetches)
                return None

        if max_timestamp is not None and self._held.timestamp > max_timestamp:
            return None

        record, self._held = self._held, None
        return record

    async def _pull(self) -> LogRecord | None:
        """Read the next event, fetching pages until one has data."""
        while self._index >= len(self._page):
            if not await self._fetch_page():
                return None

        event = self._page[self._index]
        self._index += 1
        return LogRecord(
            timestamp=event.timestamp,
            message=event.message,
            context={STREAM_FIELD: self.source_id},
        )

    async def _fetch_page(self) -> bool:
        """Fetch the next page. Returns False at the end of pagination."""
        if self._started and self._token is None:
            return False

        sent = self._token
        page = await self._backend.list_events(
            self._group_id,
            self.source_id,
            self._start,
            self._end,
            token=sent,
        )
        self.fetches += 1
        self._started = True
        self._page = page.events
        self._index = 0

        # A repeated token marks the last page; its events are still valid.
        if page.next_token is None or page.next_token == sent:
            self._token = None
        else:
            self._token = page.next_token

        return bool(self._page) or self._token is not None
