"""Adaptive-window search query driver.

The backend caps every search at `row_cap` rows, so a long range is read
as a sequence of bounded windows. After every batch the driver checks the
row count against the cap:

- a full batch was truncated: the rest of the window is unread, so the
  next query restarts at the last returned timestamp, and the window
  shrinks when the batch covered well under the window;
- an underfull batch grows the window towards the size that would have
  filled it, damped so it never overshoots in one step;
- a batch near the target fill leaves the window alone.

Restarting a query at the last timestamp returns that record again. The
driver remembers the backend pointer of the last record it yielded and
drops everything up to it from the next batch.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, ClassVar

from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.contexts import SearchResult, SearchStatus
from nvisy_logs.models.datatypes import (
    MESSAGE_FIELD,
    PTR_FIELD,
    TIMESTAMP_FIELD,
    LogRecord,
    Window,
    require_aware,
)
from nvisy_logs.models.params import QueryParams

if TYPE_CHECKING:
    from nvisy_logs.protocols import LogBackend

logger = logging.getLogger(__name__)

_FAILED_STATUSES = frozenset({SearchStatus.FAILED, SearchStatus.CANCELLED, SearchStatus.TIMEOUT})


def parse_timestamp(value: str) -> datetime:
    """Parse a search row timestamp (`2022-06-01 12:00:00.123`) as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace(" ", "T", 1))
    except (AttributeError, ValueError) as e:
        msg = f"Invalid timestamp {value!r}"
        raise LogsError(msg, kind=ErrorKind.DECODE, source=e) from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def decode_row(row: dict[str, str]) -> LogRecord:
    """Decode one search row into a log record."""
    if TIMESTAMP_FIELD not in row:
        msg = f"Row has no {TIMESTAMP_FIELD} field"
        raise LogsError(msg, kind=ErrorKind.DECODE)
    context = {k: v for k, v in row.items() if k not in (TIMESTAMP_FIELD, MESSAGE_FIELD)}
    return LogRecord(
        timestamp=parse_timestamp(row[TIMESTAMP_FIELD]),
        message=row.get(MESSAGE_FIELD, ""),
        context=context,
    )


class QueryDriver:
    """Stream records of a log group through adaptive windowed searches.

    `window_size` belongs to the instance: it keeps adapting across the
    windows of one run and carries over to later runs of the same driver.
    """

    __slots__: ClassVar[tuple[str, ...]] = ("_backend", "_params", "query_durations", "window_size")

    _backend: "LogBackend"
    _params: QueryParams

    def __init__(self, backend: "LogBackend", params: QueryParams | None = None) -> None:
        self._backend = backend
        self._params = params or QueryParams()
        self.window_size: float = self._params.window_seconds
        self.query_durations: deque[float] = deque(maxlen=self._params.durations_kept)

    @property
    def dynamic(self) -> bool:
        return self._params.dynamic

    async def stream(
        self,
        source_id: str,
        query_text: str,
        start: datetime,
        end: datetime,
    ) -> AsyncIterator[LogRecord]:
        """Yield every record matched by `query_text` in `[start, end)`.

        Records are yielded in timestamp order, each exactly once. Not
        restartable mid-stream: call again for a fresh run.
        """
        require_aware(start=start, end=end)
        window = Window(start=start, end=start, size=self.window_size)
        last_ptr: str | None = None

        while window.start < end:
            window.size = self.window_size
            window.end = min(end, window.start + timedelta(seconds=window.size))

            result = await self._search(source_id, query_text, window.start, window.end)
            records, failures = self._decode(result.rows)
            fresh = self._drop_seen(records, last_ptr)

            for record in fresh:
                yield record
                last_ptr = record.dedup_key or last_ptr

            self._advance(window, len(result.rows), records, failures, emitted=len(fresh))

    def stream_full_range(
        self, group_id: str, start: datetime, end: datetime
    ) -> AsyncIterator[LogRecord]:
        return self.stream(group_id, self._params.query, start, end)

    def stream_filtered_by_correlation(
        self,
        source_id: str,
        correlation_id: str,
        start: datetime,
        end: datetime,
    ) -> AsyncIterator[LogRecord]:
        """Yield the records whose correlation field equals `correlation_id`.

        The filter runs on the backend, so no record is re-checked here.
        """
        if '"' in correlation_id:
            msg = f"Correlation id {correlation_id!r} must not contain quotes"
            raise LogsError(msg, kind=ErrorKind.INVALID_INPUT)
        query_text = (
            f"fields {TIMESTAMP_FIELD}, {MESSAGE_FIELD}"
            f' | filter {self._params.correlation_field} = "{correlation_id}"'
            f" | sort {TIMESTAMP_FIELD} asc"
        )
        return self.stream(source_id, query_text, start, end)

    stream_by_correlation = stream_filtered_by_correlation

    def _decode(self, rows: list[dict[str, str]]) -> tuple[list[LogRecord], int]:
        """Decode rows, skipping the ones that fail. Returns (records, failures)."""
        records: list[LogRecord] = []
        failures = 0
        for row in rows:
            try:
                records.append(decode_row(row))
            except LogsError as e:
                failures += 1
                logger.warning("Skipping undecodable row: %s", e.message)
        return records, failures

    @staticmethod
    def _drop_seen(records: list[LogRecord], last_ptr: str | None) -> list[LogRecord]:
        """Drop records up to and including the one carrying `last_ptr`."""
        if last_ptr is None:
            return records
        for i, record in enumerate(records):
            if record.dedup_key == last_ptr:
                return records[i + 1 :]
        return records

    def _advance(
        self,
        window: Window,
        count: int,
        records: list[LogRecord],
        failures: int,
        emitted: int,
    ) -> None:
        """Move the window start and resize the window after one batch."""
        cap = self._params.row_cap
        step = timedelta(seconds=self.window_size)
        truncated = count >= cap

        if not records:
            if truncated:
                logger.warning("Full batch with no decodable rows at %s", window.start.isoformat())
            window.start += step
            return

        first_ts = records[0].timestamp
        last_ts = records[-1].timestamp

        if truncated and emitted == 0:
            # Every row was already yielded: re-querying from here cannot progress.
            logger.warning(
                "More than %d rows at %s, skipping ahead one second",
                cap,
                last_ts.isoformat(),
            )
            window.start = max(window.start, last_ts) + timedelta(seconds=1)
            return

        if failures:
            logger.warning(
                "Failed to decode %d of %d rows, keeping window at %.1fs",
                failures,
                count,
                self.window_size,
            )
            window.start = last_ts if truncated else window.start + step
            return

        if not self.dynamic:
            window.start = last_ts if truncated else window.start + step
            return

        if truncated:
            span = (last_ts - first_ts).total_seconds()
            if span < self.window_size * self._params.shrink_ratio:
                self.window_size -= (self.window_size - span) / 2
                logger.debug("Truncated batch spans %.1fs, window now %.1fs", span, self.window_size)
            window.start = last_ts
        elif count < cap * self._params.fill_target:
            window.start += step
            self.window_size *= cap / (count + (cap - count) / 2)
            logger.debug("Underfull batch of %d rows, window now %.1fs", count, self.window_size)
        else:
            window.start += step

    async def _search(
        self,
        group_id: str,
        query_text: str,
        start: datetime,
        end: datetime,
    ) -> SearchResult:
        """Run one search and wait for its completion."""
        started = time.monotonic()
        job_id = await self._backend.submit_search(
            group_id, query_text, start, end, self._params.row_cap
        )
        try:
            async with asyncio.timeout(self._params.poll_timeout):
                result = await self._wait(job_id)
        except TimeoutError as e:
            await self._stop(job_id)
            msg = f"Search {job_id} did not complete within {self._params.poll_timeout}s"
            raise LogsError(msg, kind=ErrorKind.TIMEOUT, source=e) from e
        except asyncio.CancelledError:
            await self._stop(job_id)
            raise

        self.query_durations.append(time.monotonic() - started)
        logger.debug(
            "Search %s over [%s, %s) returned %d rows",
            job_id,
            start.isoformat(),
            end.isoformat(),
            len(result.rows),
        )
        return result

    async def _wait(self, job_id: str) -> SearchResult:
        """Poll a search with capped exponential backoff until it finishes."""
        delay = self._params.poll_interval
        while True:
            result = await self._backend.poll_search(job_id)
            if result.status == SearchStatus.COMPLETE:
                return result
            if result.status in _FAILED_STATUSES:
                msg = f"Search {job_id} ended with status {result.status}"
                raise LogsError(msg, kind=ErrorKind.PROVIDER)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._params.poll_max_interval)

    async def _stop(self, job_id: str) -> None:
        """Stop an abandoned search on the backend, best effort."""
        try:
            await asyncio.shield(self._backend.stop_search(job_id))
        except LogsError as e:
            logger.warning("Failed to stop search %s: %s", job_id, e.message)
