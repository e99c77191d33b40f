"""Tests for the adaptive-window query driver."""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest
from conftest import FakeBackend, at, collect, row

from nvisy_logs.drivers.query import QueryDriver, decode_row, parse_timestamp
from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.contexts import SearchStatus
from nvisy_logs.models.params import QueryParams


def params(**overrides: object) -> QueryParams:
    return QueryParams.model_validate({"poll_interval": 0, **overrides})


def test_parse_timestamp_is_utc() -> None:
    parsed = parse_timestamp("2022-06-01 09:00:01.250")

    assert parsed == at(1.25)
    assert parsed.tzinfo is not None


def test_parse_timestamp_rejects_garbage() -> None:
    with pytest.raises(LogsError) as exc_info:
        _ = parse_timestamp("yesterday")

    assert exc_info.value.kind == ErrorKind.DECODE


def test_decode_row_keeps_extra_fields_in_context() -> None:
    record = decode_row({**row(at(0), "hello", "p1"), "@logStream": "s1"})

    assert record.message == "hello"
    assert record.context == {"@ptr": "p1", "@logStream": "s1"}
    assert record.dedup_key == "p1"


def test_stream_reads_consecutive_windows(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(s), f"m{s}") for s in (10, 70, 130, 190)]}
    driver = QueryDriver(backend, params(window_seconds=60, dynamic=False))

    records = collect(driver.stream("g", "q", at(0), at(240)))

    assert [r.message for r in records] == ["m10", "m70", "m130", "m190"]
    assert [(s.start, s.end) for s in backend.searches] == [
        (at(0), at(60)),
        (at(60), at(120)),
        (at(120), at(180)),
        (at(180), at(240)),
    ]


def test_window_end_never_exceeds_range_end(backend: FakeBackend) -> None:
    driver = QueryDriver(backend, params(window_seconds=100, dynamic=False))

    _ = collect(driver.stream("g", "q", at(0), at(250)))

    assert [s.end for s in backend.searches] == [at(100), at(200), at(250)]
    assert all(s.end <= at(250) for s in backend.searches)


def test_requery_after_truncation_emits_each_record_once(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(s), f"t{s}") for s in range(5)]}
    driver = QueryDriver(backend, params(window_seconds=3600, row_cap=3))

    records = collect(driver.stream("g", "q", at(0), at(10)))

    assert [r.message for r in records] == ["t0", "t1", "t2", "t3", "t4"]
    # The second search restarted at the last record of the truncated first batch.
    assert backend.searches[1].start == at(2)
    assert [r.message for r in records[2:3]] == ["t2"]


def test_non_dynamic_truncation_requeries_from_last_timestamp(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(s), f"t{s}") for s in range(5)]}
    driver = QueryDriver(backend, params(window_seconds=5, row_cap=3, dynamic=False))

    records = collect(driver.stream("g", "q", at(0), at(10)))

    assert len(records) == 5
    assert len({r.dedup_key for r in records}) == 5
    assert driver.window_size == 5
    assert [s.start for s in backend.searches[:3]] == [at(0), at(2), at(4)]


def test_truncated_dense_batch_shrinks_window() -> None:
    batch = [row(at(i * 0.05), f"r{i}") for i in range(9999)]
    batch.append(row(at(500), "last"))
    backend = FakeBackend(script=[batch])
    driver = QueryDriver(backend, params(window_seconds=1000))

    records = collect(driver.stream("g", "q", at(0), at(1000)))

    assert len(records) == 10000
    assert driver.window_size == pytest.approx(750)
    assert backend.searches[1].start == at(500)


def test_truncated_sparse_batch_keeps_window() -> None:
    batch = [row(at(i * 0.095), f"r{i}") for i in range(10000)]
    backend = FakeBackend(script=[batch])
    driver = QueryDriver(backend, params(window_seconds=1000))

    _ = collect(driver.stream("g", "q", at(0), at(1000)))

    # The batch spans 949.9s, above 90% of the window.
    assert driver.window_size == 1000
    assert backend.searches[1].start == at(9999 * 0.095)


def test_underfull_batch_grows_window() -> None:
    batch = [row(at(i * 0.2), f"r{i}") for i in range(4000)]
    backend = FakeBackend(script=[batch])
    driver = QueryDriver(backend, params(window_seconds=900))

    _ = collect(driver.stream("g", "q", at(0), at(2000)))

    assert driver.window_size == pytest.approx(900 * 10000 / 7000)
    assert driver.window_size == pytest.approx(1285.714, abs=1e-3)
    # The window advanced by the old size before growing.
    assert backend.searches[1].start == at(900)
    assert backend.searches[1].end == at(2000)


def test_near_target_batch_keeps_window() -> None:
    batch = [row(at(i * 0.1), f"r{i}") for i in range(8500)]
    backend = FakeBackend(script=[batch])
    driver = QueryDriver(backend, params(window_seconds=1000))

    _ = collect(driver.stream("g", "q", at(0), at(2000)))

    assert driver.window_size == 1000
    assert backend.searches[1].start == at(1000)


def test_empty_batch_slides_window_unchanged(backend: FakeBackend) -> None:
    driver = QueryDriver(backend, params(window_seconds=300))

    records = collect(driver.stream("g", "q", at(0), at(900)))

    assert records == []
    assert driver.window_size == 300
    assert [s.start for s in backend.searches] == [at(0), at(300), at(600)]


def test_window_size_persists_across_runs() -> None:
    backend = FakeBackend(script=[[row(at(0), "only")]])
    driver = QueryDriver(backend, params(window_seconds=100))

    _ = collect(driver.stream("g", "q", at(0), at(100)))
    grown = driver.window_size
    _ = collect(driver.stream("g", "q", at(0), at(1000)))

    assert grown > 100
    assert backend.searches[1].end == at(grown)


def test_decode_failure_skips_resize(caplog: pytest.LogCaptureFixture) -> None:
    bad = row(at(1), "bad")
    bad["@timestamp"] = "not a timestamp"
    backend = FakeBackend(script=[[row(at(0), "a"), bad, row(at(2), "b")]])
    driver = QueryDriver(backend, params(window_seconds=60))

    with caplog.at_level(logging.WARNING, logger="nvisy_logs.drivers.query"):
        records = collect(driver.stream("g", "q", at(0), at(120)))

    assert [r.message for r in records] == ["a", "b"]
    assert driver.window_size == 60
    assert backend.searches[1].start == at(60)
    assert "undecodable" in caplog.text


def test_stalled_truncation_skips_ahead(caplog: pytest.LogCaptureFixture) -> None:
    same = [row(at(5), f"r{i}") for i in range(3)]
    backend = FakeBackend(script=[same, list(same)])
    driver = QueryDriver(backend, params(window_seconds=60, row_cap=3))

    with caplog.at_level(logging.WARNING, logger="nvisy_logs.drivers.query"):
        records = collect(driver.stream("g", "q", at(0), at(60)))

    assert [r.message for r in records] == ["r0", "r1", "r2"]
    assert backend.searches[2].start == at(6)
    assert "skipping ahead" in caplog.text


def test_waits_for_pending_search(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(1), "a")]}
    backend.pending_polls = 3
    driver = QueryDriver(backend, params(window_seconds=60))

    records = collect(driver.stream("g", "q", at(0), at(60)))

    assert [r.message for r in records] == ["a"]
    assert backend.searches[0].polls == 4
    assert len(driver.query_durations) == 1


def test_failed_search_raises(backend: FakeBackend) -> None:
    backend.final_status = SearchStatus.FAILED
    driver = QueryDriver(backend, params())

    with pytest.raises(LogsError) as exc_info:
        _ = collect(driver.stream("g", "q", at(0), at(60)))

    assert exc_info.value.kind == ErrorKind.PROVIDER


def test_search_deadline_stops_query(backend: FakeBackend) -> None:
    backend.pending_polls = 10**9
    driver = QueryDriver(
        backend, params(poll_interval=0.01, poll_max_interval=0.01, poll_timeout=0.05)
    )

    with pytest.raises(LogsError) as exc_info:
        _ = collect(driver.stream("g", "q", at(0), at(60)))

    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert backend.searches[0].stopped


def test_cancelled_consumer_stops_query(backend: FakeBackend) -> None:
    backend.pending_polls = 10**9
    driver = QueryDriver(backend, params(poll_interval=0.01, poll_max_interval=0.01))

    async def first() -> object:
        return await anext(driver.stream("g", "q", at(0), at(60)))

    async def run() -> None:
        task = asyncio.create_task(first())
        await asyncio.sleep(0.05)
        _ = task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert backend.searches[0].stopped


def test_correlation_filter_in_query_text(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(1), "a")]}
    driver = QueryDriver(backend, params())

    _ = collect(driver.stream_filtered_by_correlation("g", "req-42", at(0), at(60)))

    query = backend.searches[0].query_text
    assert 'filter @requestId = "req-42"' in query
    assert query.endswith("sort @timestamp asc")


def test_correlation_id_with_quote_is_rejected(backend: FakeBackend) -> None:
    driver = QueryDriver(backend, params())

    with pytest.raises(LogsError) as exc_info:
        _ = driver.stream_filtered_by_correlation("g", 'x" or 1', at(0), at(60))

    assert exc_info.value.kind == ErrorKind.INVALID_INPUT
    assert backend.searches == []


def test_stop_after_partial_consumption(backend: FakeBackend) -> None:
    backend.rows = {"g": [row(at(s), f"m{s}") for s in range(0, 600, 10)]}
    driver = QueryDriver(backend, params(window_seconds=60, dynamic=False))

    records = collect(driver.stream("g", "q", at(0), at(600)), limit=3)

    assert len(records) == 3
    assert len(backend.searches) == 1
    assert records[-1].timestamp - records[0].timestamp == timedelta(seconds=20)


def test_naive_bounds_are_rejected(backend: FakeBackend) -> None:
    driver = QueryDriver(backend, params())

    with pytest.raises(LogsError) as exc_info:
        _ = collect(driver.stream("g", "q", datetime(2022, 6, 1, 9), datetime(2022, 6, 1, 10)))

    assert exc_info.value.kind == ErrorKind.INVALID_INPUT
    assert backend.searches == []


def test_query_durations_keep_only_recent_searches(backend: FakeBackend) -> None:
    driver = QueryDriver(backend, params(window_seconds=1, dynamic=False, durations_kept=5))

    _ = collect(driver.stream("g", "q", at(0), at(12)))

    assert len(backend.searches) == 12
    assert len(driver.query_durations) == 5
