"""Tests for the bounded per-site history."""
from datetime import datetime, timedelta

import pytest

from sentinel.core.history import HistoryBuffer
from sentinel.core.result import CheckResult

T0 = datetime(2026, 3, 2, 9, 0, 0)


def _result(i: int, status_code: int = 200, duration_ms: int = 100) -> CheckResult:
    return CheckResult(observed_at=T0 + timedelta(minutes=i), status_code=status_code, duration_ms=duration_ms)


class TestHistoryBuffer:
    def test_keeps_most_recent_entries_oldest_first(self) -> None:
        buf = HistoryBuffer(cap=100)
        for i in range(105):
            buf = buf.append(_result(i))

        assert len(buf) == 100
        assert buf[0].observed_at == T0 + timedelta(minutes=5)
        assert buf[-1].observed_at == T0 + timedelta(minutes=104)
        times = [r.observed_at for r in buf]
        assert times == sorted(times)

    def test_append_does_not_mutate(self) -> None:
        empty = HistoryBuffer(cap=3)
        one = empty.append(_result(0))
        assert len(empty) == 0
        assert len(one) == 1

    def test_initial_items_truncated_to_cap(self) -> None:
        buf = HistoryBuffer(cap=2, items=[_result(0), _result(1), _result(2)])
        assert [r.observed_at for r in buf] == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]

    def test_total_counts_evicted_results(self) -> None:
        buf = HistoryBuffer(cap=3)
        for i in range(5):
            buf = buf.append(_result(i))
        assert len(buf) == 3
        assert buf.total == 5
        assert HistoryBuffer(cap=3, items=[_result(0)]).total == 1
        assert HistoryBuffer(cap=3, items=[_result(0)], total=40).total == 40

    def test_invalid_cap(self) -> None:
        with pytest.raises(ValueError):
            HistoryBuffer(cap=0)

    def test_latest_and_recent(self) -> None:
        buf = HistoryBuffer(cap=20, items=[_result(i) for i in range(15)])
        assert buf.latest() == _result(14)
        assert buf.recent(3) == (_result(12), _result(13), _result(14))
        assert buf.recent(0) == ()
        assert HistoryBuffer().latest() is None


class TestHistoryStats:
    def test_uptime_percentage(self) -> None:
        buf = HistoryBuffer(items=[_result(0), _result(1, status_code=0), _result(2, 301), _result(3, 500)])
        assert buf.uptime_percentage() == 50.0

    def test_uptime_empty(self) -> None:
        assert HistoryBuffer().uptime_percentage() == 0.0

    def test_average_duration(self) -> None:
        buf = HistoryBuffer(items=[_result(0, duration_ms=100), _result(1, duration_ms=300)])
        assert buf.average_duration_ms() == 200
        assert HistoryBuffer().average_duration_ms() is None


def test_check_result_rejects_negative_duration() -> None:
    with pytest.raises(ValueError):
        CheckResult(observed_at=T0, status_code=200, duration_ms=-1)


def test_failure_result_uses_status_zero() -> None:
    r = CheckResult.failure(T0, 1500, "TIMEOUT: took too long")
    assert r.status_code == 0
    assert not r.is_healthy
    assert r.detail.startswith("TIMEOUT")
