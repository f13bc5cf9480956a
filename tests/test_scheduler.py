"""Tests for the daily timer."""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from budgetwise_mcp.recurrence import RecurrenceEngine
from budgetwise_mcp.scheduler import DailyTimer, run_for_owners, seconds_until_next_run

from conftest import OTHER_OWNER, OWNER, ledger_rows


class TestSecondsUntilNextRun:
    """Test timer delay computation."""

    def test_before_hour(self):
        now = datetime(2025, 1, 1, 22, 30, tzinfo=timezone.utc)
        assert seconds_until_next_run(now, 23) == 30 * 60

    def test_after_hour_waits_for_tomorrow(self):
        now = datetime(2025, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        assert seconds_until_next_run(now, 0) == 24 * 3600 - 1

    def test_exactly_on_hour(self):
        now = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
        assert seconds_until_next_run(now, 0) == 24 * 3600

    def test_other_timezone(self):
        tz = timezone(timedelta(hours=3))
        now = datetime(2025, 1, 1, 2, 0, tzinfo=tz)  # 23:00 UTC the day before
        assert seconds_until_next_run(now, 0) == 3600


class TestRunForOwners:
    """Test the multi-owner run."""

    def test_each_owner_processed(self, db, engine, add_template):
        add_template(start_date=date(2025, 1, 1))
        add_template(owner_id=OTHER_OWNER, category="freelance", start_date=date(2025, 1, 1))

        results = run_for_owners(engine, db.list_owner_ids(), date(2025, 1, 1))

        assert [r.owner_id for r in results] == [OWNER, OTHER_OWNER]
        assert sum(r.created_count for r in results) == 2

    def test_failing_owner_does_not_stop_others(self, caplog):
        engine = Mock()
        engine.run_due.side_effect = [RuntimeError("boom"), "ok"]

        with caplog.at_level(logging.ERROR):
            results = run_for_owners(engine, ["a", "b"], date(2025, 1, 1))

        assert results == ["ok"]
        assert "owner a failed" in caplog.text


class TestDailyTimer:
    """Test timer ticks."""

    @pytest.mark.asyncio
    async def test_tick_runs_engine_and_reports(self, db, engine, add_template):
        add_template(cadence="daily", start_date=date(2025, 1, 1))
        completed = []
        timer = DailyTimer(
            engine,
            db.list_owner_ids,
            on_complete=lambda as_of, results: completed.append((as_of, results)),
            clock=lambda: datetime(2025, 1, 3, 0, 0, 5, tzinfo=timezone.utc),
        )

        results = await timer.tick()

        assert results[0].created_count == 1
        assert completed[0][0] == date(2025, 1, 3)
        assert len(ledger_rows(db)) == 1

    @pytest.mark.asyncio
    async def test_tick_same_day_is_idempotent(self, db, engine, add_template):
        add_template(start_date=date(2025, 1, 1))
        timer = DailyTimer(engine, db.list_owner_ids)

        await timer.tick(date(2025, 1, 20))
        await timer.tick(date(2025, 1, 20))

        assert len(ledger_rows(db)) == 1

    @pytest.mark.asyncio
    async def test_tick_swallows_and_logs_errors(self, engine, caplog):
        def owners():
            raise RuntimeError("owner listing failed")

        timer = DailyTimer(engine, owners)
        with caplog.at_level(logging.ERROR):
            assert await timer.tick(date(2025, 1, 1)) == []
        assert "Daily recurring run" in caplog.text

    @pytest.mark.asyncio
    async def test_run_forever_sleeps_until_hour(self, db, add_template):
        add_template(start_date=date(2025, 1, 1))
        engine = RecurrenceEngine(db, db, db)
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            if len(delays) == 2:
                raise asyncio.CancelledError

        timer = DailyTimer(
            engine,
            db.list_owner_ids,
            hour_utc=6,
            clock=lambda: datetime(2025, 1, 1, 5, 0, tzinfo=timezone.utc),
            sleep=fake_sleep,
        )

        with pytest.raises(asyncio.CancelledError):
            await timer.run_forever()

        assert delays == [3600, 3600]
        assert len(ledger_rows(db)) == 1
