"""Daily timer that runs the recurrence engine once per day."""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable

from .recurrence import RecurrenceEngine, RunResult


logger = logging.getLogger(__name__)

LAST_RUN_META_KEY = "recurring_last_timer_run"


def seconds_until_next_run(now: datetime, hour_utc: int = 0) -> float:
    """Seconds from `now` until the next HH:00 UTC (a full day when exactly on it)."""
    now = now.astimezone(timezone.utc)
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def run_for_owners(
    engine: RecurrenceEngine, owner_ids: list[str], as_of: date
) -> list[RunResult]:
    """Run the engine for each owner; one owner's failure never stops the others."""
    results = []
    for owner_id in owner_ids:
        try:
            results.append(engine.run_due(owner_id, as_of))
        except Exception:
            logger.exception("Recurring run for owner %s failed", owner_id)
    return results


class DailyTimer:
    """Fires the recurring run once a day at a fixed UTC hour."""

    def __init__(
        self,
        engine: RecurrenceEngine,
        owners: Callable[[], list[str]],
        hour_utc: int = 0,
        on_complete: Callable[[date, list[RunResult]], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the timer.

        Args:
            engine: Engine shared with the on-demand trigger.
            owners: Callable returning the owner ids to process on each tick.
            hour_utc: Hour of day (UTC) at which the run fires.
            on_complete: Called after each tick with the date and results.
            clock: Returns the current aware datetime (tests pin it).
            sleep: Coroutine used to wait between ticks.
        """
        self.engine = engine
        self.owners = owners
        self.hour_utc = hour_utc
        self.on_complete = on_complete
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep

    async def tick(self, as_of: date | None = None) -> list[RunResult]:
        """Run once; exceptions are logged, never raised."""
        as_of = as_of or self.clock().astimezone(timezone.utc).date()
        try:
            owner_ids = self.owners()
            logger.info("Daily recurring run for %d owner(s) as of %s", len(owner_ids), as_of)
            results = await asyncio.to_thread(run_for_owners, self.engine, owner_ids, as_of)
            if self.on_complete is not None:
                self.on_complete(as_of, results)
            return results
        except Exception:
            logger.exception("Daily recurring run as of %s failed", as_of)
            return []

    async def run_forever(self) -> None:
        """Sleep until the next scheduled hour, tick, repeat until cancelled."""
        while True:
            delay = seconds_until_next_run(self.clock(), self.hour_utc)
            logger.debug("Next recurring run in %.0f seconds", delay)
            await self.sleep(delay)
            await self.tick()
