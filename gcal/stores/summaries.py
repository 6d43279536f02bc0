"""Daily summary store: per-day streak and water counters.

One row per ISO date.  ``upsert_summary`` replaces the whole row;
water changes go through ``add_water``, a single atomic upsert, so two
quick taps can never lose an increment.

Streak rule: a day qualifies when it has at least one meal entry.
``streak_count`` is the previous day's streak + 1 for a qualifying
day, else 0.
"""

from __future__ import annotations

import datetime as _dt
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from gcal.db.models import DailySummary
from gcal.db.repos import SummaryRepo
from gcal.db.session import Database
from gcal.live.query import ChangeBus, LiveQuery, channel
from gcal.reports.stats import day_totals

logger = logging.getLogger(__name__)

TABLE = "daily_summaries"

DateKey = _dt.date | str


def date_key(day: DateKey) -> str:
    """Normalise a date or ISO string to ``YYYY-MM-DD``."""
    if isinstance(day, _dt.date):
        return day.isoformat()
    return _dt.date.fromisoformat(day).isoformat()


class DailySummaryStore:
    """Read / write ``daily_summaries`` rows with live queries.

    Args:
        db: Database holder.
        bus: Change bus notified after each committed mutation.
        tz: Timezone used to compute day windows for streak refreshes.
    """

    def __init__(self, db: Database, bus: ChangeBus, tz: _dt.tzinfo) -> None:
        self._db = db
        self._bus = bus
        self._tz = tz

    def get_summary(self, day: DateKey) -> LiveQuery[DailySummary | None]:
        """Live row for *day*, or ``None`` if never written."""
        key = date_key(day)

        async def fetch() -> DailySummary | None:
            return await self._db.run(SummaryRepo.get, key)

        return LiveQuery(self._bus, (channel(TABLE, key),), fetch, name=f"summary[{key}]")

    def get_recent(self, n: int = 7) -> LiveQuery[list[DailySummary]]:
        """Live list of the *n* most recent rows, newest date first."""

        async def fetch() -> list[DailySummary]:
            return await self._db.run(SummaryRepo.list_recent, n)

        return LiveQuery(self._bus, (TABLE,), fetch, name=f"summaries[recent:{n}]")

    async def upsert_summary(self, day: DateKey, **fields: int) -> None:
        """Insert or fully replace the row for *day*.

        Columns not passed are written as 0; read-modify-write to keep them.
        """
        key = date_key(day)
        await self._db.run(SummaryRepo.replace, key, **fields)
        self._notify(key)

    async def add_water(self, day: DateKey, delta: int) -> int:
        """Atomically add *delta* to the water count (never below 0).

        Returns:
            The new water count.
        """
        key = date_key(day)
        water = await self._db.run(SummaryRepo.add_water, key, delta)
        logger.info(
            "Water updated to %d",
            water,
            extra={"event": "water_updated", "date": key},
        )
        self._notify(key)
        return water

    async def refresh_day(self, day: _dt.date, goal_calories: int, today: _dt.date) -> None:
        """Recompute the streak and totals snapshot for *day*.

        Later days up to *today* that already have a row are refreshed
        too, since their streak depends on *day*.  Water is preserved.
        """

        async def work(session: AsyncSession) -> list[str]:
            refreshed: list[str] = []
            current = day
            while True:
                await self._refresh_one(session, current, goal_calories)
                refreshed.append(current.isoformat())
                current += _dt.timedelta(days=1)
                if current > today or await SummaryRepo.get(session, current.isoformat()) is None:
                    return refreshed

        self._notify(*await self._db.run(work))

    def _notify(self, *keys: str) -> None:
        self._bus.notify(TABLE, *(channel(TABLE, key) for key in keys))

    async def _refresh_one(self, session: AsyncSession, day: _dt.date, goal_calories: int) -> None:
        totals = await day_totals(session, day, self._tz)
        previous = await SummaryRepo.get(session, (day - _dt.timedelta(days=1)).isoformat())
        previous_streak = previous.streak_count if previous is not None else 0
        streak = previous_streak + 1 if totals["meal_count"] > 0 else 0
        await SummaryRepo.merge(
            session,
            day.isoformat(),
            total_calories=totals["calories"],
            total_protein=totals["protein"],
            total_carbs=totals["carbs"],
            total_fat=totals["fat"],
            goal_calories=goal_calories,
            streak_count=streak,
        )
        logger.debug(
            "Streak for %s is %d",
            day,
            streak,
            extra={"event": "streak_refreshed", "date": day.isoformat()},
        )
