"""Meal log store: append-only meal entries with live range queries.

Entries are immutable once inserted; the only other mutation is
deletion by id.  Every query is a ``LiveQuery`` re-delivered whenever
``meal_logs`` changes.
"""

from __future__ import annotations

import datetime as _dt
import logging

from pydantic import BaseModel, Field

from gcal.core.errors import ValidationError
from gcal.core.time import day_window, local_date_from_ms, now_ms
from gcal.db.models import MealLog
from gcal.db.repos import MealRepo
from gcal.db.session import Database
from gcal.live.query import ChangeBus, LiveQuery
from gcal.reports.stats import DayTotals, daily_totals

logger = logging.getLogger(__name__)

TABLE = "meal_logs"

# ---------------------------------------------------------------------------
# Sanity check limits
# ---------------------------------------------------------------------------

# Maximum reasonable single-meal values; anything above is rejected as absurd.
MAX_CALORIES = 5000
MAX_PROTEIN_G = 500
MAX_CARBS_G = 800
MAX_FAT_G = 400


class MealDraft(BaseModel):
    """A nutrition estimate the user has not saved yet."""

    food_name: str = "Unknown Food"
    calories: int = 0
    protein: int = 0
    carbs: int = 0
    fat: int = 0
    timestamp: int = Field(default_factory=now_ms)
    photo_uri: str | None = None
    is_manual: bool = False


def check_meal_values(draft: MealDraft) -> None:
    """Reject negative or absurd values.

    Raises:
        ValidationError: describing the first offending value.
    """
    checks: list[tuple[str, int, int]] = [
        ("Calories", draft.calories, MAX_CALORIES),
        ("Protein", draft.protein, MAX_PROTEIN_G),
        ("Carbs", draft.carbs, MAX_CARBS_G),
        ("Fat", draft.fat, MAX_FAT_G),
    ]
    for label, value, limit in checks:
        if value < 0:
            raise ValidationError(f"{label} value ({value}) must not be negative.")
        if value > limit:
            raise ValidationError(f"{label} value ({value}) exceeds maximum ({limit}).")
    if draft.timestamp < 0:
        raise ValidationError("Timestamp must not be negative.")


class MealLogStore:
    """Insert / delete meal entries and expose live queries over them.

    Args:
        db: Database holder.
        bus: Change bus notified after each committed mutation.
        tz: Timezone used for ``query_day``.
    """

    def __init__(self, db: Database, bus: ChangeBus, tz: _dt.tzinfo) -> None:
        self._db = db
        self._bus = bus
        self._tz = tz

    async def insert(self, draft: MealDraft) -> MealLog:
        """Append a new entry and return it with its assigned id.

        Raises:
            ValidationError: Values out of bounds.
            StorageError: The store is unavailable.
        """
        check_meal_values(draft)
        meal = await self._db.run(MealRepo.create, **draft.model_dump())
        logger.info(
            "Meal saved: %s",
            meal.food_name,
            extra={"event": "meal_saved", "meal_id": meal.id},
        )
        self._bus.notify(TABLE)
        return meal

    async def delete(self, meal_id: int) -> bool:
        """Remove an entry by id; a missing id is a no-op.

        Returns:
            ``True`` if an entry was removed.
        """
        removed = await self._db.run(MealRepo.delete, meal_id)
        if removed:
            logger.info("Meal deleted", extra={"event": "meal_deleted", "meal_id": meal_id})
            self._bus.notify(TABLE)
        return removed

    async def get(self, meal_id: int) -> MealLog | None:
        return await self._db.run(MealRepo.get_by_id, meal_id)

    def query_range(self, start_ms: int, end_ms: int) -> LiveQuery[list[MealLog]]:
        """Entries with ``start_ms <= timestamp <= end_ms``, newest first."""

        async def fetch() -> list[MealLog]:
            return await self._db.run(MealRepo.list_between, start_ms, end_ms)

        return LiveQuery(self._bus, (TABLE,), fetch, name=f"meals[{start_ms}..{end_ms}]")

    def query_day(self, day: _dt.date) -> LiveQuery[list[MealLog]]:
        """Entries for the local calendar day *day*."""
        start_ms, end_ms = day_window(day, self._tz)
        return self.query_range(start_ms, end_ms)

    def query_all(self) -> LiveQuery[list[MealLog]]:
        """Every entry, newest first."""

        async def fetch() -> list[MealLog]:
            return await self._db.run(MealRepo.list_all)

        return LiveQuery(self._bus, (TABLE,), fetch, name="meals[all]")

    async def daily_totals(self, days: list[_dt.date]) -> list[DayTotals]:
        """Per-day totals for *days*, in the same order."""
        return await self._db.run(daily_totals, days, self._tz)


def group_by_day(meals: list[MealLog], tz: _dt.tzinfo) -> list[tuple[_dt.date, list[MealLog]]]:
    """Group an already newest-first list by local date, newest day first."""
    groups: list[tuple[_dt.date, list[MealLog]]] = []
    for meal in meals:
        day = local_date_from_ms(meal.timestamp, tz)
        if groups and groups[-1][0] == day:
            groups[-1][1].append(meal)
        else:
            groups.append((day, [meal]))
    return groups
