"""Database repositories: thin CRUD layer over SQLAlchemy models.

Meal queries order by ``timestamp`` descending (ties broken by id,
newest first).  Summary writes use SQLite ``INSERT … ON CONFLICT``
upserts keyed by date.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import case, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from gcal.db.models import DailySummary, MealLog, Preference

_SUMMARY_FIELDS = (
    "total_calories",
    "total_protein",
    "total_carbs",
    "total_fat",
    "goal_calories",
    "streak_count",
    "water_intake",
)


# ---------------------------------------------------------------------------
# MealRepo
# ---------------------------------------------------------------------------
class MealRepo:
    """CRUD operations for the ``meal_logs`` table."""

    @staticmethod
    async def create(session: AsyncSession, **fields: Any) -> MealLog:
        """Insert a new meal entry.

        Args:
            session: Active async session.
            **fields: Column values matching ``MealLog`` attributes.

        Returns:
            The created ``MealLog`` with its assigned id.
        """
        meal = MealLog(**fields)
        session.add(meal)
        await session.flush()
        return meal

    @staticmethod
    async def get_by_id(session: AsyncSession, meal_id: int) -> MealLog | None:
        stmt = select(MealLog).where(MealLog.id == meal_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete(session: AsyncSession, meal_id: int) -> bool:
        """Remove a meal by id.

        Returns:
            ``True`` if a row was removed, ``False`` if it was already absent.
        """
        stmt = delete(MealLog).where(MealLog.id == meal_id)
        result = await session.execute(stmt)
        return result.rowcount > 0  # type: ignore[union-attr]

    @staticmethod
    async def list_between(
        session: AsyncSession,
        start_ms: int,
        end_ms: int,
    ) -> list[MealLog]:
        """Return meals with ``start_ms <= timestamp <= end_ms``, newest first."""
        stmt = (
            select(MealLog)
            .where(MealLog.timestamp >= start_ms, MealLog.timestamp <= end_ms)
            .order_by(MealLog.timestamp.desc(), MealLog.id.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_all(session: AsyncSession) -> list[MealLog]:
        """Return every meal, newest first."""
        stmt = select(MealLog).order_by(MealLog.timestamp.desc(), MealLog.id.desc())
        result = await session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# SummaryRepo
# ---------------------------------------------------------------------------
class SummaryRepo:
    """CRUD operations for the ``daily_summaries`` table."""

    @staticmethod
    async def get(session: AsyncSession, date: str) -> DailySummary | None:
        # Upserts bypass the identity map, so always reload column values.
        stmt = (
            select(DailySummary)
            .where(DailySummary.date == date)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def replace(session: AsyncSession, date: str, **fields: int) -> None:
        """Insert or fully replace the row for *date*.

        Fields not passed are reset to 0, matching replace semantics.
        """
        values = {name: int(fields.get(name, 0)) for name in _SUMMARY_FIELDS}
        stmt = sqlite_insert(DailySummary).values(date=date, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[DailySummary.date], set_=values)
        await session.execute(stmt)

    @staticmethod
    async def merge(session: AsyncSession, date: str, **fields: int) -> None:
        """Insert the row for *date* or update only the given columns."""
        stmt = sqlite_insert(DailySummary).values(date=date, **fields)
        stmt = stmt.on_conflict_do_update(index_elements=[DailySummary.date], set_=fields)
        await session.execute(stmt)

    @staticmethod
    async def add_water(session: AsyncSession, date: str, delta: int) -> int:
        """Atomically add *delta* to the day's water count, clamped at 0.

        Creates a zero-valued row first when none exists.

        Returns:
            The new water count.
        """
        stmt = sqlite_insert(DailySummary).values(date=date, water_intake=max(0, delta))
        new_value = DailySummary.water_intake + delta
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailySummary.date],
            set_={"water_intake": case((new_value < 0, 0), else_=new_value)},
        ).returning(DailySummary.water_intake)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def list_recent(session: AsyncSession, limit: int = 7) -> list[DailySummary]:
        """Return the *limit* most recent rows, newest date first."""
        stmt = select(DailySummary).order_by(DailySummary.date.desc()).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# PreferenceRepo
# ---------------------------------------------------------------------------
class PreferenceRepo:
    """Key-value access to the ``preferences`` table."""

    @staticmethod
    async def get_many(session: AsyncSession, keys: list[str]) -> dict[str, str]:
        """Return stored values for *keys*; missing keys are omitted."""
        stmt = select(Preference).where(Preference.key.in_(keys))
        result = await session.execute(stmt)
        return {row.key: row.value for row in result.scalars().all()}

    @staticmethod
    async def set_many(session: AsyncSession, values: dict[str, str]) -> None:
        """Upsert every key in *values* in the current transaction."""
        if not values:
            return
        stmt = sqlite_insert(Preference).values(
            [{"key": key, "value": value} for key, value in values.items()]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Preference.key],
            set_={"value": stmt.excluded.value},
        )
        await session.execute(stmt)

    @staticmethod
    async def delete_many(session: AsyncSession, keys: list[str]) -> None:
        stmt = delete(Preference).where(Preference.key.in_(keys))
        await session.execute(stmt)
