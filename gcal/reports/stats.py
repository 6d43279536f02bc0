"""Nutrition totals computed in SQL.

Used to snapshot a day's totals into ``daily_summaries`` and for the
last-7-days overview.  All functions return zeros when no data exists
for the requested period.
"""

from __future__ import annotations

import datetime as _dt
from typing import TypedDict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gcal.core.time import day_window
from gcal.db.models import MealLog


class DayTotals(TypedDict):
    """Nutrition totals for a single day."""

    date: _dt.date
    meal_count: int
    calories: int
    protein: int
    carbs: int
    fat: int


async def totals_between(
    session: AsyncSession,
    start_ms: int,
    end_ms: int,
) -> tuple[int, int, int, int, int]:
    """Sum calories and macros for ``start_ms <= timestamp <= end_ms``.

    Returns:
        ``(meal_count, calories, protein, carbs, fat)``.
    """
    stmt = select(
        func.count(MealLog.id).label("meal_count"),
        func.coalesce(func.sum(MealLog.calories), 0).label("calories"),
        func.coalesce(func.sum(MealLog.protein), 0).label("protein"),
        func.coalesce(func.sum(MealLog.carbs), 0).label("carbs"),
        func.coalesce(func.sum(MealLog.fat), 0).label("fat"),
    ).where(MealLog.timestamp >= start_ms, MealLog.timestamp <= end_ms)
    row = (await session.execute(stmt)).one()
    return (
        int(row.meal_count),
        int(row.calories),
        int(row.protein),
        int(row.carbs),
        int(row.fat),
    )


async def day_totals(
    session: AsyncSession,
    day: _dt.date,
    tz: _dt.tzinfo,
) -> DayTotals:
    """Totals for the local calendar day *day*."""
    start_ms, end_ms = day_window(day, tz)
    count, calories, protein, carbs, fat = await totals_between(session, start_ms, end_ms)
    return DayTotals(
        date=day,
        meal_count=count,
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
    )


async def daily_totals(
    session: AsyncSession,
    days: list[_dt.date],
    tz: _dt.tzinfo,
) -> list[DayTotals]:
    """Per-day totals for a list of dates (typically the last 7 days).

    Days with no meals get zeros.  Results are returned in the
    same order as *days*.
    """
    return [await day_totals(session, day, tz) for day in days]
