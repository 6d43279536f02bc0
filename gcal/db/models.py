"""SQLAlchemy 2.0 declarative models: MealLog, DailySummary, Preference.

Meal timestamps are epoch milliseconds (UTC).  ``DailySummary`` is keyed
by the ISO date string of the user's local day.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class MealLog(Base):
    """A single logged food item.

    Entries are never updated in place; the only mutation is deletion.
    """

    __tablename__ = "meal_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    food_name: Mapped[str] = mapped_column(String(256), nullable=False)
    calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    protein: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    carbs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fat: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Opaque reference to the captured photo (URI / file path).
    photo_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    # True when described in text, False when derived from an image.
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<MealLog #{self.id} {self.food_name} {self.calories}kcal @{self.timestamp}>"


class DailySummary(Base):
    """One row per calendar day: streak and water counters.

    The ``total_*`` columns are a snapshot written when the day's meals
    change; live meal sums are authoritative for totals.
    """

    __tablename__ = "daily_summaries"

    date: Mapped[str] = mapped_column(String(10), primary_key=True)  # YYYY-MM-DD
    total_calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_protein: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_carbs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fat: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goal_calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    water_intake: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<DailySummary {self.date} streak={self.streak_count} water={self.water_intake}>"


class Preference(Base):
    """Named user setting stored as text."""

    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<Preference {self.key}>"
