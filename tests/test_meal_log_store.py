"""Tests for gcal.stores.meal_log: insert, delete and live range queries."""

from __future__ import annotations

import datetime as _dt

import pytest

from gcal.core.errors import ValidationError
from gcal.live.query import ChangeBus
from gcal.stores.meal_log import (
    MAX_CALORIES,
    MAX_FAT_G,
    MealDraft,
    MealLogStore,
    check_meal_values,
    group_by_day,
)
from tests.conftest import UTC, make_draft, ms, wait_until


# ---------------------------------------------------------------------------
# Insert / delete
# ---------------------------------------------------------------------------


class TestInsert:
    async def test_assigns_increasing_ids(self, meals: MealLogStore):
        first = await meals.insert(make_draft("Oats"))
        second = await meals.insert(make_draft("Eggs"))
        assert first.id is not None
        assert second.id > first.id

    async def test_fields_round_trip(self, meals: MealLogStore):
        meal = await meals.insert(
            make_draft("Salad", calories=120, photo_uri="file:///photo.jpg", is_manual=False)
        )
        stored = await meals.get(meal.id)
        assert stored is not None
        assert stored.food_name == "Salad"
        assert stored.calories == 120
        assert stored.photo_uri == "file:///photo.jpg"
        assert stored.is_manual is False

    async def test_notifies_bus(self, meals: MealLogStore, bus: ChangeBus):
        calls: list[int] = []
        bus.subscribe("meal_logs", lambda: calls.append(1))
        await meals.insert(make_draft())
        assert calls == [1]

    async def test_negative_calories_rejected(self, meals: MealLogStore, bus: ChangeBus):
        calls: list[int] = []
        bus.subscribe("meal_logs", lambda: calls.append(1))
        with pytest.raises(ValidationError, match="must not be negative"):
            await meals.insert(make_draft(calories=-5))
        assert calls == []
        assert await meals.query_all().snapshot() == []

    async def test_default_draft_values(self):
        draft = MealDraft()
        assert draft.food_name == "Unknown Food"
        assert draft.calories == 0
        assert draft.timestamp > 0


class TestDelete:
    async def test_delete_removes_entry(self, meals: MealLogStore):
        meal = await meals.insert(make_draft())
        assert await meals.delete(meal.id) is True
        assert await meals.get(meal.id) is None

    async def test_delete_missing_is_noop(self, meals: MealLogStore, bus: ChangeBus):
        calls: list[int] = []
        bus.subscribe("meal_logs", lambda: calls.append(1))
        assert await meals.delete(999) is False
        assert calls == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueryRange:
    async def test_inclusive_bounds(self, meals: MealLogStore):
        start, end = ms(2024, 1, 1, 0), ms(2024, 1, 2, 0) - 1
        await meals.insert(make_draft("start", timestamp=start))
        await meals.insert(make_draft("end", timestamp=end))
        await meals.insert(make_draft("before", timestamp=start - 1))
        await meals.insert(make_draft("after", timestamp=end + 1))

        result = await meals.query_range(start, end).snapshot()
        assert [m.food_name for m in result] == ["end", "start"]

    async def test_newest_first(self, meals: MealLogStore):
        await meals.insert(make_draft("breakfast", timestamp=ms(2024, 1, 1, 8)))
        await meals.insert(make_draft("dinner", timestamp=ms(2024, 1, 1, 19)))
        await meals.insert(make_draft("lunch", timestamp=ms(2024, 1, 1, 13)))

        result = await meals.query_day(_dt.date(2024, 1, 1)).snapshot()
        assert [m.food_name for m in result] == ["dinner", "lunch", "breakfast"]

    async def test_same_timestamp_newest_id_first(self, meals: MealLogStore):
        first = await meals.insert(make_draft("a"))
        second = await meals.insert(make_draft("b"))
        result = await meals.query_all().snapshot()
        assert [m.id for m in result] == [second.id, first.id]

    async def test_empty_range(self, meals: MealLogStore):
        assert await meals.query_day(_dt.date(2030, 1, 1)).snapshot() == []

    async def test_live_query_sees_insert_and_delete(self, meals: MealLogStore):
        seen: list[list[str]] = []
        sub = meals.query_day(_dt.date(2024, 1, 1)).subscribe(
            lambda result: seen.append([m.food_name for m in result])
        )
        await wait_until(lambda: seen == [[]])

        meal = await meals.insert(make_draft("Toast"))
        await wait_until(lambda: seen[-1] == ["Toast"])

        await meals.delete(meal.id)
        await wait_until(lambda: seen[-1] == [])
        await sub.cancel()

    async def test_daily_totals(self, meals: MealLogStore):
        await meals.insert(make_draft(calories=300, timestamp=ms(2024, 1, 2)))
        totals = await meals.daily_totals([_dt.date(2024, 1, 2), _dt.date(2024, 1, 1)])
        assert [t["calories"] for t in totals] == [300, 0]


# ---------------------------------------------------------------------------
# Validation and grouping
# ---------------------------------------------------------------------------


class TestCheckMealValues:
    def test_normal_values_pass(self):
        check_meal_values(make_draft())

    def test_zero_values_pass(self):
        check_meal_values(make_draft(calories=0, protein=0, carbs=0, fat=0))

    def test_absurd_calories_rejected(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            check_meal_values(make_draft(calories=MAX_CALORIES + 1))

    def test_absurd_fat_rejected(self):
        with pytest.raises(ValidationError, match="Fat"):
            check_meal_values(make_draft(fat=MAX_FAT_G + 1))

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValidationError, match="Timestamp"):
            check_meal_values(make_draft(timestamp=-1))


class TestGroupByDay:
    async def test_groups_newest_day_first(self, meals: MealLogStore):
        await meals.insert(make_draft("d1-a", timestamp=ms(2024, 1, 1, 8)))
        await meals.insert(make_draft("d2-a", timestamp=ms(2024, 1, 2, 8)))
        await meals.insert(make_draft("d2-b", timestamp=ms(2024, 1, 2, 20)))

        groups = group_by_day(await meals.query_all().snapshot(), UTC)
        assert [day for day, _ in groups] == [_dt.date(2024, 1, 2), _dt.date(2024, 1, 1)]
        assert [m.food_name for m in groups[0][1]] == ["d2-b", "d2-a"]

    def test_empty(self):
        assert group_by_day([], UTC) == []
