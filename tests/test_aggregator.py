"""Tests for gcal.home.aggregator: derived state and live recomputation."""

from __future__ import annotations

import datetime as _dt

import pytest

from gcal.home.aggregator import (
    HomeAggregator,
    HomeState,
    derive_home_state,
    progress_ratio,
    ring_progress,
)
from gcal.live.query import channel
from gcal.stores.meal_log import MealLogStore
from gcal.stores.summaries import DailySummaryStore
from gcal.stores.targets import TARGET_KEYS, TargetConfigStore, UserTargets
from tests.conftest import UTC, make_draft, ms

TODAY = _dt.date(2024, 1, 1)


@pytest.fixture
async def home(targets: TargetConfigStore, meals: MealLogStore, summaries: DailySummaryStore):
    """Started aggregator whose clock is pinned to 2024-01-01."""
    aggregator = HomeAggregator(targets, meals, summaries, tz=UTC, today=lambda: TODAY)
    await aggregator.start()
    yield aggregator
    await aggregator.close()


def _on(day: _dt.date, **expected: object):
    """Predicate: state is for *day* and matches every *expected* attribute."""

    def check(state: HomeState) -> bool:
        return state.date == day and all(getattr(state, k) == v for k, v in expected.items())

    return check


# ---------------------------------------------------------------------------
# Pure derivation
# ---------------------------------------------------------------------------


class TestProgress:
    def test_ratio(self):
        assert progress_ratio(500, 2000) == 0.25

    def test_zero_target_is_zero(self):
        assert progress_ratio(500, 0) == 0.0

    def test_over_target_not_clamped(self):
        assert progress_ratio(3000, 2000) == 1.5

    def test_ring_clamped(self):
        assert ring_progress(1.5) == 1.0
        assert ring_progress(-0.1) == 0.0
        assert ring_progress(0.4) == 0.4


class TestDeriveHomeState:
    def test_no_meals_no_summary(self):
        state = derive_home_state(TODAY, UserTargets(), [], None)
        assert state.consumed_calories == 0
        assert state.streak == 0
        assert state.water_intake == 0
        assert state.recent_logs == ()
        assert state.remaining_calories == 2000

    def test_zero_calorie_target(self):
        state = derive_home_state(TODAY, UserTargets(calories=0), [], None)
        assert state.calorie_progress == 0.0


# ---------------------------------------------------------------------------
# Live aggregation
# ---------------------------------------------------------------------------


class TestHomeAggregator:
    async def test_initial_state(self, home: HomeAggregator):
        state = await home.wait_for(_on(TODAY), timeout=2)
        assert state.targets == UserTargets()
        assert state.consumed_calories == 0
        assert state.water_goal == 2500

    async def test_three_meals_scenario(self, home: HomeAggregator, meals: MealLogStore):
        await home.wait_for(_on(TODAY), timeout=2)
        for hour, calories in ((8, 500), (13, 300), (19, 700)):
            await meals.insert(make_draft(calories=calories, timestamp=ms(2024, 1, 1, hour)))

        state = await home.wait_for(_on(TODAY, consumed_calories=1500), timeout=2)
        assert [m.calories for m in state.recent_logs] == [700, 300, 500]
        assert state.calorie_progress == 0.75

    async def test_recent_logs_limited_to_three(self, home: HomeAggregator, meals: MealLogStore):
        for hour in (7, 9, 11, 13):
            await meals.insert(make_draft(f"meal-{hour}", timestamp=ms(2024, 1, 1, hour)))

        state = await home.wait_for(_on(TODAY, consumed_calories=2000), timeout=2)
        assert [m.food_name for m in state.recent_logs] == ["meal-13", "meal-11", "meal-9"]

    async def test_other_days_not_counted(self, home: HomeAggregator, meals: MealLogStore):
        await meals.insert(make_draft(calories=100, timestamp=ms(2023, 12, 31, 23, 59)))
        await meals.insert(make_draft(calories=200, timestamp=ms(2024, 1, 1, 0)))

        state = await home.wait_for(_on(TODAY, consumed_calories=200), timeout=2)
        assert len(state.recent_logs) == 1

    async def test_delete_reduces_totals(self, home: HomeAggregator, meals: MealLogStore):
        await meals.insert(make_draft(calories=500, protein=30))
        extra = await meals.insert(make_draft(calories=300, protein=10))
        await home.wait_for(_on(TODAY, consumed_calories=800), timeout=2)

        await meals.delete(extra.id)
        state = await home.wait_for(_on(TODAY, consumed_calories=500), timeout=2)
        assert state.consumed_protein == 30
        assert extra.id not in [m.id for m in state.recent_logs]

    async def test_targets_change_recomputes(
        self, home: HomeAggregator, meals: MealLogStore, targets: TargetConfigStore
    ):
        await meals.insert(make_draft(calories=500))
        await home.wait_for(_on(TODAY, consumed_calories=500), timeout=2)

        await targets.set_targets(1000, 100, 100, 50)
        state = await home.wait_for(_on(TODAY, calorie_progress=0.5), timeout=2)
        assert state.remaining_calories == 500

    async def test_water_up_then_down(self, home: HomeAggregator):
        assert await home.update_water(1) == 1
        assert await home.update_water(-1) == 0
        state = await home.wait_for(_on(TODAY, water_intake=0), timeout=2)
        assert state.water_intake == 0

    async def test_water_never_negative(self, home: HomeAggregator):
        assert await home.update_water(-3) == 0

    async def test_streak_from_summary(self, home: HomeAggregator, summaries: DailySummaryStore):
        await summaries.upsert_summary(TODAY, streak_count=4, water_intake=2)
        state = await home.wait_for(_on(TODAY, streak=4), timeout=2)
        assert state.water_intake == 2


class TestDateNavigation:
    async def test_forward_past_today_clamped(self, home: HomeAggregator):
        assert await home.change_date(1) == TODAY
        assert home.selected_date == TODAY

    async def test_back_and_forward(self, home: HomeAggregator, meals: MealLogStore):
        await meals.insert(make_draft(calories=400, timestamp=ms(2023, 12, 31)))
        yesterday = _dt.date(2023, 12, 31)

        assert await home.change_date(-1) == yesterday
        state = await home.wait_for(_on(yesterday), timeout=2)
        assert state.consumed_calories == 400

        assert await home.change_date(1) == TODAY
        state = await home.wait_for(_on(TODAY), timeout=2)
        assert state.consumed_calories == 0

    async def test_no_state_leaks_from_previous_date(
        self,
        home: HomeAggregator,
        meals: MealLogStore,
        summaries: DailySummaryStore,
        targets: TargetConfigStore,
    ):
        yesterday = _dt.date(2023, 12, 31)
        await meals.insert(make_draft(calories=700, timestamp=ms(2024, 1, 1)))
        await meals.insert(make_draft(calories=400, timestamp=ms(2023, 12, 31)))
        await summaries.upsert_summary(TODAY, water_intake=5, streak_count=3)
        await home.wait_for(_on(TODAY, consumed_calories=700, water_intake=5), timeout=2)

        await home.change_date(-1)
        emitted: list[HomeState] = []
        remove = home.add_listener(emitted.append)
        await home.wait_for(_on(yesterday, consumed_calories=400), timeout=2)
        # Writes for the old date must not reach the new one.
        await meals.insert(make_draft(calories=50, timestamp=ms(2024, 1, 1, 18)))
        await summaries.add_water(TODAY, 1)
        await targets.set_targets(1800, 120, 150, 50)
        await home.wait_for(_on(yesterday, calorie_progress=400 / 1800), timeout=2)
        remove()

        assert emitted
        for state in emitted:
            assert state.date == yesterday
            assert state.consumed_calories == 400
            assert state.water_intake == 0
            assert state.streak == 0
            assert [m.calories for m in state.recent_logs] == [400]

    async def test_select_date_clamps_future(self, home: HomeAggregator):
        assert await home.select_date(_dt.date(2030, 1, 1)) == TODAY

    async def test_water_applies_to_selected_date(
        self, home: HomeAggregator, summaries: DailySummaryStore
    ):
        await home.change_date(-2)
        await home.update_water(3)
        row = await summaries.get_summary(_dt.date(2023, 12, 30)).snapshot()
        assert row.water_intake == 3
        assert await summaries.get_summary(TODAY).snapshot() is None


class TestListeners:
    async def test_listener_receives_states(self, home: HomeAggregator, meals: MealLogStore):
        seen: list[int] = []
        remove = home.add_listener(lambda state: seen.append(state.consumed_calories))
        await meals.insert(make_draft(calories=250))
        await home.wait_for(_on(TODAY, consumed_calories=250), timeout=2)
        remove()
        assert 250 in seen

    async def test_close_cancels_subscriptions(
        self,
        targets: TargetConfigStore,
        meals: MealLogStore,
        summaries: DailySummaryStore,
        bus,
    ):
        aggregator = HomeAggregator(targets, meals, summaries, tz=UTC, today=lambda: TODAY)
        names = [
            "meal_logs",
            channel("daily_summaries", TODAY.isoformat()),
            *(channel("preferences", key) for key in TARGET_KEYS),
        ]
        await aggregator.start()
        assert all(bus.listener_count(name) == 1 for name in names)
        await aggregator.close()
        assert all(bus.listener_count(name) == 0 for name in names)
