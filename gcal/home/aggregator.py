"""Home screen state: live daily totals against targets.

``HomeAggregator`` combines three live sources for the selected date:

- targets (date-independent, subscribed once),
- the meal range ``[start_of_day, next_start_of_day - 1ms]``,
- the ``daily_summaries`` row for the date.

Each emission from any source triggers exactly one recomputation.
Nothing is emitted until all three sources have delivered for the
current date, so listeners never see a partial state.  Changing the
date cancels the date-bound subscriptions and drops any late deliveries
from them.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
from dataclasses import dataclass
from typing import Any, Callable

from gcal.core.time import day_window, shift_date, today_local
from gcal.db.models import DailySummary, MealLog
from gcal.live.query import Subscription
from gcal.stores.meal_log import MealLogStore
from gcal.stores.summaries import DailySummaryStore
from gcal.stores.targets import TargetConfigStore, UserTargets

logger = logging.getLogger(__name__)

RECENT_LOGS_LIMIT = 3

_TARGETS = "targets"
_MEALS = "meals"
_SUMMARY = "summary"
_SOURCES = (_TARGETS, _MEALS, _SUMMARY)

StateListener = Callable[["HomeState"], None]


@dataclass(frozen=True, slots=True)
class HomeState:
    """Derived view of one day.

    Progress values are ``consumed / target`` (0 when the target is 0)
    and may exceed 1; use ``ring_progress`` for display.
    """

    date: _dt.date
    targets: UserTargets
    consumed_calories: int
    consumed_protein: int
    consumed_carbs: int
    consumed_fat: int
    calorie_progress: float
    protein_progress: float
    carbs_progress: float
    fat_progress: float
    streak: int
    water_intake: int
    water_goal: int
    recent_logs: tuple[MealLog, ...]

    @property
    def remaining_calories(self) -> int:
        return self.targets.calories - self.consumed_calories


def progress_ratio(consumed: int, target: int) -> float:
    """``consumed / target``; 0 when *target* is not positive."""
    if target <= 0:
        return 0.0
    return consumed / target


def ring_progress(ratio: float) -> float:
    """Clamp a progress ratio to ``[0, 1]``."""
    return min(max(ratio, 0.0), 1.0)


def derive_home_state(
    day: _dt.date,
    targets: UserTargets,
    meals: list[MealLog],
    summary: DailySummary | None,
    water_goal: int = 2500,
) -> HomeState:
    """Compute the home state from one snapshot of each source.

    *meals* must already be ordered newest first.
    """
    calories = sum(m.calories for m in meals)
    protein = sum(m.protein for m in meals)
    carbs = sum(m.carbs for m in meals)
    fat = sum(m.fat for m in meals)
    return HomeState(
        date=day,
        targets=targets,
        consumed_calories=calories,
        consumed_protein=protein,
        consumed_carbs=carbs,
        consumed_fat=fat,
        calorie_progress=progress_ratio(calories, targets.calories),
        protein_progress=progress_ratio(protein, targets.protein),
        carbs_progress=progress_ratio(carbs, targets.carbs),
        fat_progress=progress_ratio(fat, targets.fat),
        streak=summary.streak_count if summary is not None else 0,
        water_intake=summary.water_intake if summary is not None else 0,
        water_goal=water_goal,
        recent_logs=tuple(meals[:RECENT_LOGS_LIMIT]),
    )


class HomeAggregator:
    """Live home state for a navigable selected date.

    Args:
        targets: Target configuration store.
        meals: Meal log store.
        summaries: Daily summary store.
        tz: Timezone defining day boundaries and "today".
        water_goal: Daily water goal carried into the state.
        today: Clock override returning the current local date.
    """

    def __init__(
        self,
        targets: TargetConfigStore,
        meals: MealLogStore,
        summaries: DailySummaryStore,
        *,
        tz: _dt.tzinfo,
        water_goal: int = 2500,
        today: Callable[[], _dt.date] | None = None,
    ) -> None:
        self._targets = targets
        self._meals = meals
        self._summaries = summaries
        self._tz = tz
        self._water_goal = water_goal
        self._today = today or (lambda: today_local(tz))

        self._selected = self._today()
        self._generation = 0
        self._latest: dict[str, Any] = {}
        self._state: HomeState | None = None
        self._listeners: list[StateListener] = []
        self._targets_sub: Subscription | None = None
        self._date_subs: list[Subscription] = []
        self._lock = asyncio.Lock()

    @property
    def selected_date(self) -> _dt.date:
        return self._selected

    @property
    def state(self) -> HomeState | None:
        """Latest complete state, or ``None`` before the first emission."""
        return self._state

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self) -> None:
        """Subscribe to targets and to the sources for today."""
        async with self._lock:
            if self._targets_sub is None:
                self._targets_sub = self._targets.get_targets().subscribe(
                    lambda value: self._on_source(_TARGETS, value, None)
                )
            await self._bind(self._selected)

    async def close(self) -> None:
        """Cancel every subscription."""
        async with self._lock:
            await self._unbind()
            if self._targets_sub is not None:
                await self._targets_sub.cancel()
                self._targets_sub = None

    async def change_date(self, days: int) -> _dt.date:
        """Move the selected date by *days*; never past today.

        Returns:
            The (possibly unchanged) selected date.
        """
        return await self.select_date(shift_date(self._selected, days, self._today()))

    async def select_date(self, day: _dt.date) -> _dt.date:
        """Jump to *day*, clamped to today."""
        day = min(day, self._today())
        async with self._lock:
            if day != self._selected or not self._date_subs:
                await self._bind(day)
        return self._selected

    async def update_water(self, delta: int) -> int:
        """Add *delta* to the selected day's water count (clamped at 0)."""
        return await self._summaries.add_water(self._selected, delta)

    async def wait_for(
        self,
        predicate: Callable[[HomeState], bool],
        timeout: float | None = None,
    ) -> HomeState:
        """Return the first state (current or future) matching *predicate*."""
        if self._state is not None and predicate(self._state):
            return self._state

        future: asyncio.Future[HomeState] = asyncio.get_running_loop().create_future()

        def listener(state: HomeState) -> None:
            if not future.done() and predicate(state):
                future.set_result(state)

        remove = self.add_listener(listener)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            remove()

    # --- internals -------------------------------------------------------
    async def _unbind(self) -> None:
        subs, self._date_subs = self._date_subs, []
        for sub in subs:
            await sub.cancel()

    async def _bind(self, day: _dt.date) -> None:
        await self._unbind()
        self._generation += 1
        generation = self._generation
        self._selected = day
        self._state = None
        self._latest.pop(_MEALS, None)
        self._latest.pop(_SUMMARY, None)

        start_ms, end_ms = day_window(day, self._tz)
        logger.debug(
            "Binding home state to %s",
            day,
            extra={"event": "home_date_bound", "date": day.isoformat()},
        )
        self._date_subs = [
            self._meals.query_range(start_ms, end_ms).subscribe(
                lambda value: self._on_source(_MEALS, value, generation)
            ),
            self._summaries.get_summary(day).subscribe(
                lambda value: self._on_source(_SUMMARY, value, generation)
            ),
        ]

    def _on_source(self, source: str, value: Any, generation: int | None) -> None:
        if generation is not None and generation != self._generation:
            return  # late delivery for a previous date
        self._latest[source] = value
        if not all(name in self._latest for name in _SOURCES):
            return
        state = derive_home_state(
            self._selected,
            self._latest[_TARGETS],
            self._latest[_MEALS],
            self._latest[_SUMMARY],
            self._water_goal,
        )
        self._state = state
        for listener in list(self._listeners):
            listener(state)
