"""Shared fixtures: in-memory store, change bus, stores and helpers.

Uses an in-memory SQLite database (via aiosqlite) shared through a
single connection, so each test starts with empty tables.  Day
boundaries are computed in UTC unless a test says otherwise.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import json
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from gcal.db.session import Database
from gcal.live.query import ChangeBus
from gcal.services.nutrition_ai import NutritionAIService
from gcal.stores.meal_log import MealDraft, MealLogStore
from gcal.stores.summaries import DailySummaryStore
from gcal.stores.targets import TargetConfigStore

UTC = _dt.timezone.utc


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def database():
    """Create an in-memory database with all tables."""
    db = Database.from_url("sqlite+aiosqlite://")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def bus() -> ChangeBus:
    return ChangeBus()


@pytest.fixture
def meals(database: Database, bus: ChangeBus) -> MealLogStore:
    return MealLogStore(database, bus, UTC)


@pytest.fixture
def summaries(database: Database, bus: ChangeBus) -> DailySummaryStore:
    return DailySummaryStore(database, bus, UTC)


@pytest.fixture
def targets(database: Database, bus: ChangeBus) -> TargetConfigStore:
    return TargetConfigStore(database, bus)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ms(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> int:
    """Epoch milliseconds for a UTC wall-clock time."""
    moment = _dt.datetime(year, month, day, hour, minute, tzinfo=UTC)
    return int(moment.timestamp() * 1000)


def make_draft(
    food_name: str = "Test meal",
    calories: int = 500,
    protein: int = 30,
    carbs: int = 50,
    fat: int = 20,
    timestamp: int | None = None,
    **extra: Any,
) -> MealDraft:
    """Helper to build a MealDraft for testing."""
    return MealDraft(
        food_name=food_name,
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
        timestamp=timestamp if timestamp is not None else ms(2024, 1, 1),
        **extra,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until *predicate* holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def mock_openai(content: str | None = None, side_effect: BaseException | None = None) -> AsyncMock:
    """Build a mock client whose chat.completions.create returns *content*."""
    client = AsyncMock()
    if side_effect is not None:
        client.chat.completions.create.side_effect = side_effect
        return client
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]
    client.chat.completions.create.return_value = response
    return client


def ai_factory(payload: dict | str | None = None, side_effect: BaseException | None = None):
    """Return ``(factory, client)``; the factory ignores the API key."""
    content = json.dumps(payload) if isinstance(payload, dict) else payload
    client = mock_openai(content, side_effect)
    keys: list[str] = []

    def factory(api_key: str) -> NutritionAIService:
        keys.append(api_key)
        return NutritionAIService(client=client, model="gpt-4o-mini", timeout=10.0)

    factory.keys = keys  # type: ignore[attr-defined]
    return factory, client
