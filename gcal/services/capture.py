"""Meal capture pipeline: analyze → draft → save.

Analysis never writes anything; only ``save`` inserts an entry.  After a
meal is saved or deleted, the day's summary row (streak and totals
snapshot) is refreshed as a separate, non-atomic step.
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Callable

from gcal.core.errors import CredentialMissingError, ValidationError
from gcal.core.time import local_date_from_ms, today_local
from gcal.db.models import MealLog
from gcal.services.nutrition_ai import FoodEstimate, NutritionAIService
from gcal.stores.meal_log import MealDraft, MealLogStore
from gcal.stores.summaries import DailySummaryStore
from gcal.stores.targets import TargetConfigStore

logger = logging.getLogger(__name__)

AIFactory = Callable[[str], NutritionAIService]


async def resolve_api_key(targets: TargetConfigStore, fallback: str = "") -> str:
    """Saved credential, else *fallback*.

    Raises:
        CredentialMissingError: Neither is set.
    """
    key = await targets.get_credential().snapshot()
    key = (key or fallback or "").strip()
    if not key:
        raise CredentialMissingError()
    return key


def _draft(estimate: FoodEstimate, *, is_manual: bool, photo_uri: str | None = None) -> MealDraft:
    return MealDraft(
        food_name=estimate.food_name,
        calories=estimate.calories,
        protein=estimate.protein,
        carbs=estimate.carbs,
        fat=estimate.fat,
        photo_uri=photo_uri,
        is_manual=is_manual,
    )


class MealCaptureService:
    """Turns user input into meal entries.

    Args:
        ai_for: Builds a ``NutritionAIService`` for an API key.
        meals: Meal log store.
        summaries: Daily summary store.
        targets: Target configuration store (credential + calorie goal).
        tz: Timezone for day bucketing.
        fallback_api_key: Used when no key is saved in settings.
    """

    def __init__(
        self,
        ai_for: AIFactory,
        meals: MealLogStore,
        summaries: DailySummaryStore,
        targets: TargetConfigStore,
        *,
        tz: _dt.tzinfo,
        fallback_api_key: str = "",
    ) -> None:
        self._ai_for = ai_for
        self._meals = meals
        self._summaries = summaries
        self._targets = targets
        self._tz = tz
        self._fallback_api_key = fallback_api_key

    async def analyze_text(self, text: str) -> MealDraft:
        """Estimate a free-text description; returns an unsaved draft."""
        if not text or not text.strip():
            raise ValidationError("Describe what you ate.")
        ai = self._ai_for(await resolve_api_key(self._targets, self._fallback_api_key))
        estimate = await ai.analyze_text(text.strip())
        return _draft(estimate, is_manual=True)

    async def analyze_image(
        self,
        image_bytes: bytes,
        hint: str = "",
        photo_uri: str | None = None,
    ) -> MealDraft:
        """Estimate a food photo; returns an unsaved draft."""
        if not image_bytes:
            raise ValidationError("No image captured.")
        ai = self._ai_for(await resolve_api_key(self._targets, self._fallback_api_key))
        estimate = await ai.analyze_image(image_bytes, hint)
        return _draft(estimate, is_manual=False, photo_uri=photo_uri)

    async def save(self, draft: MealDraft) -> MealLog:
        """Insert the accepted draft and refresh its day's summary."""
        meal = await self._meals.insert(draft)
        await self._refresh(local_date_from_ms(meal.timestamp, self._tz))
        return meal

    async def delete(self, meal_id: int) -> bool:
        """Delete an entry (no-op when absent) and refresh its day's summary."""
        meal = await self._meals.get(meal_id)
        if meal is None:
            return False
        removed = await self._meals.delete(meal_id)
        if removed:
            await self._refresh(local_date_from_ms(meal.timestamp, self._tz))
        return removed

    async def _refresh(self, day: _dt.date) -> None:
        targets = await self._targets.get_targets().snapshot()
        await self._summaries.refresh_day(day, targets.calories, today_local(self._tz))
