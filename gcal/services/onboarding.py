"""Onboarding: store the profile, ask the model for targets, save them."""

from __future__ import annotations

import logging

from gcal.services.capture import AIFactory, resolve_api_key
from gcal.stores.targets import TargetConfigStore, UserProfile, UserTargets

logger = logging.getLogger(__name__)

PROFILE_DEFAULTS = UserProfile(
    age=25,
    height=170.0,
    weight=70.0,
    gender="Male",
    activity_level="Sedentary (Student/Desk)",
    goal="Maintain",
    diet="Standard",
)


def with_defaults(profile: UserProfile) -> UserProfile:
    """Fill blank answers from ``PROFILE_DEFAULTS``."""
    filled = PROFILE_DEFAULTS.model_dump()
    filled.update({k: v for k, v in profile.model_dump().items() if v not in (None, "")})
    return UserProfile.model_validate(filled)


class OnboardingService:
    """Completes onboarding in one call.

    Args:
        ai_for: Builds a ``NutritionAIService`` for an API key.
        targets: Target configuration store.
        fallback_api_key: Used when neither the request nor settings hold a key.
    """

    def __init__(
        self,
        ai_for: AIFactory,
        targets: TargetConfigStore,
        *,
        fallback_api_key: str = "",
    ) -> None:
        self._ai_for = ai_for
        self._targets = targets
        self._fallback_api_key = fallback_api_key

    async def complete(self, profile: UserProfile, api_key: str = "") -> UserTargets:
        """Save credential and profile, then compute and save targets.

        Saving targets is what flips the onboarding-completed flag, so a
        failed model call leaves onboarding incomplete.
        """
        if api_key.strip():
            await self._targets.set_credential(api_key.strip())
        profile = with_defaults(profile)
        await self._targets.save_profile(profile)

        key = await resolve_api_key(self._targets, self._fallback_api_key)
        estimate = await self._ai_for(key).calculate_targets(profile)
        targets = await self._targets.set_targets(
            estimate.calories,
            estimate.protein,
            estimate.carbs,
            estimate.fat,
        )
        logger.info("Onboarding completed", extra={"event": "onboarding_completed"})
        return targets
