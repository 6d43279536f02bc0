"""Target configuration store: daily targets, profile and credential.

All values live in the ``preferences`` key-value table; each live read
is re-run only when one of the keys it reads is written.  Targets fall
back to 2000 kcal / 150 g protein / 200 g carbs / 60 g fat until the
user sets them; setting them is also what marks onboarding complete.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gcal.core.errors import ValidationError
from gcal.db.repos import PreferenceRepo
from gcal.db.session import Database
from gcal.live.query import ChangeBus, LiveQuery, channel

logger = logging.getLogger(__name__)

TABLE = "preferences"

T = TypeVar("T")

# Preference keys
API_KEY = "api_key"
AGE = "age"
HEIGHT = "height"
WEIGHT = "weight"
GENDER = "gender"
ACTIVITY_LEVEL = "activity_level"
GOAL = "goal"
DIET = "diet"
TARGET_CALORIES = "target_calories"
TARGET_PROTEIN = "target_protein"
TARGET_CARBS = "target_carbs"
TARGET_FAT = "target_fat"
ONBOARDING_COMPLETED = "onboarding_completed"

PROFILE_KEYS = [AGE, HEIGHT, WEIGHT, GENDER, ACTIVITY_LEVEL, GOAL, DIET]
TARGET_KEYS = [TARGET_CALORIES, TARGET_PROTEIN, TARGET_CARBS, TARGET_FAT]

DEFAULT_DIET = "Balanced"

MAX_TARGET_CALORIES = 20_000
MAX_TARGET_MACRO_G = 2_000


class UserTargets(BaseModel):
    """Daily calorie and macro goals."""

    calories: int = 2000
    protein: int = 150
    carbs: int = 200
    fat: int = 60


class UserProfile(BaseModel):
    """Onboarding answers; every field is optional until set."""

    age: int | None = None
    height: float | None = None
    weight: float | None = None
    gender: str | None = None
    activity_level: str | None = None
    goal: str | None = None
    diet: str | None = None


def check_targets(targets: UserTargets) -> None:
    """Reject negative or absurd targets."""
    checks = [
        ("Calories", targets.calories, MAX_TARGET_CALORIES),
        ("Protein", targets.protein, MAX_TARGET_MACRO_G),
        ("Carbs", targets.carbs, MAX_TARGET_MACRO_G),
        ("Fat", targets.fat, MAX_TARGET_MACRO_G),
    ]
    for label, value, limit in checks:
        if value < 0:
            raise ValidationError(f"{label} target ({value}) must not be negative.")
        if value > limit:
            raise ValidationError(f"{label} target ({value}) exceeds maximum ({limit}).")


class TargetConfigStore:
    """Typed access to user settings with live reads.

    Args:
        db: Database holder.
        bus: Change bus notified after each committed mutation.
    """

    def __init__(self, db: Database, bus: ChangeBus) -> None:
        self._db = db
        self._bus = bus

    # --- internals -------------------------------------------------------
    def _live(
        self,
        keys: list[str],
        convert: Callable[[dict[str, str]], T],
        name: str,
    ) -> LiveQuery[T]:
        async def fetch() -> T:
            values = await self._db.run(PreferenceRepo.get_many, keys)
            return convert(values)

        channels = tuple(channel(TABLE, key) for key in keys)
        return LiveQuery(self._bus, channels, fetch, name=name)

    async def _write(self, values: dict[str, str], clear: list[str] | None = None) -> None:
        async def work(session: AsyncSession) -> None:
            if clear:
                await PreferenceRepo.delete_many(session, clear)
            await PreferenceRepo.set_many(session, values)

        await self._db.run(work)
        touched = {*values, *(clear or [])}
        self._bus.notify(TABLE, *(channel(TABLE, key) for key in sorted(touched)))

    # --- targets ---------------------------------------------------------
    def get_targets(self) -> LiveQuery[UserTargets]:
        def convert(values: dict[str, str]) -> UserTargets:
            defaults = UserTargets()
            return UserTargets(
                calories=int(values.get(TARGET_CALORIES, defaults.calories)),
                protein=int(values.get(TARGET_PROTEIN, defaults.protein)),
                carbs=int(values.get(TARGET_CARBS, defaults.carbs)),
                fat=int(values.get(TARGET_FAT, defaults.fat)),
            )

        return self._live(TARGET_KEYS, convert, "targets")

    async def set_targets(self, calories: int, protein: int, carbs: int, fat: int) -> UserTargets:
        """Overwrite all four targets and mark onboarding complete, atomically."""
        targets = UserTargets(calories=calories, protein=protein, carbs=carbs, fat=fat)
        check_targets(targets)
        await self._write(
            {
                TARGET_CALORIES: str(targets.calories),
                TARGET_PROTEIN: str(targets.protein),
                TARGET_CARBS: str(targets.carbs),
                TARGET_FAT: str(targets.fat),
                ONBOARDING_COMPLETED: "true",
            }
        )
        logger.info("Targets updated", extra={"event": "targets_updated"})
        return targets

    def get_onboarding_completed(self) -> LiveQuery[bool]:
        return self._live(
            [ONBOARDING_COMPLETED],
            lambda values: values.get(ONBOARDING_COMPLETED) == "true",
            "onboarding_completed",
        )

    # --- credential ------------------------------------------------------
    def get_credential(self) -> LiveQuery[str | None]:
        return self._live([API_KEY], lambda values: values.get(API_KEY), "credential")

    async def set_credential(self, value: str) -> None:
        # Stored as-is; encryption at rest is not provided by this store.
        await self._write({API_KEY: value})

    # --- profile ---------------------------------------------------------
    def get_profile(self) -> LiveQuery[UserProfile]:
        return self._live(
            PROFILE_KEYS,
            lambda values: UserProfile.model_validate(values),
            "profile",
        )

    async def save_profile(self, profile: UserProfile) -> None:
        """Replace the stored profile wholesale; ``None`` fields are cleared."""
        values = {
            key: str(value)
            for key, value in profile.model_dump().items()
            if value is not None
        }
        await self._write(values, clear=PROFILE_KEYS)

    def get_diet(self) -> LiveQuery[str]:
        return self._live([DIET], lambda values: values.get(DIET, DEFAULT_DIET), "diet")

    async def set_diet(self, value: str) -> None:
        await self._write({DIET: value})
