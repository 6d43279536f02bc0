"""OpenAI-powered nutrition estimation.

Sends a food description or photo (or an onboarding profile) to the
model and asks for a bare JSON object.  The reply is validated against
an explicit schema:

- missing fields take their defaults (0, or ``"Unknown Food"``),
- a reply that is not a JSON object, has a field of the wrong type or
  none of the expected keys raises ``ParseError``,
- any API failure raises ``RemoteServiceError`` with the API message.
"""

from __future__ import annotations

import base64
import logging
import math
import time
from typing import Any, TypeVar

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from gcal.core.errors import ParseError, RemoteServiceError
from gcal.stores.targets import UserProfile

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


def _to_int(value: Any) -> Any:
    """Accept ``250``, ``250.4`` or ``"250"`` for integer fields.

    Anything else, including non-finite numbers, is passed through for
    the field validation to reject.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return value
    if isinstance(value, float):
        return round(value) if math.isfinite(value) else value
    return value


class FoodEstimate(BaseModel):
    """Estimated nutrition for one food item (``foodName`` on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    food_name: str = Field(default="Unknown Food", alias="foodName")
    calories: int = 0
    protein: int = 0
    carbs: int = 0
    fat: int = 0

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> Any:
        return _to_int(v)


class TargetEstimate(BaseModel):
    """Daily targets suggested for an onboarding profile."""

    calories: int = 2000
    protein: int = 150
    carbs: int = 200
    fat: int = 60

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> Any:
        return _to_int(v)


M = TypeVar("M", FoodEstimate, TargetEstimate)

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """\
You are a nutrition estimation assistant. Reply with a single JSON object \
and nothing else: no markdown, no code fences, no commentary. All numbers \
are non-negative integers (kcal for calories, grams for macros).
"""

FOOD_INSTRUCTION = (
    "Return JSON with keys: 'foodName', 'calories', 'protein', 'carbs', 'fat'."
)

TARGETS_INSTRUCTION = (
    "Calculate precise daily calorie, protein, carb and fat targets. "
    "Return JSON with keys: 'calories', 'protein', 'carbs', 'fat'."
)


def text_prompt(text: str) -> str:
    return f'Estimate nutritional values for a standard portion of: "{text}". {FOOD_INSTRUCTION}'


def image_prompt(hint: str) -> str:
    prompt = "Analyze the food in this photo."
    if hint:
        prompt += f" Hint: {hint}."
    return f"{prompt} {FOOD_INSTRUCTION}"


def targets_prompt(profile: UserProfile) -> str:
    return (
        f"User is {profile.age} years old, {profile.height} cm, {profile.weight} kg, "
        f"{profile.gender}, diet: {profile.diet}, activity level: {profile.activity_level}. "
        f"Goal: {profile.goal}. {TARGETS_INSTRUCTION}"
    )


def parse_reply(content: str | None, schema: type[M]) -> M:
    """Decode the model reply into *schema*.

    Raises:
        ParseError: Not a JSON object, a field of the wrong type, or
            none of the schema's keys present.
    """
    if not content:
        raise ParseError()
    try:
        result = schema.model_validate_json(content)
    except PydanticValidationError as exc:
        raise ParseError() from exc
    if not result.model_fields_set:
        raise ParseError()
    return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class NutritionAIService:
    """Facade for OpenAI nutrition estimation.

    Args:
        client: An ``AsyncOpenAI`` instance.
        model: Model name (e.g. ``"gpt-4o-mini"``).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._model = model
        self._timeout = timeout

    async def analyze_text(self, text: str) -> FoodEstimate:
        """Estimate nutrition for a free-text food description."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": text_prompt(text)},
        ]
        return await self._call(messages, FoodEstimate)

    async def analyze_image(self, image_bytes: bytes, hint: str = "") -> FoodEstimate:
        """Estimate nutrition for a food photo (JPEG/PNG bytes)."""
        b64 = base64.b64encode(image_bytes).decode()
        content: list[dict] = [
            {"type": "text", "text": image_prompt(hint)},
            {
                "type": "image_url",
                "image_url": {"url": f"data:image/jpeg;base64,{b64}"},
            },
        ]
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]
        return await self._call(messages, FoodEstimate)

    async def calculate_targets(self, profile: UserProfile) -> TargetEstimate:
        """Suggest daily targets for an onboarding profile."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": targets_prompt(profile)},
        ]
        return await self._call(messages, TargetEstimate)

    async def _call(self, messages: list[dict], schema: type[M]) -> M:
        """Send the request and decode the JSON reply into *schema*."""
        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                response_format={"type": "json_object"},
                timeout=self._timeout,
            )
        except OpenAIError as exc:
            logger.error(
                "OpenAI API error: %s",
                exc,
                extra={"event": "openai_error", "model": self._model},
            )
            raise RemoteServiceError(str(exc) or None) from exc

        latency_ms = int((time.monotonic() - started) * 1000)
        content = response.choices[0].message.content if response.choices else None
        try:
            result = parse_reply(content, schema)
        except ParseError:
            logger.warning(
                "Unparseable OpenAI response",
                extra={"event": "openai_parse_error", "model": self._model},
            )
            raise
        logger.info(
            "OpenAI response parsed",
            extra={"event": "openai_ok", "model": self._model, "latency_ms": latency_ms},
        )
        return result
