"""FastAPI application: home state, meal capture, settings, lifecycle.

A thin presentation surface over ``AppContext``; every failure is
turned into ``{"error": <user message>}`` here, at the boundary closest
to the user action.

Database migrations run automatically on startup via Alembic.
"""

from __future__ import annotations

import base64
import binascii
import logging
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gcal.container import AppContext, build_context
from gcal.core.config import get_settings
from gcal.core.errors import (
    GENERIC_MESSAGE,
    CredentialMissingError,
    GCalError,
    ParseError,
    RemoteServiceError,
    StorageError,
    ValidationError,
)
from gcal.core.logging import setup_logging
from gcal.core.time import last_7_days, today_local
from gcal.core.version import get_version
from gcal.db.models import DailySummary, MealLog
from gcal.home.aggregator import HomeAggregator, HomeState, ring_progress
from gcal.stores.meal_log import MealDraft, group_by_day
from gcal.stores.targets import UserProfile, UserTargets

logger = logging.getLogger(__name__)

HOME_STATE_TIMEOUT = 5.0

_STATUS_BY_ERROR: list[tuple[type[GCalError], int]] = [
    (ValidationError, 422),
    (CredentialMissingError, 400),
    (ParseError, 502),
    (RemoteServiceError, 502),
    (StorageError, 503),
]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class DateShift(BaseModel):
    days: int


class WaterChange(BaseModel):
    delta: int | None = None


class TextCapture(BaseModel):
    text: str


class ImageCapture(BaseModel):
    image_base64: str
    hint: str = ""
    photo_uri: str | None = None


class CredentialBody(BaseModel):
    api_key: str


class DietBody(BaseModel):
    diet: str


class OnboardingBody(UserProfile):
    api_key: str = ""


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def meal_json(meal: MealLog) -> dict[str, Any]:
    return {
        "id": meal.id,
        "timestamp": meal.timestamp,
        "food_name": meal.food_name,
        "calories": meal.calories,
        "protein": meal.protein,
        "carbs": meal.carbs,
        "fat": meal.fat,
        "photo_uri": meal.photo_uri,
        "is_manual": meal.is_manual,
    }


def summary_json(summary: DailySummary) -> dict[str, Any]:
    return {
        "date": summary.date,
        "streak": summary.streak_count,
        "water_intake": summary.water_intake,
        "goal_calories": summary.goal_calories,
    }


def home_json(state: HomeState) -> dict[str, Any]:
    return {
        "date": state.date.isoformat(),
        "targets": state.targets.model_dump(),
        "consumed": {
            "calories": state.consumed_calories,
            "protein": state.consumed_protein,
            "carbs": state.consumed_carbs,
            "fat": state.consumed_fat,
        },
        "remaining_calories": state.remaining_calories,
        "progress": {
            "calories": state.calorie_progress,
            "protein": state.protein_progress,
            "carbs": state.carbs_progress,
            "fat": state.fat_progress,
        },
        "rings": {
            "calories": ring_progress(state.calorie_progress),
            "protein": ring_progress(state.protein_progress),
            "carbs": ring_progress(state.carbs_progress),
            "fat": ring_progress(state.fat_progress),
        },
        "streak": state.streak,
        "water_intake": state.water_intake,
        "water_goal": state.water_goal,
        "recent_logs": [meal_json(m) for m in state.recent_logs],
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_migrations() -> None:
    """Run ``alembic upgrade head`` via subprocess.

    Uses subprocess because ``alembic/env.py`` calls ``asyncio.run()``
    internally; invoking it from an already-running event loop would
    raise ``RuntimeError``.
    """
    logger.info("Running database migrations", extra={"event": "migrations_start"})
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        logger.error(
            "Migration failed: %s",
            result.stderr,
            extra={"event": "migrations_failed"},
        )
        raise RuntimeError(f"Alembic migration failed:\n{result.stderr}")
    logger.info("Database migrations complete", extra={"event": "migrations_done"})


def _context(request: Request) -> AppContext:
    return request.app.state.context


async def _home(request: Request) -> HomeAggregator:
    """Return the started aggregator, starting it on first use."""
    home: HomeAggregator | None = request.app.state.home
    if home is None:
        home = _context(request).new_home()
        await home.start()
        request.app.state.home = home
    return home


async def _current_state(home: HomeAggregator) -> HomeState:
    """Wait for the state of whichever date is selected when it arrives."""
    return await home.wait_for(
        lambda s: s.date == home.selected_date, timeout=HOME_STATE_TIMEOUT
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        context: Pre-built context (tests).  When omitted, the lifespan
            configures logging, migrates and builds one from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_context = app.state.context is None
        if owns_context:
            settings = get_settings()
            setup_logging(settings.LOG_LEVEL)
            _run_migrations()
            app.state.context = build_context(settings)
        logger.info("Application started", extra={"event": "startup"})

        yield

        if app.state.home is not None:
            await app.state.home.close()
            app.state.home = None
        if owns_context:
            await app.state.context.close()
        logger.info("Application stopped", extra={"event": "shutdown"})

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.context = context
    app.state.home = None

    @app.exception_handler(GCalError)
    async def gcal_error_handler(request: Request, exc: GCalError) -> JSONResponse:
        status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
        logger.warning(
            "Request failed: %s",
            exc.user_message,
            extra={"event": "request_failed"},
        )
        return JSONResponse({"error": exc.user_message}, status_code=status)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error", extra={"event": "request_error"})
        return JSONResponse({"error": GENERIC_MESSAGE}, status_code=500)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/version")
    async def version() -> dict[str, str]:
        return {"version": get_version()}

    # --- home ------------------------------------------------------------
    @app.get("/home")
    async def get_home(request: Request) -> dict[str, Any]:
        home = await _home(request)
        return home_json(await _current_state(home))

    @app.post("/home/date")
    async def shift_date(body: DateShift, request: Request) -> dict[str, Any]:
        home = await _home(request)
        await home.change_date(body.days)
        return home_json(await _current_state(home))

    @app.post("/home/water")
    async def update_water(body: WaterChange, request: Request) -> dict[str, Any]:
        home = await _home(request)
        delta = body.delta if body.delta is not None else _context(request).settings.WATER_STEP_ML
        water = await home.update_water(delta)
        return {"date": home.selected_date.isoformat(), "water_intake": water}

    # --- meals -----------------------------------------------------------
    @app.get("/meals")
    async def list_meals(request: Request) -> list[dict[str, Any]]:
        ctx = _context(request)
        meals = await ctx.meals.query_all().snapshot()
        return [
            {"date": day.isoformat(), "meals": [meal_json(m) for m in day_meals]}
            for day, day_meals in group_by_day(meals, ctx.settings.tzinfo)
        ]

    @app.delete("/meals/{meal_id}")
    async def delete_meal(meal_id: int, request: Request) -> dict[str, bool]:
        return {"deleted": await _context(request).capture.delete(meal_id)}

    # --- capture ---------------------------------------------------------
    @app.post("/capture/text")
    async def capture_text(body: TextCapture, request: Request) -> dict[str, Any]:
        draft = await _context(request).capture.analyze_text(body.text)
        return draft.model_dump()

    @app.post("/capture/image")
    async def capture_image(body: ImageCapture, request: Request) -> dict[str, Any]:
        try:
            image = base64.b64decode(body.image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Image is not valid base64.") from exc
        draft = await _context(request).capture.analyze_image(image, body.hint, body.photo_uri)
        return draft.model_dump()

    @app.post("/capture/save")
    async def capture_save(body: MealDraft, request: Request) -> dict[str, Any]:
        meal = await _context(request).capture.save(body)
        return meal_json(meal)

    # --- settings --------------------------------------------------------
    @app.get("/settings/targets")
    async def get_targets(request: Request) -> dict[str, Any]:
        targets = await _context(request).targets.get_targets().snapshot()
        return targets.model_dump()

    @app.put("/settings/targets")
    async def put_targets(body: UserTargets, request: Request) -> dict[str, Any]:
        targets = await _context(request).targets.set_targets(
            body.calories, body.protein, body.carbs, body.fat
        )
        return targets.model_dump()

    @app.put("/settings/credential")
    async def put_credential(body: CredentialBody, request: Request) -> dict[str, str]:
        await _context(request).targets.set_credential(body.api_key)
        return {"status": "ok"}

    @app.get("/settings/diet")
    async def get_diet(request: Request) -> dict[str, str]:
        return {"diet": await _context(request).targets.get_diet().snapshot()}

    @app.put("/settings/diet")
    async def put_diet(body: DietBody, request: Request) -> dict[str, str]:
        await _context(request).targets.set_diet(body.diet)
        return {"diet": body.diet}

    @app.post("/onboarding")
    async def onboarding(body: OnboardingBody, request: Request) -> dict[str, Any]:
        profile = UserProfile.model_validate(body.model_dump(exclude={"api_key"}))
        targets = await _context(request).onboarding.complete(profile, body.api_key)
        return targets.model_dump()

    @app.get("/summaries/recent")
    async def recent_summaries(request: Request, n: int = 7) -> list[dict[str, Any]]:
        rows = await _context(request).summaries.get_recent(n).snapshot()
        return [summary_json(row) for row in rows]

    @app.get("/stats/week")
    async def week_stats(request: Request) -> list[dict[str, Any]]:
        ctx = _context(request)
        days = last_7_days(today_local(ctx.settings.tzinfo))
        totals = await ctx.meals.daily_totals(days)
        return [{**row, "date": row["date"].isoformat()} for row in totals]

    return app


app = create_app()


def run() -> None:
    """Serve ``app`` with uvicorn on the configured ``PORT``."""
    uvicorn.run("gcal.web.main:app", host="0.0.0.0", port=get_settings().PORT)
