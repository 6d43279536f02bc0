"""Application context: every store and service, wired once.

Built at process start by ``build_context`` and passed down explicitly;
nothing else constructs stores or holds them in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from openai import AsyncOpenAI

from gcal.core.config import Settings
from gcal.db.session import Database
from gcal.home.aggregator import HomeAggregator
from gcal.live.query import ChangeBus
from gcal.services.capture import AIFactory, MealCaptureService
from gcal.services.nutrition_ai import NutritionAIService
from gcal.services.onboarding import OnboardingService
from gcal.stores.meal_log import MealLogStore
from gcal.stores.summaries import DailySummaryStore
from gcal.stores.targets import TargetConfigStore


@dataclass
class AIClients:
    """Caches one ``AsyncOpenAI`` client per API key."""

    settings: Settings
    _clients: dict[str, AsyncOpenAI] = field(default_factory=dict)

    def __call__(self, api_key: str) -> NutritionAIService:
        client = self._clients.get(api_key)
        if client is None:
            client = self._clients[api_key] = AsyncOpenAI(api_key=api_key)
        return NutritionAIService(
            client=client,
            model=self.settings.OPENAI_MODEL,
            timeout=self.settings.OPENAI_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


@dataclass
class AppContext:
    """Holds application-wide dependencies."""

    settings: Settings
    database: Database
    bus: ChangeBus
    meals: MealLogStore
    targets: TargetConfigStore
    summaries: DailySummaryStore
    ai_clients: AIClients
    capture: MealCaptureService
    onboarding: OnboardingService

    def new_home(self) -> HomeAggregator:
        """Create an (unstarted) aggregator bound to these stores."""
        return HomeAggregator(
            self.targets,
            self.meals,
            self.summaries,
            tz=self.settings.tzinfo,
            water_goal=self.settings.WATER_GOAL_ML,
        )

    async def close(self) -> None:
        await self.ai_clients.close()
        await self.database.dispose()


def build_context(
    settings: Settings,
    database: Database | None = None,
    ai_for: AIFactory | None = None,
) -> AppContext:
    """Create the default application context.

    Args:
        settings: Validated settings.
        database: Pre-built database (tests); created from
            ``DATABASE_URL`` when omitted.
        ai_for: Service factory override (tests); one cached
            ``AsyncOpenAI`` client per key when omitted.
    """
    tz = settings.tzinfo
    db = database or Database.from_url(settings.DATABASE_URL, retries=settings.STORAGE_RETRIES)
    bus = ChangeBus()

    meals = MealLogStore(db, bus, tz)
    targets = TargetConfigStore(db, bus)
    summaries = DailySummaryStore(db, bus, tz)
    ai_clients = AIClients(settings)
    ai_for = ai_for or ai_clients

    capture = MealCaptureService(
        ai_for,
        meals,
        summaries,
        targets,
        tz=tz,
        fallback_api_key=settings.OPENAI_API_KEY,
    )
    onboarding = OnboardingService(
        ai_for,
        targets,
        fallback_api_key=settings.OPENAI_API_KEY,
    )

    return AppContext(
        settings=settings,
        database=db,
        bus=bus,
        meals=meals,
        targets=targets,
        summaries=summaries,
        ai_clients=ai_clients,
        capture=capture,
        onboarding=onboarding,
    )
