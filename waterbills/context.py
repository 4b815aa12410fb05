"""
Runtime context shared by the scheduler, the worker pool and job handlers.

Built explicitly at startup and passed around; nothing here is a module
global, so tests can build one against their own database.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from waterbills.config import Config, config as default_config
from waterbills.database.core import make_engine, make_session_factory
from waterbills.services.notification_service import NotificationService


class AppContext:
    def __init__(
        self,
        engine: AsyncEngine,
        settings: Config = default_config,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.engine = engine
        self.settings = settings
        self.notifier = notifier
        self.clock = clock
        self.session_factory = make_session_factory(engine)
        self._started = False

    @classmethod
    def from_config(cls, settings: Config = default_config) -> "AppContext":
        engine = make_engine(settings.DATABASE_URL)
        notifier = None
        if settings.BOT_TOKEN and settings.OPERATOR_IDS:
            notifier = NotificationService.from_token(settings.BOT_TOKEN, settings.OPERATOR_IDS)
        return cls(engine, settings=settings, notifier=notifier)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self):
        if self._started:
            return
        # Fail fast if the database is unreachable
        async with self.engine.connect():
            pass
        self._started = True
        logging.info("Application context started")

    async def stop(self):
        if not self._started:
            return
        if self.notifier:
            await self.notifier.close()
        await self.engine.dispose()
        self._started = False
        logging.info("Application context stopped")

    def now(self) -> datetime:
        return self.clock()

    async def alert_operators(self, text: str):
        if not self.notifier:
            logging.info(f"No operator notifier configured, alert not sent: {text}")
            return
        await self.notifier.notify_operators(text)
