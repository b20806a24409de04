"""Service orchestrator — HitballApp.

config → storage load → components → Telegram session → bot identity →
metrics → long-polling loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

import aiohttp

from . import __version__
from .achievement_engine import AchievementEngine
from .chat_handler import ChatHandler
from .config import HitballConfig, load_config
from .counter_store import CounterStore
from .identity_resolver import IdentityResolver
from .metrics_server import MetricsServer
from .rate_limiter import RateLimiter
from .storage import JsonSnapshotStorage, StorageError
from .telegram_client import TelegramAPIError, TelegramClient

_POLL_ERRORS = (TelegramAPIError, aiohttp.ClientError, asyncio.TimeoutError)
_POLL_RETRY_SECONDS = 5


class HitballApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str, data_path: str | None = None) -> None:
        self.config_path = Path(config_path)
        self.data_path = data_path
        self.logger = logging.getLogger("hitball")

        # Components (initialized in start())
        self.config: HitballConfig | None = None
        self.client: TelegramClient | None = None
        self.storage: JsonSnapshotStorage | None = None
        self.store: CounterStore | None = None
        self.rate_limiter: RateLimiter | None = None
        self.resolver: IdentityResolver | None = None
        self.achievement_engine: AchievementEngine | None = None
        self.chat_handler: ChatHandler | None = None
        self.metrics_server: MetricsServer | None = None

        # State
        self._running = False
        self._stopped = False
        self._start_time: float | None = None
        self._poll_task: asyncio.Task | None = None
        self._offset: int | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def start(self) -> None:
        """Start the bot and block until the polling loop ends."""
        self.logger.info("Starting hitball...")
        self._start_time = time.time()

        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        if self.data_path:
            self.config.storage.path = self.data_path
        self.logger.info("Config loaded from %s", self.config_path)

        # 2. Load the counter snapshot
        self.storage = JsonSnapshotStorage(self.config.storage.path, self.logger)
        self.store = CounterStore(self.storage, self.logger)
        try:
            await self.store.load()
        except StorageError:
            # Keep serving on whatever the store holds in memory (empty on first start)
            self.logger.exception(
                "Data file %s could not be loaded, continuing with %d in-memory record(s)",
                self.config.storage.path, len(self.store),
            )

        # 3. Initialize domain components
        self.client = TelegramClient(self.config.telegram, self.logger)
        self.rate_limiter = RateLimiter(self.config.rate_limit)
        self.resolver = IdentityResolver(
            config=self.config.resolver,
            store=self.store,
            lookup=self.client,
            logger=self.logger,
        )
        self.achievement_engine = AchievementEngine(
            config=self.config,
            store=self.store,
            logger=self.logger,
        )
        self.chat_handler = ChatHandler(
            config=self.config,
            store=self.store,
            resolver=self.resolver,
            rate_limiter=self.rate_limiter,
            client=self.client,
            achievement_engine=self.achievement_engine,
            logger=self.logger,
        )

        # 4. Open the Bot API session and learn who we are
        await self.client.start()
        me = await self.client.get_me()
        await self.chat_handler.set_bot_user(me)

        # 5. Start metrics server
        if self.config.metrics.enabled:
            self.metrics_server = MetricsServer(
                self,
                host=self.config.metrics.host,
                port=self.config.metrics.port,
                logger=self.logger,
            )
            await self.metrics_server.start()

        # 6. Mark running
        self._running = True
        self.logger.info(
            "hitball started successfully (v%s) with %d record(s)", __version__, len(self.store),
        )

        # 7. Block on the polling loop
        self._poll_task = asyncio.create_task(self._poll_loop())
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if self._stopped or self._start_time is None:
            return
        self._stopped = True
        self.logger.info("Shutting down hitball...")
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        if self.metrics_server:
            await self.metrics_server.stop()
        if self.client:
            await self.client.stop()

        self.logger.info("hitball stopped.")

    # ══════════════════════════════════════════════════════════
    #  Polling
    # ══════════════════════════════════════════════════════════

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                updates = await self.client.get_updates(self._offset)
            except _POLL_ERRORS as e:
                self.logger.warning("getUpdates failed: %s; retrying in %ds", e, _POLL_RETRY_SECONDS)
                await asyncio.sleep(_POLL_RETRY_SECONDS)
                continue

            for update in updates or []:
                await self.process_update(update)

    async def process_update(self, update: dict[str, Any]) -> None:
        """Advance the offset and hand the update's message to the chat handler."""
        update_id = update.get("update_id")
        if update_id is not None:
            self._offset = max(self._offset or 0, update_id + 1)

        message = update.get("message")
        if not message:
            return
        try:
            await self.chat_handler.handle_message(message)
        except Exception:
            self.logger.exception("Update %s handler error", update_id)
