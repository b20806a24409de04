"""Shared test fixtures for hitball."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio

from hitball.achievement_engine import AchievementEngine
from hitball.chat_handler import ChatHandler
from hitball.config import HitballConfig
from hitball.counter_store import CounterStore
from hitball.identity_resolver import IdentityResolver
from hitball.rate_limiter import RateLimiter
from hitball.storage import JsonSnapshotStorage

BOT_USER = {"id": 900000001, "is_bot": True, "first_name": "Hitball", "username": "hitball_bot"}
GROUP_CHAT = {"id": -1001234567890, "type": "supergroup", "title": "Test Group"}


# ── Minimal config dict matching HitballConfig schema ────────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "telegram": {"token": "123456:TEST-TOKEN", "api_base": "https://api.telegram.test"},
        "bot": {"username": "hitball_bot"},
        "storage": {"path": "data.json"},
        "rate_limit": {
            "hit_cooldown_ms": 3000,
            "command_cooldown_ms": 1000,
            "max_violations": 5,
            "mute_seconds": 300,
            "violation_reset_ms": 60000,
        },
        "metrics": {"enabled": False, "port": 28290},
    }
    base.update(overrides)
    return base


def make_user(user_id: int, username: str | None = None, first_name: str = "User", **extra) -> dict:
    user: dict[str, Any] = {"id": user_id, "is_bot": False, "first_name": first_name}
    if username:
        user["username"] = username
    user.update(extra)
    return user


def make_message(
    text: str,
    sender: dict | None,
    chat: dict | None = None,
    reply_to: dict | None = None,
    forward_from: dict | None = None,
    entities: list[dict] | None = None,
) -> dict:
    """Build a Telegram Message dict."""
    message: dict[str, Any] = {
        "message_id": 1,
        "date": 1700000000,
        "chat": chat or GROUP_CHAT,
        "text": text,
    }
    if sender is not None:
        message["from"] = sender
    if reply_to is not None:
        message["reply_to_message"] = {"message_id": 0, "from": reply_to, "chat": message["chat"]}
    if forward_from is not None:
        message["forward_from"] = forward_from
    if entities is not None:
        message["entities"] = entities
    return message


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockTelegramClient:
    """Mock TelegramClient for handler and resolver tests.

    Records all outgoing calls for assertion. ``people`` holds the users
    ``lookup_person`` can find, keyed by numeric id.
    """

    def __init__(self) -> None:
        self.sent_messages: list[dict[str, Any]] = []
        self.restrictions: list[tuple[Any, int, int]] = []
        self.lookup_calls: list[tuple[Any, int | None, str | None]] = []
        self.people: dict[int, dict] = {}
        self.restrict_ok = True
        self.me = dict(BOT_USER)

    def add_person(self, person: dict) -> None:
        self.people[person["id"]] = person

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def get_me(self) -> dict:
        return self.me

    async def get_updates(self, offset: int | None = None) -> list[dict]:
        # Long poll stand-in; must yield to the loop
        await asyncio.sleep(0.01)
        return []

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: str | None = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> dict:
        self.sent_messages.append({
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": disable_web_page_preview,
        })
        return {"message_id": len(self.sent_messages)}

    async def restrict_chat_member(self, chat_id: int | str, user_id: int, until_date: int) -> bool:
        if not self.restrict_ok:
            return False
        self.restrictions.append((chat_id, user_id, until_date))
        return True

    async def lookup_person(
        self,
        context_id: Any,
        *,
        user_id: int | None = None,
        handle: str | None = None,
    ) -> dict | None:
        self.lookup_calls.append((context_id, user_id, handle))
        if user_id is not None:
            return self.people.get(user_id)
        if handle:
            wanted = handle.lstrip("@").lower()
            for person in self.people.values():
                if (person.get("username") or "").lower() == wanted:
                    return person
        return None

    @property
    def last_text(self) -> str:
        return self.sent_messages[-1]["text"] if self.sent_messages else ""


# ── Core fixtures ────────────────────────────────────────────

@pytest.fixture
def sample_config_dict() -> dict:
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> HitballConfig:
    return HitballConfig(**sample_config_dict)


@pytest.fixture
def data_path(tmp_path: Path) -> Path:
    return tmp_path / "data.json"


@pytest.fixture
def storage(data_path: Path) -> JsonSnapshotStorage:
    return JsonSnapshotStorage(str(data_path), logging.getLogger("test"))


@pytest_asyncio.fixture
async def store(storage: JsonSnapshotStorage) -> AsyncGenerator[CounterStore, None]:
    counter_store = CounterStore(storage, logging.getLogger("test"))
    await counter_store.load()
    yield counter_store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(sample_config: HitballConfig, clock: FakeClock) -> RateLimiter:
    return RateLimiter(sample_config.rate_limit, clock=clock)


@pytest.fixture
def mock_telegram() -> MockTelegramClient:
    return MockTelegramClient()


@pytest.fixture
def resolver(
    sample_config: HitballConfig,
    store: CounterStore,
    mock_telegram: MockTelegramClient,
) -> IdentityResolver:
    return IdentityResolver(
        sample_config.resolver, store, mock_telegram, logging.getLogger("test"),
    )


@pytest.fixture
def achievement_engine(sample_config: HitballConfig, store: CounterStore) -> AchievementEngine:
    return AchievementEngine(sample_config, store, logging.getLogger("test"))


@pytest_asyncio.fixture
async def chat_handler(
    sample_config: HitballConfig,
    store: CounterStore,
    resolver: IdentityResolver,
    rate_limiter: RateLimiter,
    mock_telegram: MockTelegramClient,
    achievement_engine: AchievementEngine,
) -> ChatHandler:
    handler = ChatHandler(
        config=sample_config,
        store=store,
        resolver=resolver,
        rate_limiter=rate_limiter,
        client=mock_telegram,
        achievement_engine=achievement_engine,
        logger=logging.getLogger("test"),
    )
    await handler.set_bot_user(BOT_USER)
    return handler
