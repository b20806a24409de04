"""Integration tests with MockTelegramClient.

End-to-end scenarios through the chat handler:
provisional hit → numeric confirmation → reconcile → restart → leaderboard.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from hitball.chat_handler import ChatHandler
from hitball.counter_store import CounterStore
from hitball.storage import JsonSnapshotStorage
from conftest import FakeClock, MockTelegramClient, make_message, make_user

ALICE = make_user(1000001, "alice", "Alice")


class TestProvisionalLifecycle:
    """A handle-only target is merged once the account shows up."""

    async def test_handle_then_id_then_reply(
        self,
        chat_handler: ChatHandler,
        store: CounterStore,
        mock_telegram: MockTelegramClient,
        clock: FakeClock,
        storage: JsonSnapshotStorage,
    ) -> None:
        await chat_handler.handle_message(make_message("/hit @bob", ALICE))
        assert store.get_count("handle:bob") == 1

        clock.advance(5)
        mock_telegram.add_person(make_user(555555, None, "Bob"))
        await chat_handler.handle_message(make_message("/hit 555555", ALICE))
        assert store.get_count("555555") == 1

        clock.advance(5)
        await chat_handler.handle_message(
            make_message("/hit", ALICE, reply_to=make_user(555555, "bob", "Bob")),
        )
        assert store.get_count("555555") == 3
        assert "handle:bob" not in store
        assert "has been hit *3* time(s)" in mock_telegram.last_text

        # Survives a restart
        reloaded = CounterStore(storage, logging.getLogger("test"))
        await reloaded.load()
        assert reloaded.get_count("555555") == 3
        assert reloaded.find_by_handle("bob") == "555555"


class TestLegacyUpgrade:
    """A legacy data file keeps its counts after the upgrade."""

    async def test_legacy_counts_continue(
        self,
        chat_handler: ChatHandler,
        data_path: Path,
        storage: JsonSnapshotStorage,
        mock_telegram: MockTelegramClient,
    ) -> None:
        data_path.write_text(json.dumps({
            "hitData": {"@bob": {"count": 9, "name": "Bob", "firstHitDate": "2024-01-01T00:00:00+00:00"}},
            "bounceAchievements": {},
        }))
        store = CounterStore(storage, logging.getLogger("test"))
        await store.load()
        chat_handler._store = store
        chat_handler._resolver._store = store
        chat_handler._achievements._store = store

        bob = make_user(1000002, "bob", "Bob")
        await chat_handler.handle_message(make_message("/hit", ALICE, reply_to=bob))

        assert store.get_count("1000002") == 10
        assert "handle:bob" not in store
        assert "number 10" in mock_telegram.last_text
        on_disk = json.loads(data_path.read_text())
        assert on_disk["version"] == 2
        assert "hitData" not in on_disk
