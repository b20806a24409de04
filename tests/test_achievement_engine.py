"""Tests for the AchievementEngine."""

from __future__ import annotations

from hitball.achievement_engine import BOUNCE_BADGE, AchievementEngine
from hitball.counter_store import CounterStore, Identity
from hitball.utils import now_utc


async def _hit(store: CounterStore, identity_id: str, times: int) -> None:
    for _ in range(times):
        await store.record(Identity(id=identity_id))


class TestAchievementEngine:
    """Count, rank and bounce achievements."""

    async def test_never_hit(self, achievement_engine: AchievementEngine, store: CounterStore):
        """A synced but never-hit identity has no rank and no badges."""
        await store.sync_identity(Identity(id="100001", handle="alice"))
        report = achievement_engine.evaluate("100001")
        assert report.count == 0
        assert report.rank is None
        assert report.unlocked == []
        assert report.next_milestone == 1
        assert report.remaining_to_next == 1

    async def test_count_thresholds(self, achievement_engine: AchievementEngine, store: CounterStore):
        await _hit(store, "100001", 12)
        report = achievement_engine.evaluate("100001")
        assert any("First Blood" in a for a in report.unlocked)
        assert any("Bruised" in a for a in report.unlocked)
        assert any("Battered" in a for a in report.unlocked)
        assert not any("Wrecked" in a for a in report.unlocked)
        assert report.next_milestone == 25
        assert report.remaining_to_next == 13

    async def test_rank_badges(self, achievement_engine: AchievementEngine, store: CounterStore):
        await _hit(store, "100001", 3)
        await _hit(store, "100002", 2)
        await _hit(store, "100003", 1)

        first = achievement_engine.evaluate("100001")
        third = achievement_engine.evaluate("100003")
        assert first.rank == 1
        assert any("Public Enemy No. 1" in a for a in first.unlocked)
        assert third.rank == 3
        assert any("Bronze" in a for a in third.unlocked)
        assert any("Top 10" in a for a in third.unlocked)

    async def test_outside_top_n(self, achievement_engine: AchievementEngine, store: CounterStore):
        for i in range(11):
            await _hit(store, str(200000 + i), 11 - i)
        report = achievement_engine.evaluate("200010")
        assert report.rank == 11
        assert not any("Top 10" in a for a in report.unlocked)

    async def test_bounce_badge(self, achievement_engine: AchievementEngine, store: CounterStore):
        await store.mark_bounce_achieved("100001")
        assert BOUNCE_BADGE in achievement_engine.evaluate("100001").unlocked

    async def test_past_last_milestone(self, achievement_engine: AchievementEngine, store: CounterStore):
        store._get_or_create("100001", now_utc()).count = 1500
        report = achievement_engine.evaluate("100001")
        assert report.next_milestone is None
        assert report.remaining_to_next is None