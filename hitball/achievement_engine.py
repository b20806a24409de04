"""Achievement engine — derives unlocked badges from counts, ranks and flags.

Count and rank achievements are computed on demand from the counter store;
the only stored achievement is the one-time bounce flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import HitballConfig
    from .counter_store import CounterStore

_RANK_BADGES: dict[int, str] = {
    1: "🥇 Public Enemy No. 1 — top of the leaderboard",
    2: "🥈 Runner-up Target — second on the leaderboard",
    3: "🥉 Bronze Punching Bag — third on the leaderboard",
}

BOUNCE_BADGE = "🛡️ Bot Challenger — tried to hit the bot and got bounced"


@dataclass
class AchievementReport:
    """Everything the achievements command needs for one identity."""

    identity_id: str
    count: int
    rank: int | None
    unlocked: list[str] = field(default_factory=list)
    next_milestone: int | None = None

    @property
    def remaining_to_next(self) -> int | None:
        if self.next_milestone is None:
            return None
        return self.next_milestone - self.count


class AchievementEngine:
    """Evaluates achievement conditions for an identity."""

    def __init__(
        self,
        config: HitballConfig,
        store: CounterStore,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger
        self._thresholds = sorted(
            config.achievements.count_thresholds, key=lambda a: a.threshold,
        )

    def evaluate(self, identity_id: str) -> AchievementReport:
        count = self._store.get_count(identity_id)
        # Zero-count records (synced but never hit) are not on the board
        rank = self._store.rank(identity_id) if count > 0 else None

        report = AchievementReport(identity_id=identity_id, count=count, rank=rank)

        for ach in self._thresholds:
            if count >= ach.threshold:
                report.unlocked.append(ach.description)

        if rank is not None:
            if rank in _RANK_BADGES:
                report.unlocked.append(_RANK_BADGES[rank])
            top_n = self._config.achievements.top_ranks_size
            if rank <= top_n:
                report.unlocked.append(f"🏅 Top {top_n} Regular — made the top {top_n}")

        if self._store.has_bounce_achievement(identity_id):
            report.unlocked.append(BOUNCE_BADGE)

        report.next_milestone = next(
            (m for m in sorted(self._config.achievements.next_milestones) if m > count),
            None,
        )
        return report
