"""Per-actor cooldowns with escalating violation tracking.

All state is in-memory only. On restart every actor starts fresh.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .config import RateLimitConfig

HIT = "hit"
COMMAND = "command"


@dataclass(frozen=True)
class CooldownDecision:
    """Outcome of ``RateLimiter.check_and_consume``."""

    allowed: bool
    remaining_seconds: float = 0.0
    violations: int = 0
    penalty_due: bool = False


@dataclass
class ViolationEntry:
    count: int
    window_start_at: float
    last_violation_at: float


class RateLimiter:
    """Cooldown gate per ``(actor, action class)`` plus a violation counter per actor.

    The limiter only signals when ``max_violations`` is reached; applying the
    mute and calling ``reset_violations`` afterwards is the caller's job.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or time.monotonic
        self._cooldowns_s: dict[str, float] = {
            HIT: config.hit_cooldown_ms / 1000,
            COMMAND: config.command_cooldown_ms / 1000,
        }
        self._violation_reset_s = config.violation_reset_ms / 1000

        # {(actor_id, action_class): last_allowed_at}
        self._last_action: dict[tuple[str, str], float] = {}
        self._violations: dict[str, ViolationEntry] = {}

    @property
    def max_violations(self) -> int:
        return self._config.max_violations

    @property
    def mute_seconds(self) -> int:
        return self._config.mute_seconds

    def cooldown_seconds(self, action_class: str) -> float:
        """Configured cooldown for *action_class*; unknown classes use the command cooldown."""
        return self._cooldowns_s.get(action_class, self._cooldowns_s[COMMAND])

    # ══════════════════════════════════════════════════════════
    #  Cooldowns
    # ══════════════════════════════════════════════════════════

    def check_and_consume(self, actor_id: str, action_class: str) -> CooldownDecision:
        """Allow the action and start its cooldown, or deny it and count a violation."""
        remaining = self.remaining_cooldown(actor_id, action_class)
        if remaining > 0:
            violations = self.record_violation(actor_id)
            return CooldownDecision(
                allowed=False,
                remaining_seconds=remaining,
                violations=violations,
                penalty_due=violations >= self._config.max_violations,
            )

        self._last_action[(actor_id, action_class)] = self._clock()
        self._sweep_cooldowns()
        return CooldownDecision(allowed=True)

    def remaining_cooldown(self, actor_id: str, action_class: str) -> float:
        """Seconds until *actor_id* may perform *action_class* again (0 when free)."""
        last = self._last_action.get((actor_id, action_class))
        if last is None:
            return 0.0
        remaining = self.cooldown_seconds(action_class) - (self._clock() - last)
        return remaining if remaining > 0 else 0.0

    def is_on_cooldown(self, actor_id: str, action_class: str) -> bool:
        return self.remaining_cooldown(actor_id, action_class) > 0

    def _sweep_cooldowns(self) -> None:
        """Drop cooldowns older than the longest window and expired violation windows."""
        now = self._clock()
        longest = max(self._cooldowns_s.values())
        stale = [k for k, ts in self._last_action.items() if now - ts > longest]
        for k in stale:
            del self._last_action[k]

        expired = [
            actor_id for actor_id, entry in self._violations.items()
            if now - entry.window_start_at > self._violation_reset_s
        ]
        for actor_id in expired:
            del self._violations[actor_id]

    # ══════════════════════════════════════════════════════════
    #  Violations
    # ══════════════════════════════════════════════════════════

    def record_violation(self, actor_id: str) -> int:
        """Count one violation. Returns the post-increment count."""
        now = self._clock()
        entry = self._violations.get(actor_id)

        if entry is None or now - entry.window_start_at > self._violation_reset_s:
            self._violations[actor_id] = ViolationEntry(
                count=1, window_start_at=now, last_violation_at=now,
            )
            return 1

        entry.count += 1
        entry.last_violation_at = now
        return entry.count

    def violation_count(self, actor_id: str) -> int:
        """Current violation count; an expired window reads as zero and is purged."""
        entry = self._violations.get(actor_id)
        if entry is None:
            return 0
        if self._clock() - entry.window_start_at > self._violation_reset_s:
            del self._violations[actor_id]
            return 0
        return entry.count

    def reset_violations(self, actor_id: str) -> None:
        self._violations.pop(actor_id, None)
