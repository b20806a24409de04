"""Configuration system for hitball-bot.

All settings are Pydantic models with sensible defaults so a config file
only needs the Telegram token. Values may reference environment variables
as ``${VAR}`` or ``${VAR:-default}``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════
#  Transport
# ═══════════════════════════════════════════════════════════════

class TelegramConfig(BaseModel):
    token: str
    api_base: str = "https://api.telegram.org"
    poll_timeout_seconds: int = 30
    request_timeout_seconds: float = 10.0
    lookup_cache_seconds: int = 300


class BotConfig(BaseModel):
    username: str = "hitball_bot"


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class StorageConfig(BaseModel):
    path: str = "data.json"


class RateLimitConfig(BaseModel):
    hit_cooldown_ms: int = Field(default=3000, ge=0)
    command_cooldown_ms: int = Field(default=1000, ge=0)
    max_violations: int = Field(default=5, ge=1)
    mute_seconds: int = Field(default=300, ge=30, description="Telegram rejects restrictions shorter than 30s")
    violation_reset_ms: int = Field(default=60000, ge=0)


class ResolverConfig(BaseModel):
    min_numeric_id_length: int = Field(default=5, ge=1)


# ═══════════════════════════════════════════════════════════════
#  Commands & Achievements
# ═══════════════════════════════════════════════════════════════

class CommandsConfig(BaseModel):
    group_allowed: list[str] = Field(default_factory=lambda: ["hit"])
    leaderboard_size: int = 10


class MilestonesConfig(BaseModel):
    every: int = 10
    special: dict[int, str] = Field(
        default={
            50: "💀 *Half-century!* This one has been hit 50 times!",
            100: "👑 *Hundred Club!* Welcome to the 100-hit club!",
        },
        description="Exact hit count → celebration line",
    )


class AchievementConfig(BaseModel):
    id: str
    description: str = ""
    threshold: int


def _default_achievements() -> list[AchievementConfig]:
    return [
        AchievementConfig(id="first_blood", description="🎯 First Blood — hit for the first time", threshold=1),
        AchievementConfig(id="bruised", description="😵 Bruised — feeling the pressure", threshold=5),
        AchievementConfig(id="battered", description="🤕 Battered — took a real beating", threshold=10),
        AchievementConfig(id="wrecked", description="💀 Wrecked — questioning life choices", threshold=25),
        AchievementConfig(id="half_century", description="👻 Half Century — hit 50 times", threshold=50),
        AchievementConfig(id="centurion", description="🏆 Centurion — the most popular target", threshold=100),
        AchievementConfig(id="diamond", description="💎 Diamond Punching Bag — top-tier target", threshold=200),
        AchievementConfig(id="legend", description="👑 Living Legend — feared by nobody", threshold=500),
    ]


class AchievementsConfig(BaseModel):
    count_thresholds: list[AchievementConfig] = Field(default_factory=_default_achievements)
    next_milestones: list[int] = Field(default=[1, 5, 10, 25, 50, 100, 200, 500, 1000])
    top_ranks_size: int = 10


# ═══════════════════════════════════════════════════════════════
#  Observability
# ═══════════════════════════════════════════════════════════════

class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 28290


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class HitballConfig(BaseModel):
    """Full bot config."""

    telegram: TelegramConfig
    bot: BotConfig = Field(default_factory=BotConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    milestones: MilestonesConfig = Field(default_factory=MilestonesConfig)
    achievements: AchievementsConfig = Field(default_factory=AchievementsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> HitballConfig:
    """Load and validate YAML config file into HitballConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return HitballConfig(**raw)
