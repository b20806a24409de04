"""Chat command handler — routes Telegram messages to bot commands.

Parses ``/command[@bot] args`` text, applies the group-chat restriction and
the per-actor cooldowns, dispatches to the command handlers and sends the
replies via ``client.send_message()``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from . import messages
from .counter_store import Identity
from .identity_resolver import ResolvedIdentity, same_identity
from .rate_limiter import COMMAND, HIT
from .storage import StorageWriteError
from .utils import display_name_for

if TYPE_CHECKING:
    from .achievement_engine import AchievementEngine
    from .config import HitballConfig
    from .counter_store import CounterStore
    from .identity_resolver import IdentityResolver
    from .rate_limiter import RateLimiter
    from .telegram_client import TelegramClient

_GROUP_CHAT_TYPES = frozenset({"group", "supergroup"})

# Commands that skip the cooldown gate entirely
_UNMETERED = frozenset({"ratelimit"})

CommandFn = Callable[[dict[str, Any], dict[str, Any], str], Awaitable[None]]


def is_group_chat(chat: dict[str, Any]) -> bool:
    return chat.get("type") in _GROUP_CHAT_TYPES


class ChatHandler:
    """Handles slash commands from private and group chats."""

    def __init__(
        self,
        config: HitballConfig,
        store: CounterStore,
        resolver: IdentityResolver,
        rate_limiter: RateLimiter,
        client: TelegramClient | None,
        achievement_engine: AchievementEngine,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._resolver = resolver
        self._rate_limiter = rate_limiter
        self._client = client
        self._achievements = achievement_engine
        self._logger = logger or logging.getLogger("hitball.chat")

        self._bot_username = config.bot.username
        self._bot_identity: Identity | None = None
        self._group_allowed = {c.lower() for c in config.commands.group_allowed}

        # Counters (for metrics)
        self.updates_processed: int = 0
        self.commands_processed: int = 0
        self.hits_total: int = 0
        self.rate_limited_total: int = 0
        self.penalties_total: int = 0

        # Command dispatch map
        self._command_map: dict[str, CommandFn] = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "hit": self._cmd_hit,
            "stats": self._cmd_stats,
            "leaderboard": self._cmd_leaderboard,
            "achievements": self._cmd_achievements,
            "ratelimit": self._cmd_ratelimit,
        }

    @property
    def bot_identity(self) -> Identity | None:
        return self._bot_identity

    async def set_bot_user(self, me: dict[str, Any]) -> None:
        """Register the bot's own account so hits aimed at it can be detected.

        The bot is synced into the store like any other sender, which lets
        ``/hit @botname`` resolve through the handle index.
        """
        self._bot_identity = await self._resolver.resolve_actor(me)
        if me.get("username"):
            self._bot_username = me["username"]
        self._logger.info("Bot identity: %s (@%s)", self._bot_identity.id, self._bot_username)

    # ══════════════════════════════════════════════════════════
    #  Entry point
    # ══════════════════════════════════════════════════════════

    def parse_command(self, text: str) -> tuple[str, str] | None:
        """Split ``/cmd@bot args`` into ``(cmd, args_text)``.

        Returns None for plain text and for commands addressed to another bot.
        """
        text = text.strip()
        if not text.startswith("/"):
            return None
        parts = text.split(None, 1)
        command, _, addressee = parts[0][1:].partition("@")
        if addressee and addressee.lower() != self._bot_username.lower():
            return None
        if not command:
            return None
        return command.lower(), parts[1] if len(parts) > 1 else ""

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Process one incoming Telegram message."""
        self.updates_processed += 1

        sender = message.get("from")
        chat = message.get("chat")
        if not sender or not chat or sender.get("is_bot"):
            return

        parsed = self.parse_command(message.get("text") or "")
        if parsed is None:
            return
        command, args_text = parsed

        handler = self._command_map.get(command)
        if handler is None:
            return

        if is_group_chat(chat) and command not in self._group_allowed:
            await self._reply(
                chat,
                messages.GROUP_RESTRICTED.format(
                    bot=self._bot_username,
                    bot_label=self._bot_username.replace("_", "\\_"),
                ),
                disable_web_page_preview=True,
            )
            return

        if command not in _UNMETERED and not await self._check_rate_limit(
            message, HIT if command == "hit" else COMMAND,
        ):
            return

        self.commands_processed += 1
        try:
            await handler(message, sender, args_text)
        except Exception:
            self._logger.exception(
                "Command handler error for %s/%s", sender.get("id"), command,
            )
            await self._reply(chat, messages.GENERIC_FAILURE, parse_mode=None)

    # ══════════════════════════════════════════════════════════
    #  Rate limiting
    # ══════════════════════════════════════════════════════════

    async def _check_rate_limit(self, message: dict[str, Any], action_class: str) -> bool:
        """Return True if the command may run. Denials are silent."""
        sender = message["from"]
        chat = message["chat"]
        actor_id = str(sender["id"])

        decision = self._rate_limiter.check_and_consume(actor_id, action_class)
        if decision.allowed:
            return True

        self.rate_limited_total += 1
        self._logger.debug(
            "Rate limited %s on %s (%.1fs left, %d violation(s))",
            actor_id, action_class, decision.remaining_seconds, decision.violations,
        )

        if decision.penalty_due and is_group_chat(chat) and self._client is not None:
            until = int(time.time()) + self._rate_limiter.mute_seconds
            if await self._client.restrict_chat_member(chat["id"], sender["id"], until):
                self.penalties_total += 1
                self._logger.info(
                    "Muted %s in %s for %ds after %d violation(s)",
                    actor_id, chat["id"], self._rate_limiter.mute_seconds, decision.violations,
                )
                self._rate_limiter.reset_violations(actor_id)
            else:
                self._logger.warning("Could not mute %s in %s", actor_id, chat["id"])
        return False

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def _cmd_start(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        rl = self._config.rate_limit
        await self._reply(
            message["chat"],
            messages.START_TEXT.format(
                hit_cooldown=f"{rl.hit_cooldown_ms / 1000:g}",
                command_cooldown=f"{rl.command_cooldown_ms / 1000:g}",
            ),
        )

    async def _cmd_help(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        rl = self._config.rate_limit
        await self._reply(
            message["chat"],
            messages.HELP_TEXT.format(
                hit_cooldown=f"{rl.hit_cooldown_ms / 1000:g}",
                command_cooldown=f"{rl.command_cooldown_ms / 1000:g}",
                max_violations=rl.max_violations,
                reset_seconds=f"{rl.violation_reset_ms / 1000:g}",
                mute_seconds=rl.mute_seconds,
            ),
        )

    async def _cmd_hit(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        """Resolve the target and count one hit against it."""
        chat = message["chat"]
        attacker = await self._resolver.resolve_actor(sender)
        resolved = await self._resolver.resolve_message(message, args_text)

        if resolved is None:
            await self._reply(chat, messages.TARGET_NOT_FOUND)
            return

        target = resolved.identity
        if same_identity(target, attacker):
            await self._reply(chat, messages.random_self_hit(), parse_mode=None)
            return

        if same_identity(target, self._bot_identity):
            await self._bounce(chat, attacker)
            return

        count = await self._record_hit(target)
        self.hits_total += 1
        milestones = self._config.milestones
        await self._reply(
            chat,
            messages.hit_result(
                attacker.label,
                target.label,
                count,
                messages.milestone_line(count, milestones.every, milestones.special),
            ),
        )
        self._logger.info(
            "%s hit %s via %s (count %d)",
            attacker.id, target.id, resolved.source.value, count,
        )

    async def _bounce(self, chat: dict[str, Any], attacker: Identity) -> None:
        """A hit aimed at the bot lands on the attacker instead."""
        try:
            first_bounce = await self._store.mark_bounce_achieved(attacker.id)
        except StorageWriteError:
            self._logger.error("Could not persist bounce achievement for %s", attacker.id)
            first_bounce = self._store.has_bounce_achievement(attacker.id)

        count = await self._record_hit(attacker)
        self.hits_total += 1
        await self._reply(
            chat,
            messages.bounce_result(
                attacker.label, count, first_bounce, self._config.milestones.every,
            ),
        )
        self._logger.info(
            "%s tried to hit the bot and got bounced (count %d%s)",
            attacker.id, count, ", first bounce" if first_bounce else "",
        )

    async def _record_hit(self, identity: Identity) -> int:
        try:
            return await self._store.record(identity)
        except StorageWriteError:
            # The increment stays in memory and goes out with the next write
            self._logger.error("Hit on %s not persisted", identity.id)
            return self._store.get_count(identity.id)

    async def _cmd_stats(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        target = await self._target_or_sender(message, sender, args_text)
        if target is None:
            await self._reply(message["chat"], messages.USER_NOT_FOUND, parse_mode=None)
            return

        count = self._store.get_count(target.id)
        rank = self._store.rank(target.id) if count > 0 else None
        await self._reply(message["chat"], messages.stats_report(target.label, count, rank))

    async def _cmd_leaderboard(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        size = self._config.commands.leaderboard_size
        entries = [
            (identity, record)
            for identity, record in self._store.leaderboard(limit=None)
            if record.count > 0
        ][:size]
        await self._reply(message["chat"], messages.leaderboard(entries))

    async def _cmd_achievements(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        target = await self._target_or_sender(message, sender, args_text)
        if target is None:
            await self._reply(message["chat"], messages.USER_NOT_FOUND, parse_mode=None)
            return

        report = self._achievements.evaluate(target.id)
        await self._reply(message["chat"], messages.achievements_report(target.label, report))

    async def _cmd_ratelimit(self, message: dict[str, Any], sender: dict[str, Any], args_text: str) -> None:
        actor_id = str(sender["id"])
        limiter = self._rate_limiter
        await self._reply(
            message["chat"],
            messages.ratelimit_status(
                display_name_for(sender),
                limiter.remaining_cooldown(actor_id, HIT),
                limiter.remaining_cooldown(actor_id, COMMAND),
                limiter.cooldown_seconds(HIT),
                limiter.cooldown_seconds(COMMAND),
            ),
        )

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _target_or_sender(
        self, message: dict[str, Any], sender: dict[str, Any], args_text: str,
    ) -> Identity | None:
        """Referenced identity if the message names one, else the sender.

        Returns None when a textual reference was given but nobody matched.
        """
        resolved: ResolvedIdentity | None = await self._resolver.resolve_message(message, args_text)
        if resolved is not None:
            return resolved.identity
        if self._resolver.extract_references(message, args_text):
            return None
        return await self._resolver.resolve_actor(sender)

    async def _reply(
        self,
        chat: dict[str, Any],
        text: str,
        parse_mode: str | None = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> None:
        if self._client is None:
            self._logger.warning("No client, dropping reply to %s", chat.get("id"))
            return
        await self._client.send_message(
            chat["id"], text,
            parse_mode=parse_mode,
            disable_web_page_preview=disable_web_page_preview,
        )
