"""Chat message templates (legacy Telegram Markdown)."""

from __future__ import annotations

import math
import random
from datetime import datetime
from typing import TYPE_CHECKING

from .utils import escape_markdown, now_utc

if TYPE_CHECKING:
    from .achievement_engine import AchievementReport
    from .counter_store import CounterRecord, Identity

HIT_MESSAGES = [
    "💥 {attacker} lands a heavy hit on {target}!",
    "🏏 {attacker} swings the bat straight at {target}!",
    "👊 {attacker} scores a critical hit on {target}!",
    "🎯 {attacker} hits {target} dead on target!",
    "⚡ {attacker} strikes {target} at lightning speed!",
    "🔨 {attacker} brings the hammer down on {target}!",
    "🥊 {attacker} gives {target} a solid punch!",
    "💢 {attacker} furiously smacks {target}!",
    "🌟 {attacker} pulls off a dazzling combo! {target} takes the hit!",
    "💫 {attacker} unleashes a finishing move! {target} takes massive damage!",
]

SELF_HIT_MESSAGES = [
    "😅 Nice try, but you can't hit yourself!",
    "🤔 Self-punishment isn't on the menu here.",
    "😄 Hitting yourself? Practice in front of a mirror instead!",
    "🙃 Maybe try punching the air for a bit?",
    "😂 Hitting yourself is a bold new strategy.",
]

BOUNCE_MESSAGES = [
    "🛡️ *Bounced!* The bot's shield is up!",
    "⚡ *Counter-attack!* Did you think the bot was an easy target?",
    "🔄 *Reflected!* The bot is under divine protection!",
    "💫 *Rebound damage!* The bot hits back!",
    "🌀 *Energy mirror!* Your attack bounced right back!",
]

TARGET_NOT_FOUND = (
    "❌ *No target found!*\n\n"
    "*Pick a target one of these ways:*\n"
    "1️⃣ Reply to someone's message with `/hit`\n"
    "2️⃣ Use `/hit @username`\n"
    "3️⃣ Forward someone's message with `/hit`\n\n"
    "Aim first, then fire! 🎯"
)

USER_NOT_FOUND = "❌ Could not find that user."

GENERIC_FAILURE = "❌ Something went wrong, please try again later!"

START_TEXT = (
    "🎮 *Welcome to Hitball!*\n\n"
    "*Quick start:*\n"
    "• Reply to a message + `/hit` → hit that person\n"
    "• `/hit @username` → hit a specific user\n"
    "• `/stats` → see how often you've been hit\n"
    "• `/leaderboard` → the most-hit players\n"
    "• `/achievements` → your unlocked badges\n\n"
    "In groups only `/hit` works; use the other commands in a private chat.\n"
    "`/hit` has a {hit_cooldown}s cooldown, other commands {command_cooldown}s.\n\n"
    "Send `/help` for the full guide. 💪🎯"
)

HELP_TEXT = (
    "🆘 *Hitball guide*\n\n"
    "*Hitting:*\n"
    "`/hit` — reply to a message to hit its author\n"
    "`/hit @username` — hit a user by username\n"
    "`/hit 123456789` — hit a user by numeric ID\n\n"
    "*Stats:*\n"
    "`/stats [@username]` — hit count and status\n"
    "`/leaderboard` — most-hit players\n"
    "`/achievements [@username]` — unlocked badges\n"
    "`/ratelimit` — your current cooldowns\n\n"
    "*Limits:*\n"
    "• `/hit` cooldown: {hit_cooldown}s, other commands: {command_cooldown}s\n"
    "• {max_violations} cooldown violations within {reset_seconds}s gets you muted for {mute_seconds}s\n"
    "• 🛡️ Hitting the bot bounces back onto you!"
)

GROUP_RESTRICTED = (
    "🚫 *Group chat restriction*\n\n"
    "Only `/hit` works in group chats. Use the other commands in a private chat "
    "with [@{bot_label}](https://t.me/{bot})."
)

_STATUS_TIERS: list[tuple[int, str, str]] = [
    (0, "🍀", "Never been hit. Lucky you!"),
    (5, "😊", "A few scratches, still fighting fit!"),
    (20, "😵", "Moderately bruised, needs a break!"),
    (50, "🤕", "Badly battered, a regular target!"),
    (100, "💀", "Veteran victim, consider asking for protection!"),
]
_LEGEND_STATUS = ("👻", "Legendary target, beyond life and death!")

_MEDALS = {1: ("🥇", "👑 "), 2: ("🥈", "⭐ "), 3: ("🥉", "✨ ")}

_BAR_LENGTH = 10


def random_hit(attacker: str, target: str) -> str:
    template = random.choice(HIT_MESSAGES)
    return template.format(attacker=escape_markdown(attacker), target=escape_markdown(target))


def random_self_hit() -> str:
    return random.choice(SELF_HIT_MESSAGES)


def status_for(count: int) -> tuple[str, str]:
    for limit, emoji, text in _STATUS_TIERS:
        if count <= limit:
            return emoji, text
    return _LEGEND_STATUS


def milestone_line(count: int, every: int, special: dict[int, str]) -> str:
    if count in special:
        return special[count]
    if count == 1:
        return "🎊 *First hit!* A new victim is born!"
    if every > 0 and count % every == 0:
        return f"🏆 *Milestone!* That's hit number {count}!"
    return ""


def hit_result(attacker: str, target: str, count: int, special_line: str) -> str:
    text = random_hit(attacker, target)
    text += f"\n\n📊 {escape_markdown(target)} has been hit *{count}* time(s)!"
    if special_line:
        text += f"\n{special_line}"
    return text


def bounce_result(attacker: str, count: int, first_bounce: bool, every: int) -> str:
    name = escape_markdown(attacker)
    text = random.choice(BOUNCE_MESSAGES)
    text += f"\n\n💥 {name} tried to hit the bot and got hit by the rebound!"
    text += f"\n\n📊 {name} has been hit *{count}* time(s)!"
    if first_bounce:
        text += '\n🎊 *First bounce!* You unlocked the "Bot Challenger" achievement!'
    elif every > 0 and count % every == 0:
        text += f"\n🏆 *Milestone!* That's hit number {count}!"
    return text


def stats_report(target: str, count: int, rank: int | None) -> str:
    emoji, status = status_for(count)
    rank_text = f"#{rank}" if rank else "unranked"
    return (
        "📊 *Hit report*\n\n"
        f"👤 *Target:* {escape_markdown(target)}\n"
        f"🎯 *Times hit:* *{count}*\n"
        f"🏅 *Rank:* {rank_text}\n"
        f"{emoji} *Status:* {status}\n\n"
        "💡 Use `/leaderboard` to see the rankings"
    )


def _progress_bar(count: int, top_count: int) -> str:
    filled = round(count / top_count * _BAR_LENGTH) if top_count else 0
    return "█" * filled + "▒" * (_BAR_LENGTH - filled)


def leaderboard(
    entries: list[tuple[Identity, CounterRecord]],
    generated_at: datetime | None = None,
) -> str:
    if not entries:
        return (
            "📊 *Leaderboard*\n\n"
            "🤷 Nobody has been hit yet!\n\n"
            "Reply to someone with `/hit` or use `/hit @username` to start. 🎯"
        )

    total = sum(record.count for _, record in entries)
    top_count = entries[0][1].count
    lines = ["🏆 *Leaderboard* 🏆", ""]
    for position, (identity, record) in enumerate(entries, start=1):
        medal, prefix = _MEDALS.get(position, ("🏅", f"{position}. "))
        share = record.count / total * 100 if total else 0.0
        lines.append(f"{medal} {prefix}{escape_markdown(identity.label)}")
        lines.append(f"   🎯 hit *{record.count}* time(s) ({share:.1f}%)")
        lines.append(f"   `{_progress_bar(record.count, top_count)}`")
        lines.append("")

    ts = (generated_at or now_utc()).strftime("%Y-%m-%d %H:%M UTC")
    lines.append("📈 *Summary*")
    lines.append(f"• Total hits: *{total}*")
    lines.append(f"• Players listed: *{len(entries)}*")
    lines.append(f"• Updated: {ts}")
    return "\n".join(lines)


def achievements_report(target: str, report: AchievementReport) -> str:
    rank_text = f"#{report.rank}" if report.rank else "unranked"
    lines = [
        "🏆 *Achievement report*",
        "",
        f"👤 *Target:* {escape_markdown(target)}",
        f"🎯 *Times hit:* *{report.count}*",
        f"📊 *Rank:* {rank_text}",
        "",
    ]
    if report.unlocked:
        lines.append(f"🎖️ *Unlocked ({len(report.unlocked)}):*")
        lines.extend(report.unlocked)
    else:
        lines.append("🎖️ *Achievements:* none yet, keep going!")

    if report.next_milestone is not None:
        lines.append("")
        lines.append(
            f"🎯 *Next achievement:* {report.remaining_to_next} more hit(s) to go!"
        )
    return "\n".join(lines)


def ratelimit_status(
    actor: str,
    hit_remaining: float,
    command_remaining: float,
    hit_cooldown: float,
    command_cooldown: float,
) -> str:
    def _fmt(remaining: float) -> str:
        return f"{math.ceil(remaining)}s" if remaining > 0 else "✅ ready"

    return (
        "⏱️ *Rate limit status*\n\n"
        f"👤 *User:* {escape_markdown(actor)}\n\n"
        f"🎯 *Hit cooldown:* {_fmt(hit_remaining)}\n"
        f"⚙️ *Command cooldown:* {_fmt(command_remaining)}\n\n"
        "📊 *Settings:*\n"
        f"• Hit: {hit_cooldown:g}s\n"
        f"• Other commands: {command_cooldown:g}s"
    )
