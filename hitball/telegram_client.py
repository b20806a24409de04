"""Telegram Bot API client — async HTTP wrapper with lookup caching.

Provides the handful of Bot API methods the bot needs plus
``lookup_person()``, the reverse lookup used by the identity resolver.
All tests mock the HTTP layer — never call the real API.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from .config import TelegramConfig

# Members with these statuses are no longer addressable in the chat
_ABSENT_STATUSES = frozenset({"left", "kicked"})

_MUTED_PERMISSIONS = {
    "can_send_messages": False,
    "can_send_audios": False,
    "can_send_documents": False,
    "can_send_photos": False,
    "can_send_videos": False,
    "can_send_video_notes": False,
    "can_send_voice_notes": False,
    "can_send_polls": False,
    "can_send_other_messages": False,
    "can_add_web_page_previews": False,
    "can_change_info": False,
    "can_invite_users": False,
    "can_pin_messages": False,
}


class TelegramAPIError(Exception):
    """The Bot API answered with ``ok: false``."""

    def __init__(self, method: str, description: str, error_code: int | None = None) -> None:
        super().__init__(f"{method} failed ({error_code}): {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


_CALL_ERRORS = (TelegramAPIError, aiohttp.ClientError, asyncio.TimeoutError)


class TelegramClient:
    """Async client for the Telegram Bot API."""

    def __init__(self, config: TelegramConfig, logger: logging.Logger) -> None:
        self._config = config
        self._logger = logger
        self._session: aiohttp.ClientSession | None = None
        self._cache: dict[str, tuple[float, Any]] = {}  # {key: (expiry_ts, data)}
        self._cache_ttl = config.lookup_cache_seconds

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ══════════════════════════════════════════════════════════
    #  Raw API
    # ══════════════════════════════════════════════════════════

    def _url(self, method: str) -> str:
        return f"{self._config.api_base.rstrip('/')}/bot{self._config.token}/{method}"

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises TelegramAPIError for ``ok: false`` answers and
        aiohttp.ClientError for transport failures.
        """
        if not self._session:
            raise RuntimeError("TelegramClient.start() has not been called")

        kwargs: dict[str, Any] = {"json": params or {}}
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        async with self._session.post(self._url(method), **kwargs) as resp:
            data = await resp.json(content_type=None)
        if not data.get("ok"):
            raise TelegramAPIError(method, data.get("description", "unknown error"), data.get("error_code"))
        return data.get("result")

    # ══════════════════════════════════════════════════════════
    #  Bot API methods
    # ══════════════════════════════════════════════════════════

    async def get_me(self) -> dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(self, offset: int | None = None) -> list[dict[str, Any]]:
        """Long-poll for new updates starting at *offset*."""
        params: dict[str, Any] = {
            "timeout": self._config.poll_timeout_seconds,
            "allowed_updates": ["message"],
        }
        if offset is not None:
            params["offset"] = offset
        return await self.call(
            "getUpdates",
            params,
            timeout=self._config.poll_timeout_seconds + self._config.request_timeout_seconds,
        )

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: str | None = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> dict[str, Any] | None:
        """Send a message. Returns the sent message, or None on error."""
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if disable_web_page_preview:
            params["disable_web_page_preview"] = True
        try:
            return await self.call("sendMessage", params)
        except _CALL_ERRORS as e:
            self._logger.error("sendMessage to %s failed: %s", chat_id, e)
            return None

    async def get_chat_member(self, chat_id: int | str, user_id: int) -> dict[str, Any] | None:
        """Return the ChatMember object, or None if the lookup fails."""
        try:
            return await self.call("getChatMember", {"chat_id": chat_id, "user_id": user_id})
        except _CALL_ERRORS as e:
            self._logger.debug("getChatMember %s in %s failed: %s", user_id, chat_id, e)
            return None

    async def restrict_chat_member(self, chat_id: int | str, user_id: int, until_date: int) -> bool:
        """Mute a member until the unix timestamp *until_date*. Returns success."""
        try:
            await self.call(
                "restrictChatMember",
                {
                    "chat_id": chat_id,
                    "user_id": user_id,
                    "until_date": until_date,
                    "permissions": _MUTED_PERMISSIONS,
                },
            )
            return True
        except _CALL_ERRORS as e:
            self._logger.error("restrictChatMember %s in %s failed: %s", user_id, chat_id, e)
            return False

    # ══════════════════════════════════════════════════════════
    #  Person lookup
    # ══════════════════════════════════════════════════════════

    async def lookup_person(
        self,
        context_id: int | str,
        *,
        user_id: int | None = None,
        handle: str | None = None,
    ) -> dict[str, Any] | None:
        """Reverse lookup of a user by numeric ID or handle within a chat.

        Returns a Telegram User dict, or None when the person cannot be
        confirmed. Never raises for API or transport errors.
        """
        if user_id is not None:
            cache_key = f"id:{context_id}:{user_id}"
        elif handle:
            cache_key = f"handle:{handle.lstrip('@').lower()}"
        else:
            return None

        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        if not self._session:
            return None

        if user_id is not None:
            person = await self._lookup_by_id(context_id, user_id)
        else:
            person = await self._lookup_by_handle(handle)

        if person is not None:
            self._set_cached(cache_key, person)
        return person

    async def _lookup_by_id(self, context_id: int | str, user_id: int) -> dict[str, Any] | None:
        member = await self.get_chat_member(context_id, user_id)
        if not member or member.get("status") in _ABSENT_STATUSES:
            return None
        return member.get("user")

    async def _lookup_by_handle(self, handle: str) -> dict[str, Any] | None:
        # getChat only resolves @usernames of users who have talked to the bot
        try:
            chat = await self.call("getChat", {"chat_id": f"@{handle.lstrip('@')}"})
        except _CALL_ERRORS as e:
            self._logger.debug("getChat @%s failed: %s", handle, e)
            return None
        if not chat or chat.get("type") != "private":
            return None
        return {
            "id": chat["id"],
            "username": chat.get("username"),
            "first_name": chat.get("first_name"),
            "last_name": chat.get("last_name"),
        }

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    def _get_cached(self, key: str) -> Any | None:
        """Return cached value if not expired, else None."""
        if key in self._cache:
            expiry, data = self._cache[key]
            if time.time() < expiry:
                return data
            del self._cache[key]
        return None

    def _set_cached(self, key: str, data: Any) -> None:
        """Cache a result with configured TTL."""
        self._cache[key] = (time.time() + self._cache_ttl, data)
