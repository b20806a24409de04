"""Identity resolver — turns replies, forwards, mentions and tokens into identities.

Precedence when several references are present in one message:
reply author → forwarded-from author → ``text_mention`` entity →
numeric-ID token → ``@handle`` token. Only the first one present is used.

Structural references carry the platform ID and are exact. Textual tokens
go through the counter store's handle index and the person lookup; an
unknown ``@handle`` becomes a provisional ``handle:<name>`` identity that is
reconciled into the numeric record as soon as the real account shows up.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .counter_store import Identity
from .storage import StorageError
from .utils import display_name_for, is_provisional, provisional_id

if TYPE_CHECKING:
    from .config import ResolverConfig
    from .counter_store import CounterStore

_HANDLE_TOKEN = re.compile(r"(?<!\w)@(\w+)")


class ReferenceKind(enum.Enum):
    REPLY = "reply"
    FORWARD = "forward"
    MENTION = "mention"
    NUMERIC_ID = "numeric_id"
    HANDLE = "handle"

    @property
    def structural(self) -> bool:
        return self in (ReferenceKind.REPLY, ReferenceKind.FORWARD, ReferenceKind.MENTION)


@dataclass(frozen=True)
class Reference:
    """A raw pointer at a person: a Telegram user dict or a text token."""

    kind: ReferenceKind
    person: dict[str, Any] | None = None
    token: str | None = None


@dataclass(frozen=True)
class ResolvedIdentity:
    identity: Identity
    source: ReferenceKind

    @property
    def provisional(self) -> bool:
        return self.identity.provisional


def identity_from_person(person: dict[str, Any]) -> Identity:
    """Canonical identity for a Telegram user dict (must carry ``id``)."""
    return Identity(
        id=str(person["id"]),
        handle=person.get("username") or None,
        display_name=display_name_for(person),
    )


def same_identity(a: Identity | None, b: Identity | None) -> bool:
    """Identity equality is canonical-id equality, nothing else."""
    return a is not None and b is not None and a.id == b.id


class IdentityResolver:
    """Resolves references to canonical identities, writing through to the store.

    *lookup* is any object with
    ``async lookup_person(context_id, *, user_id=None, handle=None) -> dict | None``
    returning a Telegram user dict when the person is addressable in
    *context_id*. Lookup failures must come back as ``None``.
    """

    def __init__(
        self,
        config: ResolverConfig,
        store: CounterStore,
        lookup: object,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._store = store
        self._lookup = lookup
        self._logger = logger
        self._numeric_token = re.compile(rf"^\d{{{config.min_numeric_id_length},}}$")

    # ══════════════════════════════════════════════════════════
    #  Reference extraction
    # ══════════════════════════════════════════════════════════

    def extract_references(self, message: dict[str, Any], args_text: str = "") -> list[Reference]:
        """All references present in *message*, in precedence order."""
        refs: list[Reference] = []

        reply = message.get("reply_to_message")
        if reply and reply.get("from"):
            refs.append(Reference(ReferenceKind.REPLY, person=reply["from"]))

        if message.get("forward_from"):
            refs.append(Reference(ReferenceKind.FORWARD, person=message["forward_from"]))

        for entity in message.get("entities") or []:
            if entity.get("type") == "text_mention" and entity.get("user"):
                refs.append(Reference(ReferenceKind.MENTION, person=entity["user"]))
                break

        tokens = args_text.split()
        numeric = next((t for t in tokens if self._numeric_token.match(t)), None)
        if numeric:
            refs.append(Reference(ReferenceKind.NUMERIC_ID, token=numeric))

        handle_match = _HANDLE_TOKEN.search(args_text)
        if handle_match:
            refs.append(Reference(ReferenceKind.HANDLE, token=handle_match.group(1)))

        return refs

    def is_numeric_token(self, token: str) -> bool:
        return bool(self._numeric_token.match(token))

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def resolve_message(
        self, message: dict[str, Any], args_text: str = "",
    ) -> ResolvedIdentity | None:
        """Resolve the highest-precedence reference in *message*, or None."""
        refs = self.extract_references(message, args_text)
        if not refs:
            return None
        context_id = (message.get("chat") or {}).get("id")
        return await self.resolve(refs[0], context_id)

    async def resolve(self, reference: Reference, context_id: Any = None) -> ResolvedIdentity | None:
        """Resolve one reference. Returns None when nobody matches."""
        if reference.kind.structural:
            if not reference.person or "id" not in reference.person:
                return None
            identity = await self._confirm(reference.person)
            self._logger.debug("Resolved %s reference to %s", reference.kind.value, identity.id)
            return ResolvedIdentity(identity, reference.kind)

        token = (reference.token or "").strip()
        if reference.kind is ReferenceKind.NUMERIC_ID:
            if not self.is_numeric_token(token):
                return None
            return await self._resolve_numeric(token, context_id)
        if reference.kind is ReferenceKind.HANDLE:
            token = token.lstrip("@")
            if not token:
                return None
            return await self._resolve_handle(token, context_id)
        return None

    async def resolve_actor(self, person: dict[str, Any]) -> Identity:
        """Canonical identity for a message sender, synced into the store."""
        return await self._confirm(person)

    # ══════════════════════════════════════════════════════════
    #  Textual resolution
    # ══════════════════════════════════════════════════════════

    async def _resolve_numeric(self, token: str, context_id: Any) -> ResolvedIdentity | None:
        person = await self._safe_lookup(context_id, user_id=int(token))
        if person is not None:
            return ResolvedIdentity(await self._confirm(person), ReferenceKind.NUMERIC_ID)

        known = self._store.get_identity(token)
        if known is not None:
            return ResolvedIdentity(known, ReferenceKind.NUMERIC_ID)

        self._logger.debug("Numeric ID %s not found", token)
        return None

    async def _resolve_handle(self, handle: str, context_id: Any) -> ResolvedIdentity | None:
        known_id = self._store.find_by_handle(handle)
        if known_id is not None and not is_provisional(known_id):
            return ResolvedIdentity(self._store.get_identity(known_id), ReferenceKind.HANDLE)

        person = await self._safe_lookup(context_id, handle=handle)
        if person is not None and "id" in person:
            return ResolvedIdentity(await self._confirm(person), ReferenceKind.HANDLE)

        if known_id is not None:
            return ResolvedIdentity(self._store.get_identity(known_id), ReferenceKind.HANDLE)
        return ResolvedIdentity(Identity.for_handle(handle), ReferenceKind.HANDLE)

    async def _safe_lookup(self, context_id: Any, **kwargs: Any) -> dict[str, Any] | None:
        if context_id is None:
            return None
        try:
            return await self._lookup.lookup_person(context_id, **kwargs)
        except Exception:
            self._logger.exception("Person lookup failed for %s in %s", kwargs, context_id)
            return None

    # ══════════════════════════════════════════════════════════
    #  Write-through
    # ══════════════════════════════════════════════════════════

    async def _confirm(self, person: dict[str, Any]) -> Identity:
        """Sync a confirmed person into the store and fold in any provisional record."""
        identity = identity_from_person(person)
        try:
            await self._store.sync_identity(identity)
            if identity.handle:
                pending = provisional_id(identity.handle)
                if pending in self._store:
                    await self._store.reconcile(pending, identity.id)
        except StorageError:
            # Sync is best effort; the next successful write carries it
            self._logger.exception("Could not persist identity sync for %s", identity.id)
        return identity
