"""Tests for hitball.identity_resolver — reference precedence and resolution."""

from __future__ import annotations

import logging

import pytest

from hitball.config import ResolverConfig
from hitball.counter_store import CounterStore, Identity
from hitball.identity_resolver import (
    IdentityResolver,
    Reference,
    ReferenceKind,
    identity_from_person,
    same_identity,
)
from conftest import GROUP_CHAT, MockTelegramClient, make_message, make_user

ALICE = make_user(1000001, "alice", "Alice")
BOB = make_user(1000002, "bob", "Bob")
CAROL = make_user(1000003, None, "Carol", last_name="King")


class TestExtractReferences:

    def test_no_references(self, resolver: IdentityResolver):
        assert resolver.extract_references(make_message("/hit", ALICE), "") == []

    def test_precedence_order(self, resolver: IdentityResolver):
        message = make_message(
            "/hit 1000009 @dave",
            ALICE,
            reply_to=BOB,
            forward_from=CAROL,
            entities=[{"type": "text_mention", "offset": 0, "length": 4, "user": CAROL}],
        )
        kinds = [r.kind for r in resolver.extract_references(message, "1000009 @dave")]
        assert kinds == [
            ReferenceKind.REPLY,
            ReferenceKind.FORWARD,
            ReferenceKind.MENTION,
            ReferenceKind.NUMERIC_ID,
            ReferenceKind.HANDLE,
        ]

    def test_short_numbers_are_not_ids(self, resolver: IdentityResolver):
        refs = resolver.extract_references(make_message("/hit 1234", ALICE), "1234")
        assert refs == []

    def test_handle_token(self, resolver: IdentityResolver):
        refs = resolver.extract_references(make_message("/hit @Bob hard", ALICE), "@Bob hard")
        assert refs == [Reference(ReferenceKind.HANDLE, token="Bob")]

    def test_email_address_is_not_a_handle(self, resolver: IdentityResolver):
        text = "mail@example.com"
        assert resolver.extract_references(make_message(f"/hit {text}", ALICE), text) == []

    def test_handle_after_email_address(self, resolver: IdentityResolver):
        text = "mail@example.com (@Bob)"
        refs = resolver.extract_references(make_message(f"/hit {text}", ALICE), text)
        assert refs == [Reference(ReferenceKind.HANDLE, token="Bob")]

    def test_min_length_configurable(self, store: CounterStore, mock_telegram: MockTelegramClient):
        resolver = IdentityResolver(
            ResolverConfig(min_numeric_id_length=3), store, mock_telegram, logging.getLogger("test"),
        )
        assert resolver.is_numeric_token("123")
        assert not resolver.is_numeric_token("12")
        assert not resolver.is_numeric_token("12a45")


class TestStructural:

    async def test_reply_wins(self, resolver: IdentityResolver, store: CounterStore):
        message = make_message("/hit @dave", ALICE, reply_to=BOB)
        resolved = await resolver.resolve_message(message, "@dave")
        assert resolved.identity.id == "1000002"
        assert resolved.source is ReferenceKind.REPLY
        assert store.find_by_handle("bob") == "1000002"

    async def test_forward(self, resolver: IdentityResolver):
        resolved = await resolver.resolve_message(make_message("/hit", ALICE, forward_from=CAROL), "")
        assert resolved.identity.id == "1000003"
        assert resolved.identity.display_name == "Carol King"

    async def test_text_mention(self, resolver: IdentityResolver):
        message = make_message(
            "/hit Carol", ALICE,
            entities=[
                {"type": "bot_command", "offset": 0, "length": 4},
                {"type": "text_mention", "offset": 5, "length": 5, "user": CAROL},
            ],
        )
        resolved = await resolver.resolve_message(message, "Carol")
        assert resolved.source is ReferenceKind.MENTION
        assert resolved.identity.id == "1000003"

    async def test_no_reference_is_none(self, resolver: IdentityResolver):
        assert await resolver.resolve_message(make_message("/hit", ALICE), "") is None

    async def test_structural_without_id_is_none(self, resolver: IdentityResolver):
        assert await resolver.resolve(Reference(ReferenceKind.REPLY, person={"first_name": "x"})) is None


class TestNumeric:

    async def test_lookup_confirms(self, resolver: IdentityResolver, mock_telegram: MockTelegramClient):
        mock_telegram.add_person(BOB)
        resolved = await resolver.resolve_message(make_message("/hit 1000002", ALICE), "1000002")
        assert resolved.identity.id == "1000002"
        assert resolved.identity.handle == "bob"
        assert mock_telegram.lookup_calls == [(GROUP_CHAT["id"], 1000002, None)]

    async def test_known_record_fallback(self, resolver: IdentityResolver, store: CounterStore):
        await store.record(Identity(id="1000002", handle="bob", display_name="@bob"))
        resolved = await resolver.resolve_message(make_message("/hit 1000002", ALICE), "1000002")
        assert resolved.identity.id == "1000002"

    async def test_unknown_is_none(self, resolver: IdentityResolver):
        assert await resolver.resolve_message(make_message("/hit 5555555", ALICE), "5555555") is None

    async def test_lookup_exception_is_not_fatal(self, resolver: IdentityResolver, mock_telegram: MockTelegramClient):
        async def boom(*args, **kwargs):
            raise RuntimeError("network down")

        mock_telegram.lookup_person = boom
        assert await resolver.resolve_message(make_message("/hit 5555555", ALICE), "5555555") is None


class TestHandle:

    async def test_known_numeric_record_without_lookup(
        self, resolver: IdentityResolver, store: CounterStore, mock_telegram: MockTelegramClient,
    ):
        await resolver.resolve_actor(BOB)
        resolved = await resolver.resolve_message(make_message("/hit @BOB", ALICE), "@BOB")
        assert resolved.identity.id == "1000002"
        assert mock_telegram.lookup_calls == []

    async def test_lookup_confirms_unknown_handle(
        self, resolver: IdentityResolver, mock_telegram: MockTelegramClient,
    ):
        mock_telegram.add_person(BOB)
        resolved = await resolver.resolve_message(make_message("/hit @bob", ALICE), "@bob")
        assert resolved.identity.id == "1000002"
        assert not resolved.provisional

    async def test_unresolvable_handle_is_provisional(self, resolver: IdentityResolver, store: CounterStore):
        resolved = await resolver.resolve_message(make_message("/hit @Ghost", ALICE), "@Ghost")
        assert resolved.provisional
        assert resolved.identity.id == "handle:ghost"
        # Nothing is written until a hit is recorded
        assert "handle:ghost" not in store

    async def test_existing_provisional_upgraded_by_lookup(
        self, resolver: IdentityResolver, store: CounterStore, mock_telegram: MockTelegramClient,
    ):
        await store.record(Identity.for_handle("bob"))
        mock_telegram.add_person(BOB)

        resolved = await resolver.resolve_message(make_message("/hit @bob", ALICE), "@bob")
        assert resolved.identity.id == "1000002"
        assert store.get_count("1000002") == 1
        assert "handle:bob" not in store

    async def test_existing_provisional_returned_when_lookup_fails(
        self, resolver: IdentityResolver, store: CounterStore,
    ):
        await store.record(Identity.for_handle("bob"))
        resolved = await resolver.resolve_message(make_message("/hit @bob", ALICE), "@bob")
        assert resolved.identity.id == "handle:bob"


class TestReconcileScenario:
    """A provisional handle record is folded in when the account shows up."""

    async def test_provisional_then_numeric_then_reply(
        self, resolver: IdentityResolver, store: CounterStore, mock_telegram: MockTelegramClient,
    ):
        # 1. @bob is unknown: counted provisionally
        resolved = await resolver.resolve_message(make_message("/hit @bob", ALICE), "@bob")
        await store.record(resolved.identity)
        assert store.get_count("handle:bob") == 1

        # 2. The numeric ID is confirmed by lookup, but without a username
        mock_telegram.add_person(make_user(555555, None, "Bob"))
        resolved = await resolver.resolve_message(make_message("/hit 555555", ALICE), "555555")
        await store.record(resolved.identity)
        assert store.get_count("555555") == 1
        assert "handle:bob" in store

        # 3. A reply carries both id and username: records merge
        resolved = await resolver.resolve_message(
            make_message("/hit", ALICE, reply_to=make_user(555555, "bob", "Bob")), "",
        )
        assert resolved.identity.id == "555555"
        assert store.get_count("555555") == 1 + 1
        assert "handle:bob" not in store
        assert store.find_by_handle("bob") == "555555"


class TestHelpers:

    def test_identity_from_person(self):
        ident = identity_from_person(BOB)
        assert ident == Identity(id="1000002", handle="bob", display_name="@bob")

    def test_same_identity(self):
        assert same_identity(Identity(id="1"), Identity(id="1", handle="x"))
        assert not same_identity(Identity(id="1"), Identity(id="2"))
        assert not same_identity(Identity(id="1"), None)

    async def test_actor_synced(self, resolver: IdentityResolver, store: CounterStore):
        ident = await resolver.resolve_actor(CAROL)
        assert ident.id == "1000003"
        assert store.get_record("1000003").display_name == "Carol King"
        assert store.get_count("1000003") == 0
