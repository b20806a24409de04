"""Counter store — authoritative identity → hit count mapping.

The full store is held in memory and rewritten to the snapshot storage on
every mutating call, so a count returned by ``record()`` is on disk by the
time the call returns. Queries never touch storage.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .storage import StorageReadError, StorageWriteError, empty_snapshot
from .utils import (
    format_timestamp,
    is_provisional,
    normalize_handle,
    now_utc,
    parse_timestamp,
    provisional_id,
)

if TYPE_CHECKING:
    from .storage import JsonSnapshotStorage


@dataclass(frozen=True)
class Identity:
    """Canonical key for one participant.

    ``id`` is the platform numeric ID as a string, or ``handle:<name>`` for a
    provisional identity whose numeric ID is not known yet.
    """

    id: str
    handle: str | None = None
    display_name: str | None = None

    @property
    def provisional(self) -> bool:
        return is_provisional(self.id)

    @classmethod
    def for_handle(cls, handle: str, display_name: str | None = None) -> Identity:
        clean = handle.strip().lstrip("@")
        return cls(id=provisional_id(clean), handle=clean, display_name=display_name or f"@{clean}")

    @property
    def label(self) -> str:
        if self.display_name:
            return self.display_name
        if self.handle:
            return f"@{self.handle}"
        return f"User {self.id}"


@dataclass
class CounterRecord:
    """Hit count and display metadata for one identity."""

    count: int
    first_event_at: datetime
    last_event_at: datetime
    handle: str | None = None
    display_name: str | None = None
    bounce_achieved: bool = False
    bounce_achieved_at: datetime | None = None
    seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "display_name": self.display_name,
            "count": self.count,
            "first_event_at": format_timestamp(self.first_event_at),
            "last_event_at": format_timestamp(self.last_event_at),
            "bounce_achieved": self.bounce_achieved,
            "bounce_achieved_at": format_timestamp(self.bounce_achieved_at),
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CounterRecord:
        first = parse_timestamp(data.get("first_event_at")) or now_utc()
        return cls(
            count=max(0, int(data.get("count", 0))),
            first_event_at=first,
            last_event_at=parse_timestamp(data.get("last_event_at")) or first,
            handle=data.get("handle"),
            display_name=data.get("display_name"),
            bounce_achieved=bool(data.get("bounce_achieved", False)),
            bounce_achieved_at=parse_timestamp(data.get("bounce_achieved_at")),
            seq=int(data.get("seq", 0)),
        )


class CounterStore:
    """Durable, rank-queryable hit counters keyed by canonical identity."""

    def __init__(self, storage: JsonSnapshotStorage, logger: logging.Logger) -> None:
        self._storage = storage
        self._logger = logger
        self._records: dict[str, CounterRecord] = {}
        self._next_seq = 0
        # Serializes mutate-and-persist so every rewrite includes all prior mutations
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity_id: object) -> bool:
        return identity_id in self._records

    # ══════════════════════════════════════════════════════════
    #  Persistence
    # ══════════════════════════════════════════════════════════

    async def load(self) -> None:
        """Load the snapshot once at startup.

        A missing file initializes and persists an empty store. Any other
        read failure keeps the last good in-memory state and re-raises
        StorageReadError.
        """
        try:
            snapshot = await self._storage.load()
        except StorageReadError:
            self._logger.error(
                "Could not load %s; keeping %d in-memory record(s)",
                self._storage.path, len(self._records),
            )
            raise

        if snapshot is None:
            self._logger.info("No data file at %s, creating an empty store", self._storage.path)
            self._records = {}
            self._next_seq = 0
            async with self._lock:
                await self._persist()
            return

        self._records = {
            identity_id: CounterRecord.from_dict(data)
            for identity_id, data in snapshot["records"].items()
        }
        highest = max((r.seq for r in self._records.values()), default=-1)
        self._next_seq = max(int(snapshot.get("next_seq", 0)), highest + 1)
        self._logger.info("Loaded %d record(s) from %s", len(self._records), self._storage.path)

    def to_snapshot(self) -> dict[str, Any]:
        snapshot = empty_snapshot()
        snapshot["next_seq"] = self._next_seq
        snapshot["records"] = {
            identity_id: record.to_dict() for identity_id, record in self._records.items()
        }
        return snapshot

    async def _persist(self) -> None:
        """Rewrite the whole store. Caller must hold ``self._lock``."""
        try:
            await self._storage.save(self.to_snapshot())
        except StorageWriteError:
            self._logger.error("Failed to persist %d record(s) to %s", len(self._records), self._storage.path)
            raise

    # ══════════════════════════════════════════════════════════
    #  Mutations
    # ══════════════════════════════════════════════════════════

    async def record(self, identity: Identity) -> int:
        """Count one hit against *identity*. Returns the post-increment count."""
        async with self._lock:
            now = now_utc()
            record = self._get_or_create(identity.id, now)
            record.count += 1
            record.last_event_at = now
            self._apply_metadata(identity, record)
            await self._persist()
            return record.count

    async def sync_identity(self, identity: Identity) -> CounterRecord:
        """Write-through refresh of handle and display name.

        Creates a zero-count record if the identity is new. Persists only
        when something changed.
        """
        async with self._lock:
            changed = identity.id not in self._records
            record = self._get_or_create(identity.id, now_utc())
            changed = self._apply_metadata(identity, record) or changed
            if changed:
                self._logger.debug("Synced identity %s (%s)", identity.id, record.display_name)
                await self._persist()
            return record

    async def mark_bounce_achieved(self, identity_id: str) -> bool:
        """Set the bounce achievement. Returns True only the first time."""
        async with self._lock:
            record = self._records.get(identity_id)
            if record is not None and record.bounce_achieved:
                return False
            now = now_utc()
            if record is None:
                record = self._get_or_create(identity_id, now)
            record.bounce_achieved = True
            record.bounce_achieved_at = now
            await self._persist()
            return True

    async def reconcile(self, provisional_id: str, authoritative_id: str) -> bool:
        """Merge a provisional handle-keyed record into the authoritative one.

        Counts add, the earlier first event wins, bounce flags are OR'd and
        the provisional record is removed. The merge is rolled back if the
        write fails. Returns False when there is nothing to merge.
        """
        if provisional_id == authoritative_id:
            return False
        async with self._lock:
            provisional = self._records.get(provisional_id)
            if provisional is None:
                return False

            authoritative = self._records.get(authoritative_id)
            backup = dataclasses.replace(authoritative) if authoritative else None

            if authoritative is None:
                merged = dataclasses.replace(provisional)
            else:
                merged = authoritative
                merged.count += provisional.count
                if (provisional.first_event_at, provisional.seq) < (merged.first_event_at, merged.seq):
                    merged.first_event_at = provisional.first_event_at
                    merged.seq = provisional.seq
                merged.last_event_at = max(merged.last_event_at, provisional.last_event_at)
                if provisional.bounce_achieved and not merged.bounce_achieved:
                    merged.bounce_achieved = True
                    merged.bounce_achieved_at = provisional.bounce_achieved_at
                merged.handle = merged.handle or provisional.handle
                merged.display_name = merged.display_name or provisional.display_name

            self._records[authoritative_id] = merged
            del self._records[provisional_id]

            try:
                await self._persist()
            except StorageWriteError:
                self._records[provisional_id] = provisional
                if backup is None:
                    del self._records[authoritative_id]
                else:
                    self._records[authoritative_id] = backup
                raise

            self._logger.info(
                "Reconciled %s into %s (count now %d)",
                provisional_id, authoritative_id, merged.count,
            )
            return True

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    def get_count(self, identity_id: str) -> int:
        record = self._records.get(identity_id)
        return record.count if record else 0

    def get_record(self, identity_id: str) -> CounterRecord | None:
        return self._records.get(identity_id)

    def get_identity(self, identity_id: str) -> Identity | None:
        record = self._records.get(identity_id)
        if record is None:
            return None
        return Identity(id=identity_id, handle=record.handle, display_name=record.display_name)

    def has_bounce_achievement(self, identity_id: str) -> bool:
        record = self._records.get(identity_id)
        return bool(record and record.bounce_achieved)

    def find_by_handle(self, handle: str) -> str | None:
        """Case-insensitive exact handle match. Numeric records win over provisional ones."""
        wanted = normalize_handle(handle)
        if not wanted:
            return None
        fallback: str | None = None
        for identity_id, record in self._records.items():
            if record.handle and normalize_handle(record.handle) == wanted:
                if not is_provisional(identity_id):
                    return identity_id
                fallback = identity_id
        return fallback

    def rank(self, identity_id: str) -> int | None:
        """1-based position in the leaderboard, or None for unknown identities."""
        if identity_id not in self._records:
            return None
        for position, (other_id, _) in enumerate(self._ordered(), start=1):
            if other_id == identity_id:
                return position
        return None

    def leaderboard(self, limit: int | None = 10) -> list[tuple[Identity, CounterRecord]]:
        """Identities by descending count; ties go to the earliest first event."""
        ordered = self._ordered()
        if limit is not None:
            ordered = ordered[:limit]
        return [
            (Identity(id=identity_id, handle=r.handle, display_name=r.display_name), r)
            for identity_id, r in ordered
        ]

    def total_hits(self) -> int:
        return sum(r.count for r in self._records.values())

    # ══════════════════════════════════════════════════════════
    #  Helpers
    # ══════════════════════════════════════════════════════════

    def _ordered(self) -> list[tuple[str, CounterRecord]]:
        return sorted(
            self._records.items(),
            key=lambda kv: (-kv[1].count, kv[1].first_event_at, kv[1].seq),
        )

    def _get_or_create(self, identity_id: str, now: datetime) -> CounterRecord:
        record = self._records.get(identity_id)
        if record is None:
            record = CounterRecord(
                count=0, first_event_at=now, last_event_at=now, seq=self._next_seq,
            )
            self._next_seq += 1
            self._records[identity_id] = record
        return record

    def _apply_metadata(self, identity: Identity, record: CounterRecord) -> bool:
        """Refresh non-null handle/display name. Returns True if anything changed."""
        changed = False
        if identity.display_name and record.display_name != identity.display_name:
            record.display_name = identity.display_name
            changed = True
        if identity.handle and record.handle != identity.handle:
            record.handle = identity.handle
            changed = True
        if identity.handle and not identity.provisional:
            changed = self._take_over_handle(identity.id, identity.handle) or changed
        return changed

    def _take_over_handle(self, owner_id: str, handle: str) -> bool:
        """Clear *handle* from other numeric records; usernames move between accounts."""
        wanted = normalize_handle(handle)
        changed = False
        for identity_id, record in self._records.items():
            if identity_id == owner_id or is_provisional(identity_id):
                continue
            if record.handle and normalize_handle(record.handle) == wanted:
                self._logger.info(
                    "Handle @%s moved from %s to %s", record.handle, identity_id, owner_id,
                )
                record.handle = None
                changed = True
        return changed
