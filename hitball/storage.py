"""JSON snapshot storage for the counter store.

Each public method is async and wraps a synchronous inner function via
``loop.run_in_executor(None, _sync)``. The whole snapshot is rewritten on
every save: the JSON is written to a temp file in the same directory and
moved into place with ``os.replace`` so a reader never sees a half-written
file.

Files written by the 1.x bot (``hitData`` / ``bounceAchievements``)
are migrated to the current shape on load.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .utils import format_timestamp, now_utc, provisional_id

SNAPSHOT_VERSION = 2

_LEGACY_USER_KEY = re.compile(r"^user_(\d+)$")


class StorageError(Exception):
    """Base class for snapshot storage failures."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class StorageReadError(StorageError):
    """The snapshot exists but could not be read or parsed."""


class StorageWriteError(StorageError):
    """The snapshot could not be written; in-memory state is not yet durable."""


def empty_snapshot() -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "last_updated": format_timestamp(now_utc()),
        "next_seq": 0,
        "records": {},
    }


class JsonSnapshotStorage:
    """Durable full-rewrite storage backed by a single JSON file."""

    def __init__(self, path: str, logger: logging.Logger) -> None:
        self._path = Path(path)
        self._logger = logger

    @property
    def path(self) -> str:
        return str(self._path)

    # ══════════════════════════════════════════════════════════
    #  Load
    # ══════════════════════════════════════════════════════════

    async def load(self) -> dict[str, Any] | None:
        """Return the stored snapshot, or None if the file does not exist.

        Raises StorageReadError for unreadable or malformed files.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self) -> dict[str, Any] | None:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StorageReadError(self.path, f"Cannot read snapshot ({e})") from e

        if not isinstance(raw, dict):
            raise StorageReadError(self.path, "Snapshot is not a JSON object")

        if "hitData" in raw:
            self._logger.info("Migrating legacy data file %s", self.path)
            return migrate_legacy(raw)

        if not isinstance(raw.get("records"), dict):
            raise StorageReadError(self.path, "Snapshot has no records mapping")
        raw.setdefault("next_seq", len(raw["records"]))
        return raw

    # ══════════════════════════════════════════════════════════
    #  Save
    # ══════════════════════════════════════════════════════════

    async def save(self, snapshot: dict[str, Any]) -> None:
        """Atomically replace the stored snapshot. Raises StorageWriteError."""
        # Serialize on the loop thread so later mutations can't race the dump
        payload = json.dumps(snapshot, ensure_ascii=False, indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, payload)

    def _save_sync(self, payload: str) -> None:
        directory = self._path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=directory,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise StorageWriteError(self.path, f"Cannot write snapshot ({e})") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    self._logger.warning("Could not remove temp file %s", tmp_name)


# ══════════════════════════════════════════════════════════════
#  Legacy migration
# ══════════════════════════════════════════════════════════════

def _legacy_key_to_id(key: str, entry: dict[str, Any]) -> tuple[str, str | None]:
    """Map a legacy-format key to ``(identity_id, handle)``."""
    username = entry.get("username")
    if key.startswith("@"):
        return provisional_id(key), key[1:]
    match = _LEGACY_USER_KEY.match(key)
    if match:
        return match.group(1), username
    if key.isdigit():
        return key, username
    # Bare names were only ever written by very early versions
    return provisional_id(key), key


def migrate_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    """Convert a legacy ``{hitData, bounceAchievements}`` file to a snapshot."""
    snapshot = empty_snapshot()
    records: dict[str, dict[str, Any]] = snapshot["records"]
    fallback_ts = raw.get("lastUpdated") or snapshot["last_updated"]
    seq = 0

    for key, entry in (raw.get("hitData") or {}).items():
        identity_id, handle = _legacy_key_to_id(key, entry)
        first_at = entry.get("firstHitDate") or fallback_ts
        existing = records.get(identity_id)
        if existing:
            existing["count"] += int(entry.get("count", 0))
            existing["first_event_at"] = min(existing["first_event_at"], first_at)
            continue
        records[identity_id] = {
            "handle": handle,
            "display_name": entry.get("name"),
            "count": int(entry.get("count", 0)),
            "first_event_at": first_at,
            "last_event_at": fallback_ts,
            "bounce_achieved": False,
            "bounce_achieved_at": None,
            "seq": seq,
        }
        seq += 1

    for key, entry in (raw.get("bounceAchievements") or {}).items():
        if not entry.get("hasBounceAchievement"):
            continue
        identity_id, handle = _legacy_key_to_id(key, entry)
        record = records.get(identity_id)
        if record is None:
            record = records[identity_id] = {
                "handle": handle,
                "display_name": entry.get("name"),
                "count": 0,
                "first_event_at": entry.get("firstBounceDate") or fallback_ts,
                "last_event_at": entry.get("firstBounceDate") or fallback_ts,
                "bounce_achieved": False,
                "bounce_achieved_at": None,
                "seq": seq,
            }
            seq += 1
        record["bounce_achieved"] = True
        record["bounce_achieved_at"] = entry.get("firstBounceDate") or fallback_ts

    snapshot["next_seq"] = seq
    return snapshot
