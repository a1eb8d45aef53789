"""
Durable storage of the last observed alliance roster.

The snapshot is a single JSON document:

    {
        "version": 1,
        "alliance_id": 99010468,
        "cycle": 42,
        "saved_at": "2026-10-19T12:00:00+00:00",
        "corporations": [98000001, 98000002],
        "checksum": "<sha256 of the other fields>"
    }

Writes go to a temp file in the same directory, are fsynced, then renamed
over the target, so a crash mid-save leaves either the previous snapshot or
the new one. The checksum catches anything else that damaged the file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from ..core.errors import IncompatibleSnapshotError, SnapshotCorruptError, StoreError
from ..core.models import SNAPSHOT_VERSION, CorporationId, Roster, SnapshotRecord

logger = logging.getLogger(__name__)

_CHECKSUM_FIELDS = ("version", "alliance_id", "cycle", "saved_at", "corporations")


class StateStore(ABC):
    """Persistence contract consumed by the poll scheduler."""

    @abstractmethod
    def load(self) -> Optional[Roster]:
        """Return the last persisted roster, or None on first run."""
        pass

    @abstractmethod
    def save(self, roster: Iterable[CorporationId]) -> None:
        """Atomically replace the persisted roster."""
        pass


def compute_checksum(payload: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON encoding of the checksummed fields."""
    canonical = json.dumps(
        {key: payload.get(key) for key in _CHECKSUM_FIELDS},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class JsonStateStore(StateStore):
    """
    JSON file snapshot store.

    Usage:
        store = JsonStateStore(Path("state/roster.json"), alliance_id=99010468)
        previous = store.load()        # None on first run
        store.save({98000001, 98000002})
    """

    def __init__(self, path: Path | str, alliance_id: Optional[int] = None):
        """
        Initialize the store.

        Args:
            path: Snapshot file location (parent directories are created on save)
            alliance_id: Alliance the snapshot must belong to; a snapshot
                         recorded for another alliance is refused on load
        """
        self.path = Path(path)
        self.alliance_id = alliance_id
        self._cycle = 0
        self._lock = threading.Lock()

    @property
    def cycle(self) -> int:
        """Cycle counter of the last loaded or saved snapshot."""
        return self._cycle

    # =========================================================================
    # Reading
    # =========================================================================

    def read(self) -> Optional[SnapshotRecord]:
        """
        Read and verify the snapshot record.

        Returns:
            The record, or None if no snapshot exists yet

        Raises:
            SnapshotCorruptError: unreadable JSON, bad checksum, invalid fields
            IncompatibleSnapshotError: other format version or other alliance
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Cannot read snapshot at {self.path}: {e}") from e

        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise SnapshotCorruptError(str(self.path), f"invalid JSON: {e}") from e

        if not isinstance(payload, dict) or "version" not in payload:
            raise SnapshotCorruptError(str(self.path), "missing version tag")

        if payload["version"] != SNAPSHOT_VERSION:
            raise IncompatibleSnapshotError(
                str(self.path),
                f"format version {payload['version']!r}, expected {SNAPSHOT_VERSION}",
            )

        if payload.get("checksum") != compute_checksum(payload):
            raise SnapshotCorruptError(str(self.path), "checksum mismatch")

        try:
            record = SnapshotRecord.model_validate(payload)
        except ValidationError as e:
            raise SnapshotCorruptError(str(self.path), f"invalid fields: {e}") from e

        if len(set(record.corporations)) != len(record.corporations):
            raise SnapshotCorruptError(str(self.path), "duplicate corporation ids")

        if (
            self.alliance_id is not None
            and record.alliance_id is not None
            and record.alliance_id != self.alliance_id
        ):
            raise IncompatibleSnapshotError(
                str(self.path),
                f"recorded for alliance {record.alliance_id}, watching {self.alliance_id}",
            )

        with self._lock:
            self._cycle = record.cycle
        return record

    def load(self) -> Optional[Roster]:
        """Return the persisted roster, or None if this is the first run."""
        record = self.read()
        if record is None:
            logger.info(f"No snapshot at {self.path}, first cycle will set the baseline")
            return None

        logger.info(
            f"Loaded snapshot cycle {record.cycle} from {self.path}: "
            f"{len(record.corporations)} corporations (saved {record.saved_at.isoformat()})"
        )
        return record.roster

    # =========================================================================
    # Writing
    # =========================================================================

    def save(self, roster: Iterable[CorporationId]) -> None:
        """
        Atomically replace the snapshot with ``roster``.

        Saves are serialized. A save that finds the snapshot already advanced
        past the cycle it started from is refused, so a delayed writer can
        never put an older roster back over a newer one.

        Raises:
            StoreError: the snapshot could not be written, or the write was
                stale; the previous snapshot is intact
        """
        generation = self._cycle
        corporations = sorted(set(roster))

        with self._lock:
            if self._cycle != generation:
                raise StoreError(
                    f"Stale write to {self.path} refused: started at cycle {generation}, "
                    f"snapshot is now at cycle {self._cycle}"
                )

            payload: dict[str, Any] = {
                "version": SNAPSHOT_VERSION,
                "alliance_id": self.alliance_id,
                "cycle": generation + 1,
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "corporations": corporations,
            }
            payload["checksum"] = compute_checksum(payload)
            self._write(json.dumps(payload, indent=2))
            self._cycle = payload["cycle"]

        logger.debug(f"Saved snapshot cycle {payload['cycle']} ({len(corporations)} corporations)")

    def _write(self, data: str) -> None:
        tmp_path: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
            _fsync_directory(self.path.parent)
        except OSError as e:
            raise StoreError(f"Failed to save snapshot to {self.path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.warning(f"Could not remove temp file {tmp_path}")


def _fsync_directory(directory: Path) -> None:
    """Make the rename durable. Not supported on every platform."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class ReadOnlyStateStore(StateStore):
    """
    Loads through another store but never writes. Used for dry runs, so
    transitions only logged are still announced by a later real run.
    """

    def __init__(self, inner: StateStore):
        self.inner = inner

    def load(self) -> Optional[Roster]:
        return self.inner.load()

    def save(self, roster: Iterable[CorporationId]) -> None:
        logger.info(f"[dry-run] Snapshot not saved ({len(set(roster))} corporations)")
