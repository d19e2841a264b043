"""Idempotency stores and daily message counters, persisted as JSON with atomic writes."""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Set

from ..errors import IdempotencyStoreError

logger = logging.getLogger(__name__)

STORE_VERSION = 1


def _write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON through a temp file and rename, keeping the previous file as ``.bak``."""
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(data, indent=2, ensure_ascii=False)

    if path.exists():
        bak_path = path.with_suffix(".json.bak")
        try:
            shutil.copy2(str(path), str(bak_path))
        except Exception as e:
            logger.debug(f"Backup creation failed (non-fatal): {e}")

    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{path.stem}-", suffix=".tmp", dir=str(path.parent)
    )
    try:
        try:
            os.write(fd, content.encode("utf-8"))
        finally:
            os.close(fd)
        os.replace(tmp_path, str(path))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class MemoryIdempotencyStore:
    """In-process store. Does not survive restarts; for tests and dry runs."""

    def __init__(self):
        self._keys: Set[str] = set()

    def has(self, key: str) -> bool:
        return key in self._keys

    def mark(self, key: str) -> None:
        self._keys.add(key)

    def __len__(self) -> int:
        return len(self._keys)


class JsonIdempotencyStore:
    """Durable key -> fired map.

    All keys live in a single JSON file that is loaded once and written
    through on every new key (temp file + rename, previous file kept as
    ``.bak``). Keys embed their own day/hour scope, so nothing is ever
    expired here.

    A file that cannot be read is treated as empty (fail open). A write
    that fails raises IdempotencyStoreError for that key only.
    """

    def __init__(self, store_path: str = "~/.dayvalet/triggers/fired.json"):
        self._store_path = Path(os.path.expanduser(store_path))
        self._keys: Set[str] = set()
        self._load()

    @property
    def store_path(self) -> Path:
        return self._store_path

    def _load(self) -> None:
        if not self._store_path.exists():
            logger.info(f"Idempotency store not found at {self._store_path}, starting empty")
            return

        try:
            data = json.loads(self._store_path.read_text(encoding="utf-8"))
            version = data.get("version", 1)
            if version != STORE_VERSION:
                logger.warning(f"Idempotency store version mismatch: expected {STORE_VERSION}, got {version}")
            keys = data.get("keys", [])
            if not isinstance(keys, list):
                raise ValueError("'keys' is not a list")
            self._keys = {k for k in keys if isinstance(k, str)}
            logger.info(f"Loaded {len(self._keys)} fired keys from {self._store_path}")
        except Exception as e:
            logger.error(f"Failed to read idempotency store {self._store_path}, treating as empty: {e}")
            self._keys = set()

    def has(self, key: str) -> bool:
        return key in self._keys

    def mark(self, key: str) -> None:
        if key in self._keys:
            return
        self._keys.add(key)
        try:
            self._save()
        except Exception as e:
            # Keep the in-memory flag: this process still must not fire twice
            raise IdempotencyStoreError(f"Failed to persist key {key}: {e}") from e

    def _save(self) -> None:
        _write_json_atomic(self._store_path, {"version": STORE_VERSION, "keys": sorted(self._keys)})

    def __len__(self) -> int:
        return len(self._keys)


# ---------------------------------------------------------------------------
# Daily message counters
# ---------------------------------------------------------------------------


class MemoryMessageCounter:
    """Per-day message count held in memory; resets on restart."""

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def count(self, day: str) -> int:
        return self._counts.get(day, 0)

    def increment(self, day: str) -> int:
        # Only the current day matters to the cap
        self._counts = {day: self._counts.get(day, 0) + 1}
        return self._counts[day]


class JsonMessageCounter:
    """Per-day message count persisted beside the fired-key store.

    Only the most recent day is kept; earlier days are dropped on the next
    increment. Read and write failures are logged and the in-memory count
    carries on, so the cap degrades to per-process rather than blocking
    messages.
    """

    def __init__(self, path: str = "~/.dayvalet/triggers/sent_counts.json"):
        self._path = Path(os.path.expanduser(path))
        self._counts: Dict[str, int] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            counts = data.get("counts", {})
            if not isinstance(counts, dict):
                raise ValueError("'counts' is not a mapping")
            self._counts = {str(day): int(n) for day, n in counts.items()}
        except Exception as e:
            logger.error(f"Failed to read message counts {self._path}, starting from zero: {e}")
            self._counts = {}

    def count(self, day: str) -> int:
        return self._counts.get(day, 0)

    def increment(self, day: str) -> int:
        self._counts = {day: self._counts.get(day, 0) + 1}
        try:
            _write_json_atomic(self._path, {"version": STORE_VERSION, "counts": self._counts})
        except Exception as e:
            logger.warning(f"Failed to persist message count for {day}: {e}")
        return self._counts[day]
