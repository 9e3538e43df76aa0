#!/usr/bin/env python3
"""
History - Bounded, deduplicating store of shell commands

Entries are kept in insertion order and indexed by a 64-bit digest of the
command, so repeats bump a counter instead of growing the list. The store
holds at most MAX_HISTORY_ENTRIES; the oldest inserted entry is evicted first.
Every change rewrites the whole JSON file.

File layout (history.json):
    [{"command": "ls -la", "frequency": 3, "last_used": 1718000000, "hash": 123...}, ...]
"""

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from errors import FilesystemError

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 100
HISTORY_FILENAME = "history.json"


# ── Paths ──────────────────────────────────────────────────────────────────────

def _data_dir() -> Path:
    """Return the per-user data directory ($BONDSMAN_HOME or XDG data dir)."""
    home = os.environ.get("BONDSMAN_HOME")
    if home:
        return Path(home)
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "bondsman"


def default_history_path() -> Path:
    return _data_dir() / "history" / HISTORY_FILENAME


def command_hash(command: str) -> int:
    """64-bit digest of a command string."""
    digest = hashlib.blake2b(command.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little")


# ── Entries ────────────────────────────────────────────────────────────────────

class HistoryEntry:
    """One distinct command; `command` and `hash` never change after creation."""

    __slots__ = ("command", "frequency", "last_used", "hash")

    def __init__(self, command: str, last_used: int, frequency: int = 1):
        self.command = command
        self.frequency = frequency
        self.last_used = last_used
        self.hash = command_hash(command)

    def to_dict(self) -> Dict:
        return {
            "command": self.command,
            "frequency": self.frequency,
            "last_used": self.last_used,
            "hash": self.hash,
        }

    def __repr__(self):
        return f"HistoryEntry({self.command!r}, frequency={self.frequency})"


class HistoryStore:
    """Insertion-ordered command log with hash lookup and JSON persistence."""

    def __init__(
        self,
        path: Optional[Path] = None,
        max_entries: int = MAX_HISTORY_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path is not None else default_history_path()
        self.max_entries = max_entries
        self._clock = clock
        self.entries: List[HistoryEntry] = []
        self._lookup: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self.entries)

    def get(self, command: str) -> Optional[HistoryEntry]:
        index = self._lookup.get(command_hash(command))
        return None if index is None else self.entries[index]

    def _now(self) -> int:
        return int(self._clock())

    def _rebuild_lookup(self) -> None:
        self._lookup = {entry.hash: i for i, entry in enumerate(self.entries)}

    def _apply(self, command: str) -> HistoryEntry:
        """Insert or bump `command` in memory; returns the affected entry."""
        key = command_hash(command)
        index = self._lookup.get(key)
        if index is not None:
            entry = self.entries[index]
            entry.frequency += 1
            entry.last_used = self._now()
            return entry

        entry = HistoryEntry(command, last_used=self._now())
        self.entries.append(entry)
        self._lookup[key] = len(self.entries) - 1

        if len(self.entries) > self.max_entries:
            evicted = self.entries.pop(0)
            logger.debug("history full, evicted %r", evicted.command)
            # Every remaining index shifted down by one
            self._rebuild_lookup()
        return entry

    def record(self, command: str) -> None:
        """Add or refresh a command and persist the whole store."""
        self._apply(command)
        self.save()

    def search(self, prefix: str) -> List[str]:
        """Commands starting with `prefix`, oldest insertion first."""
        return [entry.command for entry in self.entries if entry.command.startswith(prefix)]

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump([entry.to_dict() for entry in self.entries], f)
        except OSError as e:
            raise FilesystemError(f"Cannot write history file {self.path}: {e}") from e

    def load(self) -> int:
        """
        Rebuild the store from the history file; a missing file means empty history.

        Each persisted command is replayed through the insert path (so hashes,
        order and the size cap are recomputed), then its stored frequency and
        timestamp are restored. Returns the number of entries loaded.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.debug("no history file at %s", self.path)
            return 0
        except OSError as e:
            raise FilesystemError(f"Cannot read history file {self.path}: {e}") from e
        except ValueError as e:
            raise FilesystemError(f"Corrupt history file {self.path}: {e}") from e

        if not isinstance(raw, list):
            raise FilesystemError(f"Corrupt history file {self.path}: expected a JSON array")

        self.entries = []
        self._lookup = {}
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("command"), str):
                raise FilesystemError(f"Corrupt history file {self.path}: bad entry {item!r}")
            command = item["command"]
            frequency = item.get("frequency")
            last_used = item.get("last_used")

            existing = self.get(command)
            previous_use = existing.last_used if existing is not None else None
            entry = self._apply(command)

            if isinstance(frequency, int) and frequency >= 1:
                if existing is None:
                    entry.frequency = frequency
                else:
                    # Duplicate record in the file: fold its count in
                    entry.frequency += frequency - 1
            if existing is not None:
                entry.last_used = max(previous_use, last_used) if isinstance(last_used, int) else previous_use
            elif isinstance(last_used, int):
                entry.last_used = last_used

        logger.debug("loaded %d history entries from %s", len(self.entries), self.path)
        return len(self.entries)
