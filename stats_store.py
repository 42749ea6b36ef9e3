"""In-memory stats collection, chat file reading and snapshot persistence.

``StatsStore`` is the single owner of the ``StatsCollection``.  Callers
mutate it only through the store's methods and only one at a time; the
HTTP service serialises access with a lock.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from character_stats import (
    CharacterStats,
    remove_chat_from_char_stats,
    update_char_stats_with_chat,
)
from chat_stats import ChatStats, process_chat
from stats_errors import (
    MalformedDataError,
    MissingFileError,
    PersistenceError,
    SnapshotCorruptError,
)
from stats_util import MIN_DATE, date_from_iso, date_to_iso, now, sanitize_filename

logger = logging.getLogger(__name__)

# Bump whenever the calculation logic changes; older snapshots get rebuilt.
CURRENT_STATS_VERSION = "1.1"

CHARACTER_FILE_SUFFIX = ".png"
CHAT_FILE_SUFFIX = ".jsonl"


def new_global_stats() -> CharacterStats:
    return CharacterStats(character_key="global", name="Global")


@dataclass
class StatsCollection:
    version: str = CURRENT_STATS_VERSION
    global_stats: CharacterStats = field(default_factory=new_global_stats)
    stats: dict[str, CharacterStats] = field(default_factory=dict)
    calculated: datetime = MIN_DATE
    recalculated: datetime = MIN_DATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "global": self.global_stats.to_dict(),
            "stats": {key: s.to_dict() for key, s in self.stats.items()},
            "calculated": date_to_iso(self.calculated),
            "recalculated": date_to_iso(self.recalculated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatsCollection:
        return cls(
            version=data["version"],
            global_stats=CharacterStats.from_dict(data["global"]),
            stats={key: CharacterStats.from_dict(s) for key, s in data["stats"].items()},
            calculated=date_from_iso(data.get("calculated")),
            recalculated=date_from_iso(data.get("recalculated")),
        )


# ---------------------------------------------------------------------------
# File access
# ---------------------------------------------------------------------------

def read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Parse a JSON-lines chat file.

    Raises:
        MissingFileError: If *path* does not exist.
        MalformedDataError: If a line is not valid JSON or the file holds
            no records at all.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise MissingFileError(f"Chat file not found: {path}") from exc
    except UnicodeDecodeError as exc:
        raise MalformedDataError(f"{path} is not valid UTF-8") from exc

    records: list[dict[str, Any]] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise MalformedDataError(f"{path}:{lineno}: {exc.msg}") from exc
    if not records:
        raise MalformedDataError(f"{path} is empty")
    return records


def load_snapshot(path: Path) -> StatsCollection:
    """Load a persisted collection.

    Raises:
        MissingFileError: If there is no snapshot yet.
        SnapshotCorruptError: If the snapshot cannot be parsed or was
            written by a different stats version.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise MissingFileError(f"Stats snapshot not found: {path}") from exc
    except UnicodeDecodeError as exc:
        raise SnapshotCorruptError(f"{path} is not valid UTF-8: {exc.reason}") from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SnapshotCorruptError(f"Invalid JSON in {path}: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise SnapshotCorruptError(f"{path} does not hold a stats object")

    version = data.get("version")
    if version != CURRENT_STATS_VERSION:
        raise SnapshotCorruptError(
            f"Found outdated stats of version {version!r}, current is {CURRENT_STATS_VERSION!r}"
        )
    try:
        return StatsCollection.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SnapshotCorruptError(f"Unreadable stats in {path}: {exc}") from exc


def write_snapshot(path: Path, data: dict[str, Any]) -> None:
    """Atomically replace the snapshot at *path* with *data* as JSON.

    Raises:
        PersistenceError: If serialising or writing fails.
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False
        ) as tmp:
            tmp_name = tmp.name
            json.dump(data, tmp)
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceError(f"Could not write stats to {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StatsStore:
    """Owner of the stats collection and of every operation that changes it."""

    def __init__(self, characters_dir: Path, chats_dir: Path, snapshot_path: Path) -> None:
        self.characters_dir = Path(characters_dir)
        self.chats_dir = Path(chats_dir)
        self.snapshot_path = Path(snapshot_path)
        self.collection = StatsCollection()
        self.last_save_date = MIN_DATE

    # -- lifecycle ----------------------------------------------------------

    def init(self) -> StatsCollection:
        """Load the snapshot, or rebuild everything when there is none usable.

        I/O errors other than a missing snapshot propagate.
        """
        try:
            self.collection = load_snapshot(self.snapshot_path)
        except MissingFileError:
            logger.info("No stats snapshot at %s. Collecting and creating stats...", self.snapshot_path)
            return self.recreate_stats()
        except SnapshotCorruptError as exc:
            logger.warning("%s. Recreating stats for version %s...", exc, CURRENT_STATS_VERSION)
            return self.recreate_stats()

        self.last_save_date = now()
        logger.info(
            "Loaded stats for %d characters from %s", len(self.collection.stats), self.snapshot_path
        )
        return self.collection

    def is_dirty(self) -> bool:
        return self.collection.calculated > self.last_save_date

    def save(self) -> bool:
        """Persist the collection if it changed since the last save.

        Returns:
            True if a snapshot was written.  Failures are logged and the
            in-memory collection stays authoritative; the next call retries.
        """
        if not self.is_dirty():
            logger.debug("Stats have not changed since last save. Skipping file write.")
            return False
        try:
            write_snapshot(self.snapshot_path, self.collection.to_dict())
        except PersistenceError as exc:
            logger.error("Failed to save stats to file: %s", exc)
            return False
        self.last_save_date = now()
        logger.info("Saved stats to %s", self.snapshot_path)
        return True

    def on_exit(self) -> None:
        """Final save before shutdown."""
        self.save()
        if self.is_dirty():
            logger.error("Stats could not be persisted before shutdown.")

    # -- sources ------------------------------------------------------------

    def list_character_keys(self) -> list[str]:
        if not self.characters_dir.is_dir():
            logger.warning("Characters directory %s does not exist", self.characters_dir)
            return []
        return sorted(
            p.stem for p in self.characters_dir.iterdir()
            if p.is_file() and p.suffix == CHARACTER_FILE_SUFFIX
        )

    def _chat_dir(self, character_key: str) -> Path:
        safe_key = sanitize_filename(character_key)
        if not safe_key:
            raise MissingFileError(f"Invalid character key: {character_key!r}")
        return self.chats_dir / safe_key

    def list_chat_files(self, character_key: str) -> list[str]:
        """Return the chat file names of a character.

        Raises:
            MissingFileError: If the character has no chats directory.
        """
        chat_dir = self._chat_dir(character_key)
        if not chat_dir.is_dir():
            raise MissingFileError(f"No chats directory for {character_key}: {chat_dir}")
        return sorted(
            p.name for p in chat_dir.iterdir()
            if p.is_file() and p.suffix == CHAT_FILE_SUFFIX
        )

    def load_chat_file(self, character_key: str, chat_name: str) -> tuple[list[dict[str, Any]], int]:
        """Read one chat file, returning its records and its size in bytes."""
        safe_name = sanitize_filename(chat_name)
        if not safe_name:
            raise MissingFileError(f"Invalid chat name: {chat_name!r}")
        path = self._chat_dir(character_key) / safe_name
        records = read_jsonl(path)
        return records, path.stat().st_size

    # -- mutations ----------------------------------------------------------

    def _character(self, character_key: str) -> CharacterStats:
        if character_key not in self.collection.stats:
            self.collection.stats[character_key] = CharacterStats(
                character_key=character_key, name=character_key
            )
        return self.collection.stats[character_key]

    def trigger_chat_update(self, character_key: str, chat_name: str) -> ChatStats | None:
        """(Re)process one chat file into its character's and the global stats.

        Missing and malformed chats are logged and skipped.

        Returns:
            The new chat stats, or None if the chat produced none.
        """
        try:
            records, chat_size = self.load_chat_file(character_key, chat_name)
            chat_stats = process_chat(
                chat_name, records, chat_size=chat_size, character_key=character_key
            )
        except MissingFileError as exc:
            logger.warning("Skipping chat %s of %s: %s", chat_name, character_key, exc)
            return None
        except MalformedDataError as exc:
            logger.warning("Skipping malformed chat %s of %s: %s", chat_name, character_key, exc)
            return None
        if chat_stats is None:
            return None

        update_char_stats_with_chat(self._character(character_key), chat_stats)
        update_char_stats_with_chat(self.collection.global_stats, chat_stats)

        stamp = now()
        chat_stats.calculated = stamp
        self.collection.calculated = stamp
        return chat_stats

    def remove_chat(self, character_key: str, chat_name: str) -> bool:
        """Roll a deleted chat out of its character's and the global stats."""
        char_stats = self.collection.stats.get(character_key)
        if char_stats is None:
            return False
        owned = char_stats.find_chat(chat_name, character_key)
        if owned is None:
            return False
        remove_chat_from_char_stats(char_stats, owned)
        remove_chat_from_char_stats(self.collection.global_stats, owned)
        self.collection.calculated = now()
        return True

    def recreate_character_stats(self, character_key: str) -> CharacterStats | None:
        """Rebuild one character from its chat files.

        The character's old chats are rolled out of the global stats first.

        Returns:
            The rebuilt stats, or None if the character has no processable chats.
        """
        existing = self.collection.stats.pop(character_key, None)
        if existing is not None:
            for chat_stats in list(existing.chats_stats):
                remove_chat_from_char_stats(self.collection.global_stats, chat_stats)
            self.collection.calculated = now()

        try:
            chat_names = self.list_chat_files(character_key)
        except MissingFileError as exc:
            logger.debug("No chats for %s: %s", character_key, exc)
            return None

        for chat_name in chat_names:
            self.trigger_chat_update(character_key, chat_name)
        return self.collection.stats.get(character_key)

    def recreate_stats(self) -> StatsCollection:
        """Throw away all stats and rebuild them from every character's chats."""
        logger.info("Collecting and creating stats...")
        self.collection = StatsCollection()

        for character_key in self.list_character_keys():
            self.recreate_character_stats(character_key)

        stamp = now()
        self.collection.recalculated = stamp
        self.collection.calculated = stamp

        self.save()
        logger.info(
            "Stats (re)created for %d characters, %d chats",
            len(self.collection.stats),
            self.collection.global_stats.chats,
        )
        return self.collection

    # -- reads --------------------------------------------------------------

    def get_collection(self) -> StatsCollection:
        return self.collection

    def get_global_stats(self) -> CharacterStats:
        return self.collection.global_stats

    def get_character_stats(self, character_key: str) -> CharacterStats | None:
        return self.collection.stats.get(character_key)

    def get_chat_stats(self, character_key: str, chat_name: str) -> ChatStats | None:
        char_stats = self.collection.stats.get(character_key)
        if char_stats is None:
            return None
        return char_stats.find_chat(chat_name, character_key)
