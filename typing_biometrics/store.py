# ABOUTME: Keystroke store contract plus in-memory and JSON-file implementations
import hashlib
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

try:
    from .utils import KeystrokeEvent, StoreError, as_utc, require_id
except ImportError:
    from utils import KeystrokeEvent, StoreError, as_utc, require_id  # type: ignore


DEFAULT_BATCH_SIZE = 100


def chunked(items: List, size: int) -> Iterator[List]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _capture_order(event: KeystrokeEvent):
    return (event.recorded_at, event.sequence_number)


def _sequence_order(event: KeystrokeEvent):
    return event.sequence_number


class KeystrokeStore(ABC):
    """Durable keystroke storage consumed by the analytics engine.

    Writes are partitioned by user and submitted in chunks of at most
    ``batch_size`` events, mirroring stores with a transaction size limit.
    Subclasses only implement the raw partition operations.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size

    @abstractmethod
    def _read_user(self, user_id: str) -> List[KeystrokeEvent]:
        """Return every stored event for a user, in any order."""

    @abstractmethod
    def _write_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        """Persist one chunk of events belonging to a single user."""

    @abstractmethod
    def _delete_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        """Remove one chunk of a user's events."""

    def add_event(self, event: KeystrokeEvent) -> KeystrokeEvent:
        """Insert a single event, assigning its row key if absent."""
        event.validate()
        if not event.row_key:
            event.row_key = event.storage_key()
        self._write_chunk(event.user_id, [event])
        logging.info(
            f"Added keystroke for user {event.user_id}, game {event.game_id}, "
            f"sequence {event.sequence_number}"
        )
        return event

    def add_events_batch(self, events: Iterable[KeystrokeEvent]) -> None:
        """Insert many events, partitioned by user and chunked to batch_size."""
        events = list(events or [])
        if not events:
            logging.warning("Attempted to add empty keystroke batch")
            return

        partitions: Dict[str, List[KeystrokeEvent]] = defaultdict(list)
        for event in events:
            event.validate()
            if not event.row_key:
                event.row_key = event.storage_key()
            partitions[event.user_id].append(event)

        for user_id, user_events in partitions.items():
            for chunk in chunked(user_events, self.batch_size):
                self._write_chunk(user_id, chunk)
            logging.info(
                f"Added {len(user_events)} keystrokes in batch for user {user_id}"
            )

    def get_user_events(
        self, user_id: str, limit: Optional[int] = None
    ) -> List[KeystrokeEvent]:
        """All of a user's events ordered by capture time, then sequence."""
        require_id(user_id, "User ID")
        events = sorted(self._read_user(user_id), key=_capture_order)
        if limit is not None:
            events = events[: max(limit, 0)]
        logging.info(f"Retrieved {len(events)} keystrokes for user {user_id}")
        return events

    def get_session_events(self, user_id: str, game_id: str) -> List[KeystrokeEvent]:
        """One session's events ordered by sequence number."""
        require_id(user_id, "User ID")
        require_id(game_id, "Game ID")
        events = sorted(
            (e for e in self._read_user(user_id) if e.game_id == game_id),
            key=_sequence_order,
        )
        logging.info(f"Retrieved {len(events)} keystrokes for game {game_id}")
        return events

    def get_user_events_in_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[KeystrokeEvent]:
        """A user's events recorded within [start, end], in capture order."""
        require_id(user_id, "User ID")
        start, end = as_utc(start), as_utc(end)
        events = sorted(
            (e for e in self._read_user(user_id) if start <= e.recorded_at <= end),
            key=_capture_order,
        )
        logging.info(
            f"Retrieved {len(events)} keystrokes for user {user_id} "
            f"between {start.isoformat()} and {end.isoformat()}"
        )
        return events

    def delete_user_events(self, user_id: str) -> int:
        """Erase every event for a user; returns the number removed."""
        require_id(user_id, "User ID")
        events = self._read_user(user_id)
        deleted = 0
        for chunk in chunked(events, self.batch_size):
            self._delete_chunk(user_id, chunk)
            deleted += len(chunk)
        logging.info(f"Deleted {deleted} keystrokes for user {user_id}")
        return deleted

    def count_user_events(self, user_id: str) -> int:
        require_id(user_id, "User ID")
        return len(self._read_user(user_id))


class InMemoryKeystrokeStore(KeystrokeStore):
    """Dict-backed store keyed by user and row key."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        super().__init__(batch_size)
        self._rows: Dict[str, Dict[str, KeystrokeEvent]] = defaultdict(dict)
        self._lock = threading.Lock()

    def _read_user(self, user_id: str) -> List[KeystrokeEvent]:
        with self._lock:
            return list(self._rows.get(user_id, {}).values())

    def _write_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        with self._lock:
            partition = self._rows[user_id]
            # A chunk is all-or-nothing, like a table transaction
            seen = set(partition)
            for event in events:
                if event.row_key in seen:
                    raise StoreError(
                        f"Keystroke {event.row_key} already exists",
                        user_id=user_id,
                        game_id=event.game_id,
                    )
                seen.add(event.row_key)
            for event in events:
                partition[event.row_key] = event

    def _delete_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        with self._lock:
            partition = self._rows.get(user_id, {})
            for event in events:
                partition.pop(event.row_key, None)
            if not partition:
                self._rows.pop(user_id, None)


class JsonKeystrokeStore(KeystrokeStore):
    """File-backed store: one JSON file per written chunk, one directory per user."""

    def __init__(
        self, data_dir: Union[str, Path] = "./data", batch_size: int = DEFAULT_BATCH_SIZE
    ):
        super().__init__(batch_size)
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _user_dir(self, user_id: str) -> Path:
        # Hashed so every user id maps to its own directory inside data_dir
        return self.data_dir / hashlib.sha256(user_id.encode("utf-8")).hexdigest()

    def _load_files(self, user_id: str) -> Dict[Path, List[KeystrokeEvent]]:
        files: Dict[Path, List[KeystrokeEvent]] = {}
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return files
        for file_path in sorted(user_dir.glob("keystrokes_*.json")):
            try:
                with open(file_path, "r") as f:
                    data = json.load(f)
                files[file_path] = [KeystrokeEvent.from_dict(item) for item in data]
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logging.error(f"Error loading {file_path}: {e}")
                raise StoreError(
                    f"Unable to read keystrokes from {file_path}", user_id=user_id
                ) from e
        return files

    def _read_user(self, user_id: str) -> List[KeystrokeEvent]:
        with self._lock:
            files = self._load_files(user_id)
        return [
            event
            for events in files.values()
            for event in events
            if event.user_id == user_id
        ]

    def _write_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        with self._lock:
            existing = {
                e.row_key for chunk in self._load_files(user_id).values() for e in chunk
            }
            for event in events:
                if event.row_key in existing:
                    raise StoreError(
                        f"Keystroke {event.row_key} already exists",
                        user_id=user_id,
                        game_id=event.game_id,
                    )
                existing.add(event.row_key)

            user_dir = self._user_dir(user_id)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = user_dir / f"keystrokes_{stamp}_{uuid.uuid4().hex[:8]}.json"
            try:
                user_dir.mkdir(parents=True, exist_ok=True)
                with open(filename, "w") as f:
                    json.dump([event.to_dict() for event in events], f, indent=2)
            except OSError as e:
                raise StoreError(
                    f"Unable to write keystrokes to {filename}", user_id=user_id
                ) from e
        logging.debug(f"Saved {len(events)} keystrokes to {filename}")

    def _delete_chunk(self, user_id: str, events: List[KeystrokeEvent]) -> None:
        doomed = {event.row_key for event in events}
        with self._lock:
            try:
                for file_path, stored in self._load_files(user_id).items():
                    remaining = [e for e in stored if e.row_key not in doomed]
                    if len(remaining) == len(stored):
                        continue
                    if remaining:
                        with open(file_path, "w") as f:
                            json.dump([e.to_dict() for e in remaining], f, indent=2)
                    else:
                        file_path.unlink()
            except OSError as e:
                raise StoreError(
                    f"Unable to delete keystrokes for user {user_id}", user_id=user_id
                ) from e
