"""
Evaluation entry store backed by durable key-value storage.

Key patterns:
- Single owned collection; every mutation goes through the store API
- Observer registration for reactive consumers (dashboard, UI)
- Whole-collection persistence on every mutation, last writer wins
- Storage failures degrade to in-memory operation, never raise to callers
"""

import json
import unicodedata
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from skincare.config import DEFAULT_STORAGE_KEY
from skincare.domain.models import (
    CreateEvaluationInput,
    EntryUpdate,
    EvaluationEntry,
    MirrorState,
    format_month_key,
    isoformat_utc,
    parse_timestamp,
)
from skincare.services.base import logger
from skincare.services.local_storage import KeyValueStorage, StorageChange, StorageError

EntriesObserver = Callable[[tuple[EvaluationEntry, ...]], None]


def collation_key(name: str) -> tuple[str, str]:
    """
    Sort key approximating Japanese collation: width and case folded,
    katakana folded onto hiragana, original string as tie-break.
    """
    folded = unicodedata.normalize("NFKC", name).casefold()
    folded = "".join(chr(ord(c) - 0x60) if "ァ" <= c <= "ヶ" else c for c in folded)
    return folded, name


class EntryStore:
    """
    In-memory collection of evaluation entries, most recent insertion first.

    The collection is reloaded from storage on construction and written back
    in full after every mutation. Writes from other sessions sharing the same
    storage key are adopted when the storage reports them.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        tz: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self.storage_key = storage_key
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: list[EvaluationEntry] = []
        self._observers: list[EntriesObserver] = []
        self.logger = logger.bind(component="entry_store", storage_key=storage_key)

        self.reload()
        self._unsubscribe_storage = (
            storage.subscribe(self._on_storage_change) if storage is not None else None
        )

    # Read side
    @property
    def entries(self) -> tuple[EvaluationEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, entry_id: str) -> EvaluationEntry | None:
        return next((entry for entry in self._entries if entry.id == entry_id), None)

    def recent(self, limit: int = 5) -> tuple[EvaluationEntry, ...]:
        return tuple(self._entries[:limit])

    def list_evaluator_names(self) -> list[str]:
        """Distinct, non-empty evaluator names in collation order."""
        unique = {entry.evaluator_name for entry in self._entries if entry.evaluator_name}
        return sorted(unique, key=collation_key)

    # Mutations
    def add(self, data: CreateEvaluationInput) -> EvaluationEntry:
        """Construct an entry, put it first and persist the collection."""
        created_at = data.created_at or isoformat_utc(self._clock())
        try:
            created = parse_timestamp(created_at)
        except ValueError:
            self.logger.warning("entry_created_at_unparsable", created_at=created_at)
            created = self._clock()
            created_at = isoformat_utc(created)

        entry = EvaluationEntry(
            id=data.id or str(uuid.uuid4()),
            created_at=created_at,
            month_key=format_month_key(created, self.tz),
            evaluator_name=data.evaluator_name.strip(),
            status_adpro=data.status_adpro,
            status_vaseline=data.status_vaseline,
            note=data.note.strip(),
            remote_id=data.remote_id,
            mirror_state=data.mirror_state,
        )

        if any(existing.id == entry.id for existing in self._entries):
            self.logger.warning("entry_id_replaced", entry_id=entry.id)
            self._entries = [existing for existing in self._entries if existing.id != entry.id]

        self._entries.insert(0, entry)
        self.logger.info("entry_added", entry_id=entry.id, month_key=entry.month_key)
        self._commit()
        return entry

    def update(self, entry_id: str, changes: EntryUpdate | None = None, **fields: Any) -> None:
        """Merge the given fields into the entry; unknown ids are ignored."""
        values = (changes or EntryUpdate(**fields)).model_dump(exclude_unset=True)

        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                self._entries[index] = entry.model_copy(update=values)
                self.logger.info("entry_updated", entry_id=entry_id, fields=sorted(values))
                self._commit()
                return

        self.logger.debug("entry_update_skipped", entry_id=entry_id)

    def remove(self, entry_id: str) -> None:
        """Remove the entry if present. Calling it again is a no-op."""
        remaining = [entry for entry in self._entries if entry.id != entry_id]
        if len(remaining) == len(self._entries):
            self.logger.debug("entry_remove_skipped", entry_id=entry_id)
            return

        self._entries = remaining
        self.logger.info("entry_removed", entry_id=entry_id)
        self._commit()

    # Observers
    def subscribe(self, observer: EntriesObserver) -> Callable[[], None]:
        """Register an observer called with the new snapshot after each change."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def close(self) -> None:
        if self._unsubscribe_storage is not None:
            self._unsubscribe_storage()
            self._unsubscribe_storage = None
        self._observers.clear()

    # Persistence
    def reload(self) -> None:
        """Replace the collection with what storage holds, or empty on any failure."""
        self._entries = self._read()
        self.logger.info("entries_loaded", count=len(self._entries))
        self._notify()

    def _read(self) -> list[EvaluationEntry]:
        if self.storage is None:
            self.logger.warning("storage_unavailable")
            return []

        try:
            raw = self.storage.get_item(self.storage_key)
        except StorageError as e:
            self.logger.warning("storage_read_failed", error=str(e))
            return []

        if raw is None:
            return []

        try:
            return self._decode(raw)
        except (ValueError, RecursionError) as e:
            self.logger.warning("storage_parse_failed", error=str(e))
            return []

    def _decode(self, raw: str) -> list[EvaluationEntry]:
        records = json.loads(raw)
        if not isinstance(records, list):
            raise ValueError("stored collection is not a list")

        entries: list[EvaluationEntry] = []
        seen: set[str] = set()
        for record in records:
            entry = self._decode_record(record)
            if entry is None:
                continue
            if entry.id in seen:
                self.logger.warning("stored_entry_duplicate_id", entry_id=entry.id)
                continue
            seen.add(entry.id)
            entries.append(entry)
        return entries

    def _decode_record(self, record: Any) -> EvaluationEntry | None:
        if not isinstance(record, dict):
            self.logger.warning("stored_entry_invalid", reason="not an object")
            return None

        record = dict(record)
        # Records written by the web client carry the remote id as firestoreId
        legacy_remote_id = record.pop("firestoreId", None)
        if legacy_remote_id and not record.get("remoteId"):
            record["remoteId"] = legacy_remote_id
            record.setdefault("mirrorState", MirrorState.MIRRORED.value)

        if "monthKey" not in record and isinstance(record.get("createdAt"), str):
            try:
                record["monthKey"] = format_month_key(parse_timestamp(record["createdAt"]), self.tz)
            except ValueError:
                pass

        try:
            return EvaluationEntry.model_validate(record)
        except ValidationError as e:
            self.logger.warning(
                "stored_entry_invalid", entry_id=record.get("id"), errors=e.error_count()
            )
            return None

    def _encode(self) -> str:
        return json.dumps(
            [entry.model_dump(mode="json", by_alias=True) for entry in self._entries],
            ensure_ascii=False,
        )

    def _commit(self) -> None:
        self._persist()
        self._notify()

    def _persist(self) -> None:
        if self.storage is None:
            return
        try:
            self.storage.set_item(self.storage_key, self._encode())
        except StorageError as e:
            self.logger.warning("storage_write_failed", error=str(e))

    def _notify(self) -> None:
        snapshot = self.entries
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:
                self.logger.exception("entries_observer_failed", error=str(e))

    def _on_storage_change(self, change: StorageChange) -> None:
        if change.key != self.storage_key or not change.new_value:
            return
        try:
            entries = self._decode(change.new_value)
        except (ValueError, RecursionError) as e:
            self.logger.warning("storage_event_parse_failed", error=str(e))
            return

        self._entries = entries
        self.logger.info("entries_adopted_from_other_session", count=len(entries))
        self._notify()
