from __future__ import annotations

import logging
import re
from collections.abc import Callable

from pydantic import ValidationError

from markergrid.errors import RecordConflictError, RecordNotFoundError, StorageError
from markergrid.logging_utils import log_event
from markergrid.models import FlatSongRecord
from markergrid.services.storage import StorageBackend

logger = logging.getLogger(__name__)

TemplateFactory = Callable[[str], FlatSongRecord]


def current_slot_name(song_id: str) -> str:
    return f"{song_id}-markers.json"


def backup_slot_name(song_id: str, version: int) -> str:
    return f"{song_id}-markers{version:02d}.json"


def _backup_pattern(song_id: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(song_id)}-markers(\d+)\.json$")


class VersionedStore:
    """One current record per song plus numbered backups of every overwritten version.

    ``update`` rotates the current record with a rename followed by a write.
    The two steps are not atomic: concurrent updates of the same song can pick
    the same backup number or interleave their writes.
    """

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    def exists(self, song_id: str) -> bool:
        return self.backend.exists(current_slot_name(song_id))

    def get(self, song_id: str) -> FlatSongRecord:
        if not self.exists(song_id):
            raise RecordNotFoundError(song_id)
        return _decode(current_slot_name(song_id), self.backend.get(current_slot_name(song_id)))

    def create(self, song_id: str, record: FlatSongRecord) -> None:
        name = current_slot_name(song_id)
        if self.backend.exists(name):
            log_event(logger, "record_create_conflict", level=logging.WARNING, slot=name)
            raise RecordConflictError(song_id)
        self.backend.put(name, _payload(song_id, record))
        log_event(logger, "record_created", slot=name, section_count=len(record.sections), bar_count=len(record.bars))

    def update(self, song_id: str, record: FlatSongRecord) -> str:
        """Move the current record to the next backup slot, then write ``record``. Returns the backup slot name."""
        name = current_slot_name(song_id)
        if not self.backend.exists(name):
            raise RecordNotFoundError(song_id, f"No existing record for '{song_id}'. Create it first.")

        version = max(self.backup_versions(song_id), default=0) + 1
        backup = backup_slot_name(song_id, version)
        self.backend.rename(name, backup)
        log_event(logger, "record_backup_rotated", slot=name, backup=backup, version=version)
        self.backend.put(name, _payload(song_id, record))
        log_event(logger, "record_updated", slot=name, section_count=len(record.sections), bar_count=len(record.bars))
        return backup

    def read(self, song_id: str, default_template_factory: TemplateFactory) -> FlatSongRecord:
        if self.exists(song_id):
            return self.get(song_id)
        record = default_template_factory(song_id)
        log_event(logger, "record_synthesized", slot=current_slot_name(song_id))
        self.create(song_id, record)
        return self.get(song_id)

    def backup_versions(self, song_id: str) -> list[int]:
        try:
            names = self.backend.list_names()
        except StorageError as exc:
            log_event(logger, "backup_listing_failed", level=logging.WARNING, song=song_id, reason=str(exc))
            return []
        pattern = _backup_pattern(song_id)
        versions = []
        for name in names:
            match = pattern.match(name)
            if match:
                versions.append(int(match.group(1)))
        return sorted(versions)

    def get_backup(self, song_id: str, version: int) -> FlatSongRecord:
        name = backup_slot_name(song_id, version)
        if not self.backend.exists(name):
            raise RecordNotFoundError(song_id, f"No backup {version:02d} for '{song_id}'.")
        return _decode(name, self.backend.get(name))


def _decode(name: str, payload: dict) -> FlatSongRecord:
    try:
        return FlatSongRecord.model_validate(payload)
    except ValidationError as exc:
        raise StorageError("decode", name, f"{exc.error_count()} invalid field(s)") from exc


def _payload(song_id: str, record: FlatSongRecord) -> dict:
    payload = record.model_dump(mode="json")
    payload["songId"] = song_id
    return payload
