from __future__ import annotations

import logging
from dataclasses import dataclass

from markergrid.errors import RecordNotFoundError
from markergrid.logging_utils import bind_song_id, log_event
from markergrid.models import FlatSongRecord, SongRecord
from markergrid.services.serialization import to_flat, to_nested
from markergrid.services.storage import DirectoryBackend
from markergrid.services.store import VersionedStore
from markergrid.services.templates import default_template, generate_from_markers
from markergrid.services.tracks import TrackCatalog
from markergrid.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveOutcome:
    created: bool
    backup: str | None = None


class TimelineService:
    def __init__(self, store: VersionedStore, catalog: TrackCatalog, bars_per_section: int = 32):
        self.store = store
        self.catalog = catalog
        self.bars_per_section = bars_per_section

    @classmethod
    def from_settings(cls, settings: Settings) -> "TimelineService":
        return cls(
            store=VersionedStore(DirectoryBackend(settings.markers_dir)),
            catalog=TrackCatalog(settings.songs_dir),
            bars_per_section=settings.bars_per_section,
        )

    def _template(self, song_id: str):
        return default_template(song_id, self.catalog)

    def load_timeline(self, song_id: str) -> SongRecord:
        bind_song_id(song_id)
        record = to_nested(self.store.read(song_id, self._template))
        for section in record.sections:
            section.bars.sort(key=lambda bar: bar.start)
        log_event(logger, "timeline_loaded", section_count=len(record.sections))
        return record

    def save_timeline(self, song_id: str, record: SongRecord) -> SaveOutcome:
        bind_song_id(song_id)
        edited = record.model_copy(update={"songId": song_id, "songInfo": record.songInfo.with_state("edited")})
        flat = to_flat(edited)
        if self.store.exists(song_id):
            backup = self.store.update(song_id, flat)
            return SaveOutcome(created=False, backup=backup)
        self.store.create(song_id, flat)
        return SaveOutcome(created=True)

    def generate_timeline(
        self,
        song_id: str,
        section1_time: float,
        section2_time: float,
        duration: float | None = None,
        bars_per_section: int | None = None,
    ) -> SongRecord:
        bind_song_id(song_id)
        record = generate_from_markers(
            song_id,
            section1_time,
            section2_time,
            duration=duration,
            bars_per_section=bars_per_section or self.bars_per_section,
            catalog=self.catalog,
        )
        flat = to_flat(record)
        if self.store.exists(song_id) and _is_untouched_default(self.store.get(song_id)):
            backup = self.store.update(song_id, flat)
            log_event(logger, "default_record_replaced", backup=backup)
        else:
            self.store.create(song_id, flat)
        return record

    def approve_song(self, song_id: str) -> SongRecord:
        bind_song_id(song_id)
        if not self.store.exists(song_id):
            raise RecordNotFoundError(song_id, f"No timeline to approve for '{song_id}'. Create it first.")
        record = self.load_timeline(song_id)
        record = record.model_copy(update={"songInfo": record.songInfo.with_state("approved")})
        self.save_timeline(song_id, record)

        audio_file = record.songInfo.audioFile or self.catalog.audio_file_for(song_id)
        if audio_file is None:
            log_event(logger, "approval_without_audio_file", level=logging.WARNING)
        else:
            self.catalog.approve(audio_file)
        return self.load_timeline(song_id)

    def list_backups(self, song_id: str) -> list[str]:
        bind_song_id(song_id)
        return [f"{version:02d}" for version in self.store.backup_versions(song_id)]


def _is_untouched_default(record: FlatSongRecord) -> bool:
    """True for the empty record synthesized on first load, before any edit."""
    return not record.sections and not record.bars and record.songInfo.state == ["new"]
