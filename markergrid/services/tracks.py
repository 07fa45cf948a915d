from __future__ import annotations

import json
import logging
from pathlib import Path

from markergrid.errors import StorageError
from markergrid.logging_utils import log_event
from markergrid.models import TrackEntry

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".mp3", ".wav", ".flac", ".aac", ".ogg")
APPROVED_FILENAME = "approvedSongs.json"


class TrackCatalog:
    """Audio files available for marking, plus the registry of approved ones."""

    def __init__(self, songs_dir: Path | str):
        self.songs_dir = Path(songs_dir)

    def _audio_files(self) -> list[Path]:
        try:
            entries = list(self.songs_dir.iterdir())
        except OSError as exc:
            raise StorageError("list", str(self.songs_dir), str(exc)) from exc
        return sorted(
            (entry for entry in entries if entry.is_file() and entry.suffix.lower() in AUDIO_EXTENSIONS),
            key=lambda entry: entry.name,
        )

    def list_tracks(self) -> list[TrackEntry]:
        approved = self.approved()
        return [
            TrackEntry(filename=entry.name, songId=entry.stem, approved=entry.name in approved)
            for entry in self._audio_files()
        ]

    def audio_file_for(self, song_id: str) -> str | None:
        try:
            files = self._audio_files()
        except StorageError:
            return None
        for entry in files:
            if entry.stem == song_id:
                return entry.name
        return None

    def _read_registry(self) -> dict:
        path = self.songs_dir / APPROVED_FILENAME
        if not path.is_file():
            return {"songs": []}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError("read", APPROVED_FILENAME, str(exc)) from exc
        if not isinstance(data, dict):
            data = {}
        if not isinstance(data.get("songs"), list):
            data["songs"] = []
        return data

    def approved(self) -> set[str]:
        return {item["filename"] for item in self._read_registry()["songs"] if isinstance(item, dict) and "filename" in item}

    def approve(self, filename: str) -> bool:
        """Register ``filename`` as approved. Returns False when it already was."""
        registry = self._read_registry()
        if any(isinstance(item, dict) and item.get("filename") == filename for item in registry["songs"]):
            log_event(logger, "song_already_approved", filename=filename)
            return False
        registry["songs"].append({"filename": filename})
        path = self.songs_dir / APPROVED_FILENAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(registry, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError("write", APPROVED_FILENAME, str(exc)) from exc
        log_event(logger, "song_approved", filename=filename, approved_count=len(registry["songs"]))
        return True
