from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    markers_dir: Path = Path("data/markers")
    songs_dir: Path = Path("data/songs")
    bars_per_section: int = 32
    log_level: str = "INFO"
    log_format: str = "text"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}.")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    defaults = Settings()
    return Settings(
        markers_dir=Path(os.getenv("MARKERGRID_MARKERS_DIR", str(defaults.markers_dir))),
        songs_dir=Path(os.getenv("MARKERGRID_SONGS_DIR", str(defaults.songs_dir))),
        bars_per_section=_env_int("MARKERGRID_BARS_PER_SECTION", defaults.bars_per_section),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        log_format=os.getenv("LOG_FORMAT", defaults.log_format).lower(),
    )
