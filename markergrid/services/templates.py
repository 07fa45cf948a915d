from __future__ import annotations

import logging

from markergrid.errors import StructuralEditError
from markergrid.logging_utils import log_event
from markergrid.models import Bar, FlatSongRecord, NestedSection, SongInfo, SongRecord
from markergrid.services.store import current_slot_name
from markergrid.services.timeline import TIME_PRECISION, recompute_all_boundaries, round_time
from markergrid.services.tracks import TrackCatalog

logger = logging.getLogger(__name__)

INTRO_THRESHOLD_SECONDS = 0.3
FALLBACK_TAIL_SECONDS = 32.0


def default_template(song_id: str, catalog: TrackCatalog | None = None) -> FlatSongRecord:
    audio_file = catalog.audio_file_for(song_id) if catalog is not None else None
    return FlatSongRecord(
        songId=song_id,
        title=song_id,
        duration=0,
        sections=[],
        bars=[],
        songInfo=SongInfo(
            songId=song_id,
            audioFile=audio_file,
            markerFile=current_slot_name(song_id),
            state=["new"],
        ),
    )


def _divide(start: float, end: float, count: int, first_ordinal: int) -> list[Bar]:
    length = (end - start) / count
    if length < 10**-TIME_PRECISION:
        raise StructuralEditError(
            f"Cannot divide {start:g}s..{end:g}s into {count} bars; each bar would be shorter than 0.01s."
        )
    bars = []
    for offset in range(count):
        ordinal = first_ordinal + offset
        bar_start = round_time(start + offset * length)
        bar_end = round_time(end if offset == count - 1 else start + (offset + 1) * length)
        if bar_end <= bar_start:
            raise StructuralEditError(f"Bar {ordinal} would have no length after rounding to 0.01s.")
        bars.append(Bar(id=str(ordinal), label=f"Bar {ordinal}", start=bar_start, end=bar_end))
    return bars


def generate_from_markers(
    song_id: str,
    section1_time: float,
    section2_time: float,
    duration: float | None = None,
    bars_per_section: int = 32,
    catalog: TrackCatalog | None = None,
) -> SongRecord:
    """Build a timeline from two user-picked markers.

    An intro covers ``[0, section1_time]`` when the first marker is past the
    threshold; "Section 1" runs up to ``section2_time``; "Section 2" runs to
    the end of the track, or a fixed tail when the duration is unknown.
    """
    if section2_time <= section1_time:
        raise StructuralEditError("The second marker must come after the first marker.")
    if bars_per_section < 1:
        raise StructuralEditError("Each section needs at least one bar.")

    track_end = duration if duration is not None and duration > section2_time else section2_time + FALLBACK_TAIL_SECONDS
    has_intro = section1_time > INTRO_THRESHOLD_SECONDS
    spans = []
    if has_intro:
        spans.append(("intro", "Intro", 0.0, section1_time))
    spans.append(("section", "Section 1", section1_time if has_intro else 0.0, section2_time))
    spans.append(("section", "Section 2", section2_time, track_end))

    sections = []
    next_ordinal = 1
    for number, (section_type, label, start, end) in enumerate(spans, start=1):
        bars = _divide(start, end, bars_per_section, next_ordinal)
        next_ordinal += len(bars)
        sections.append(NestedSection(id=f"section-{number}", type=section_type, label=label, bars=bars))
    recompute_all_boundaries(sections)

    audio_file = catalog.audio_file_for(song_id) if catalog is not None else None
    record = SongRecord(
        songId=song_id,
        title=song_id,
        duration=round_time(track_end),
        sections=sections,
        songInfo=SongInfo(
            songId=song_id,
            audioFile=audio_file,
            markerFile=current_slot_name(song_id),
            state=["generated"],
        ),
    )
    log_event(
        logger,
        "timeline_generated",
        has_intro=has_intro,
        section_count=len(sections),
        bar_count=next_ordinal - 1,
        duration=record.duration,
    )
    return record
