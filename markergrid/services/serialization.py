from __future__ import annotations

import logging

from markergrid.logging_utils import log_event
from markergrid.models import EMPTY_BAR_ID, Bar, FlatSection, FlatSongRecord, NestedSection, SongRecord
from markergrid.services.timeline import recompute_section_boundary

logger = logging.getLogger(__name__)


_STRUCTURAL_KEYS = frozenset({"sections", "sectionsList", "bars"})


def _carried_extras(record) -> dict:
    return {key: value for key, value in (record.model_extra or {}).items() if key not in _STRUCTURAL_KEYS}


def bar_number(bar_id: str) -> int | None:
    try:
        return int(str(bar_id).strip())
    except ValueError:
        return None


def to_nested(flat: FlatSongRecord) -> SongRecord:
    """Embed each section's bar-id range of the global bar list into the section.

    Bars are selected in the global list's own order; nothing is sorted here.
    """
    numbered_bars = [(bar_number(bar.id), bar) for bar in flat.bars]
    sections: list[NestedSection] = []
    unmatched: list[str] = []

    for descriptor in flat.sections:
        low = bar_number(descriptor.startBarId)
        high = bar_number(descriptor.endBarId)
        selected: list[Bar] = []
        if low is not None and high is not None:
            selected = [
                bar.model_copy(deep=True)
                for number, bar in numbered_bars
                if number is not None and low <= number <= high
            ]
        if not selected:
            unmatched.append(descriptor.id)

        section = NestedSection(id=descriptor.id, type=descriptor.type, label=descriptor.label, bars=selected)
        sections.append(recompute_section_boundary(section))

    nested = SongRecord(
        songId=flat.songId,
        title=flat.title,
        duration=flat.duration,
        sections=sections,
        songInfo=flat.songInfo.model_copy(deep=True) if flat.songInfo else None,
        **_carried_extras(flat),
    )
    log_event(
        logger,
        "timeline_nested",
        section_count=len(sections),
        bar_count=sum(len(section.bars) for section in sections),
        empty_sections=unmatched,
    )
    return nested


def to_flat(nested: SongRecord) -> FlatSongRecord:
    bars_by_id: dict[str, Bar] = {}
    flat_sections: list[FlatSection] = []

    for section in nested.sections:
        if not section.bars:
            flat_sections.append(
                FlatSection(
                    id=section.id,
                    type=section.type,
                    label=section.label,
                    startBarId=EMPTY_BAR_ID,
                    endBarId=EMPTY_BAR_ID,
                )
            )
            continue

        ordered = sorted(section.bars, key=lambda bar: bar.start)
        for bar in ordered:
            bars_by_id[bar.id] = bar.model_copy(deep=True)
        flat_sections.append(
            FlatSection(
                id=section.id,
                type=section.type,
                label=section.label,
                startBarId=ordered[0].id,
                endBarId=ordered[-1].id,
                startTime=ordered[0].start,
                endTime=ordered[-1].end,
            )
        )

    flat = FlatSongRecord(
        songId=nested.songId,
        title=nested.title,
        duration=nested.duration,
        sections=flat_sections,
        bars=sorted(bars_by_id.values(), key=lambda bar: bar.start),
        songInfo=nested.songInfo.model_copy(deep=True) if nested.songInfo else None,
        **_carried_extras(nested),
    )
    log_event(logger, "timeline_flattened", section_count=len(flat_sections), bar_count=len(flat.bars))
    return flat
