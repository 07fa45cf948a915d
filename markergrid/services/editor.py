from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from markergrid.errors import SectionNotFoundError, StructuralEditError
from markergrid.logging_utils import log_event
from markergrid.models import BarRef, NestedSection
from markergrid.services.timeline import (
    collapsed_bars,
    contiguity_gaps,
    copy_sections,
    iter_bars,
    recompute_all_boundaries,
    recompute_section_boundary,
    round_time,
)

logger = logging.getLogger(__name__)

SPLIT_MISS_REASON = "bar IDs not found or invalid range"
_SECTION_ID_PATTERN = re.compile(r"section-(\d+)$")


@dataclass(frozen=True)
class EditResult:
    """Outcome of a bar-level edit.

    A soft miss (unknown bar id, or the timeline's anchor bar) leaves
    ``applied`` False and ``sections`` equal to the input.
    """

    sections: list[NestedSection]
    applied: bool
    reason: str | None = None
    missed_bar_id: str | None = None


@dataclass(frozen=True)
class SplitResult:
    original: NestedSection
    new_section: NestedSection | None
    applied: bool
    reason: str | None = None
    start_index: int = -1
    end_index: int = -1


def _locate_bar(sections: list[NestedSection], bar_id: str) -> int | None:
    """Position of the first bar with ``bar_id`` in full timeline order."""
    for position, bar in enumerate(iter_bars(sections)):
        if bar.id == bar_id:
            return position
    return None


def _soft_miss(sections: list[NestedSection], operation: str, bar_id: str, reason: str) -> EditResult:
    log_event(logger, "bar_lookup_missed", level=logging.WARNING, operation=operation, bar_id=bar_id, reason=reason)
    return EditResult(
        sections=copy_sections(sections),
        applied=False,
        reason=reason,
        missed_bar_id=bar_id if reason == "bar_not_found" else None,
    )


def _finish(sections: list[NestedSection], event: str, **fields) -> EditResult:
    collapsed = collapsed_bars(sections)
    if collapsed:
        log_event(logger, "edit_rejected", level=logging.WARNING, after=event, collapsed_bars=collapsed[:10])
        raise StructuralEditError(
            f"Edit would leave {len(collapsed)} bar(s) without length after rounding to 0.01s, starting at bar {collapsed[0]}."
        )
    recompute_all_boundaries(sections)
    gaps = contiguity_gaps(sections)
    if gaps:
        log_event(logger, "timeline_contiguity_gaps", level=logging.WARNING, after=event, gaps=gaps[:10])
    log_event(logger, event, **fields)
    return EditResult(sections=sections, applied=True)


def adjust_bar_time(sections: list[NestedSection], bar_id: str, delta: float) -> EditResult:
    """Shift one bar, let its predecessor absorb the change and ripple every later bar.

    Durations of the shifted bar and of every bar after it are preserved.
    """
    position = _locate_bar(sections, bar_id)
    if position is None:
        return _soft_miss(sections, "adjust_bar_time", bar_id, "bar_not_found")
    if position == 0:
        return _soft_miss(sections, "adjust_bar_time", bar_id, "anchor_bar")

    updated = copy_sections(sections)
    bars = list(iter_bars(updated))
    target = bars[position]
    previous = bars[position - 1]

    duration = target.end - target.start
    new_start = round_time(target.start + delta)
    if new_start <= previous.start:
        raise StructuralEditError(
            f"Shifting bar {bar_id} by {delta:g}s would collapse bar {previous.id}, which starts at {previous.start:g}s."
        )

    target.start = new_start
    target.end = round_time(new_start + duration)
    previous.end = new_start

    current_end = target.end
    for bar in bars[position + 1 :]:
        length = bar.end - bar.start
        bar.start = current_end
        bar.end = round_time(current_end + length)
        current_end = bar.end

    return _finish(updated, "bar_adjusted", bar_id=bar_id, delta=delta, rippled_bars=len(bars) - position - 1)


def apply_uniform_length(sections: list[NestedSection], bar_id: str, new_length: float) -> EditResult:
    """Force ``bar_id`` and every bar after it to ``new_length``, chained from the bar's current start."""
    if round_time(new_length) <= 0:
        raise StructuralEditError(f"Bar length must be positive, got {new_length:g}.")

    position = _locate_bar(sections, bar_id)
    if position is None:
        return _soft_miss(sections, "apply_uniform_length", bar_id, "bar_not_found")

    updated = copy_sections(sections)
    bars = list(iter_bars(updated))

    current_start = round_time(bars[position].start)
    for bar in bars[position:]:
        bar.start = current_start
        bar.end = round_time(current_start + new_length)
        current_start = bar.end

    return _finish(
        updated,
        "bar_length_applied",
        bar_id=bar_id,
        new_length=new_length,
        affected_bars=len(bars) - position,
    )


def next_section_id(existing_ids: Iterable[str]) -> str:
    highest = 0
    for section_id in existing_ids:
        match = _SECTION_ID_PATTERN.match(section_id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"section-{highest + 1}"


def split_section_by_bar_range(
    section: NestedSection,
    bar_id_start: str,
    bar_id_end: str,
    new_type: str,
    new_section_id: str | None = None,
) -> SplitResult:
    original = section.model_copy(deep=True)
    ids = [bar.id for bar in original.bars]
    if bar_id_start not in ids or bar_id_end not in ids:
        log_event(
            logger,
            "section_split_rejected",
            level=logging.WARNING,
            section_id=section.id,
            bar_id_start=bar_id_start,
            bar_id_end=bar_id_end,
        )
        return SplitResult(original=original, new_section=None, applied=False, reason=SPLIT_MISS_REASON)

    start_index = ids.index(bar_id_start)
    end_index = ids.index(bar_id_end)
    if start_index > end_index:
        start_index, end_index = end_index, start_index

    extracted = original.bars[start_index : end_index + 1]
    original.bars = original.bars[:start_index] + original.bars[end_index + 1 :]
    new_section = NestedSection(
        id=new_section_id or next_section_id([section.id]),
        type=new_type.lower(),
        label=f"{new_type} Section",
        bars=extracted,
    )
    recompute_section_boundary(new_section)
    recompute_section_boundary(original)
    return SplitResult(
        original=original,
        new_section=new_section,
        applied=True,
        start_index=start_index,
        end_index=end_index,
    )


def _find_section_index(sections: list[NestedSection], section_id: str) -> int:
    for index, section in enumerate(sections):
        if section.id == section_id:
            return index
    raise SectionNotFoundError(f"Section '{section_id}' not found.")


def extract_bar_range(
    sections: list[NestedSection],
    bar_id_start: str,
    bar_id_end: str,
    new_type: str,
) -> list[NestedSection]:
    """Carve a bar range that may cross section boundaries into one new section.

    The new section goes where the range starts. Bars before the range keep
    their section; bars after it stay in the section that held the range's
    last bar (under a fresh id when that section also keeps a head). Sections
    left without bars are dropped, so the concatenated bar order is unchanged.
    """
    start = _locate_bar(sections, bar_id_start)
    end = _locate_bar(sections, bar_id_end)
    if start is None or end is None:
        log_event(
            logger,
            "section_split_rejected",
            level=logging.WARNING,
            bar_id_start=bar_id_start,
            bar_id_end=bar_id_end,
        )
        raise StructuralEditError(f"Failed to extract bars {bar_id_start}..{bar_id_end}: {SPLIT_MISS_REASON}.")
    if start > end:
        start, end = end, start

    existing_ids = [section.id for section in sections]
    new_section_id = next_section_id(existing_ids)
    taken_ids = [*existing_ids, new_section_id]
    updated: list[NestedSection] = []
    carved = []
    insert_at = 0
    touched = []
    position = 0
    for section in copy_sections(sections):
        first = position
        position += len(section.bars)
        if position <= start or first > end:
            updated.append(section)
            continue

        touched.append(section.id)
        head = section.bars[: max(start - first, 0)]
        carved.extend(section.bars[max(start - first, 0) : end - first + 1])
        tail = section.bars[end - first + 1 :]
        if first <= start:
            if head:
                updated.append(section.model_copy(update={"bars": head}))
            insert_at = len(updated)
        if tail:
            tail_id = section.id
            if head:
                tail_id = next_section_id(taken_ids)
                taken_ids.append(tail_id)
            updated.append(section.model_copy(update={"id": tail_id, "bars": tail}))

    new_section = NestedSection(id=new_section_id, type=new_type.lower(), label=f"{new_type} Section", bars=carved)
    updated.insert(insert_at, new_section)
    recompute_all_boundaries(updated)
    log_event(
        logger,
        "section_split",
        new_section_id=new_section.id,
        new_type=new_section.type,
        bar_id_start=bar_id_start,
        bar_id_end=bar_id_end,
        source_sections=touched,
        moved_bars=len(carved),
    )
    return updated


def split_section(
    sections: list[NestedSection],
    section_id: str,
    bar_id_start: str,
    bar_id_end: str,
    new_type: str,
) -> list[NestedSection]:
    """Carve a bar range out of one section as a new section, keeping timeline order.

    Both bars must belong to ``section_id``; use ``extract_bar_range`` for
    ranges that cross sections.
    """
    index = _find_section_index(sections, section_id)
    result = split_section_by_bar_range(sections[index], bar_id_start, bar_id_end, new_type)
    if not result.applied:
        raise StructuralEditError(f"Failed to split section '{section_id}': {result.reason}.")
    return extract_bar_range(sections, bar_id_start, bar_id_end, new_type)


def delete_section(sections: list[NestedSection], index: int) -> list[NestedSection]:
    """Merge the section at ``index`` into its predecessor and remove it."""
    if len(sections) <= 1:
        raise StructuralEditError("Cannot delete the only section in the song.")
    if index == 0:
        raise StructuralEditError("Cannot delete the first section.")
    if index < 0 or index >= len(sections):
        raise SectionNotFoundError(f"No section at index {index}.")

    updated = copy_sections(sections)
    removed = updated.pop(index)
    updated[index - 1].bars = [*updated[index - 1].bars, *removed.bars]
    recompute_all_boundaries(updated)
    log_event(
        logger,
        "section_deleted",
        section_id=removed.id,
        merged_into=updated[index - 1].id,
        moved_bars=len(removed.bars),
    )
    return updated


def delete_section_by_id(sections: list[NestedSection], section_id: str) -> list[NestedSection]:
    return delete_section(sections, _find_section_index(sections, section_id))


def list_bars(sections: list[NestedSection]) -> list[BarRef]:
    return [BarRef(id=bar.id, label=bar.label) for bar in iter_bars(sections)]
