from __future__ import annotations

from collections.abc import Iterator

from markergrid.models import Bar, NestedSection

TIME_PRECISION = 2
CONTIGUITY_TOLERANCE = 0.01


def round_time(value: float) -> float:
    return round(value, TIME_PRECISION)


def recompute_section_boundary(section: NestedSection) -> NestedSection:
    if not section.bars:
        section.start = 0
        section.end = 0
    else:
        section.start = section.bars[0].start
        section.end = section.bars[-1].end
    return section


def recompute_all_boundaries(sections: list[NestedSection]) -> list[NestedSection]:
    for section in sections:
        recompute_section_boundary(section)
    return sections


def iter_bars(sections: list[NestedSection]) -> Iterator[Bar]:
    for section in sections:
        yield from section.bars


def contiguity_gaps(sections: list[NestedSection], tolerance: float = CONTIGUITY_TOLERANCE) -> list[tuple[str, str]]:
    gaps: list[tuple[str, str]] = []
    previous: Bar | None = None
    for bar in iter_bars(sections):
        if previous is not None and abs(previous.end - bar.start) > tolerance:
            gaps.append((previous.id, bar.id))
        previous = bar
    return gaps


def is_contiguous(sections: list[NestedSection], tolerance: float = CONTIGUITY_TOLERANCE) -> bool:
    return not contiguity_gaps(sections, tolerance)


def copy_sections(sections: list[NestedSection]) -> list[NestedSection]:
    return [section.model_copy(deep=True) for section in sections]


def collapsed_bars(sections: list[NestedSection]) -> list[str]:
    """Ids of bars whose end does not come after their start."""
    return [bar.id for bar in iter_bars(sections) if bar.end <= bar.start]
