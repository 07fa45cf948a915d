from markergrid.models import Bar, FlatSection, FlatSongRecord, NestedSection, SongRecord
from markergrid.services.serialization import bar_number, to_flat, to_nested


def _flat_record():
    return FlatSongRecord(
        songId="Amarras",
        title="Amarras",
        duration=24,
        sections=[
            FlatSection(id="section-1", type="verse", label="Verse", startBarId="1", endBarId="4", startTime=0, endTime=12),
            FlatSection(id="section-2", type="chorus", label="Chorus", startBarId="5", endBarId="8", startTime=12, endTime=24),
        ],
        bars=[Bar(id=str(i), label=f"Bar {i}", start=(i - 1) * 3, end=i * 3) for i in range(1, 9)],
        Rhythms=[{"name": "clave"}],
    )


def _membership(record):
    return {section.id: sorted(bar.id for bar in section.bars) for section in record.sections}


def _bar_set(bars):
    return sorted((bar.id, bar.start, bar.end, bar.label) for bar in bars)


def test_to_nested_embeds_bar_ranges():
    nested = to_nested(_flat_record())

    assert _membership(nested) == {"section-1": ["1", "2", "3", "4"], "section-2": ["5", "6", "7", "8"]}
    assert (nested.sections[1].start, nested.sections[1].end) == (12, 24)
    assert nested.sections[0].type == "verse"


def test_to_nested_keeps_global_list_order():
    flat = _flat_record()
    flat.bars = list(reversed(flat.bars))

    nested = to_nested(flat)

    assert [bar.id for bar in nested.sections[0].bars] == ["4", "3", "2", "1"]


def test_to_nested_unmatched_range_yields_empty_section():
    flat = _flat_record()
    flat.sections.append(FlatSection(id="section-3", startBarId="40", endBarId="48"))
    flat.sections.append(FlatSection(id="section-4", startBarId="bar-1", endBarId="bar-4"))

    nested = to_nested(flat)

    assert nested.sections[2].bars == []
    assert nested.sections[3].bars == []
    assert (nested.sections[2].start, nested.sections[2].end) == (0, 0)


def test_to_nested_carries_extra_fields_and_song_info():
    nested = to_nested(_flat_record())

    assert nested.model_extra["Rhythms"] == [{"name": "clave"}]
    assert nested.songInfo.songId == "Amarras"


def test_to_flat_sorts_bars_and_records_ranges():
    nested = SongRecord(
        songId="Amarras",
        sections=[
            NestedSection(
                id="section-1",
                bars=[Bar(id="2", start=3, end=6), Bar(id="1", start=0, end=3)],
            ),
            NestedSection(id="section-2", bars=[Bar(id="3", start=6, end=9.5)]),
        ],
    )

    flat = to_flat(nested)

    assert [bar.id for bar in flat.bars] == ["1", "2", "3"]
    first = flat.sections[0]
    assert (first.startBarId, first.endBarId, first.startTime, first.endTime) == ("1", "2", 0, 6)
    assert (flat.sections[1].startTime, flat.sections[1].endTime) == (6, 9.5)


def test_to_flat_empty_section_uses_sentinel_ids():
    nested = SongRecord(songId="Amarras", sections=[NestedSection(id="section-1")])

    flat = to_flat(nested)

    assert (flat.sections[0].startBarId, flat.sections[0].endBarId) == ("0", "0")
    assert flat.bars == []


def test_to_flat_duplicate_bar_id_last_write_wins():
    nested = SongRecord(
        songId="Amarras",
        sections=[
            NestedSection(id="section-1", bars=[Bar(id="1", start=0, end=3)]),
            NestedSection(id="section-2", bars=[Bar(id="1", label="moved", start=3, end=6)]),
        ],
    )

    flat = to_flat(nested)

    assert len(flat.bars) == 1
    assert flat.bars[0].label == "moved"


def test_round_trip_preserves_bars_and_membership():
    original = to_nested(_flat_record())

    restored = to_nested(to_flat(original))

    assert _bar_set(b for s in restored.sections for b in s.bars) == _bar_set(b for s in original.sections for b in s.bars)
    assert _membership(restored) == _membership(original)
    assert restored.model_extra["Rhythms"] == [{"name": "clave"}]


def test_legacy_keys_are_accepted():
    flat = FlatSongRecord.model_validate(
        {
            "songId": "Amarras",
            "sectionsList": [{"id": "section-1", "startBarId": "1", "endBarId": "1"}],
            "bars": [{"id": 1, "label": "Bar 1", "start": 0, "end": 2.5}],
        }
    )
    section = NestedSection.model_validate({"id": "section-1", "markers": [{"id": "1", "start": 0, "end": 1}]})

    assert to_nested(flat).sections[0].bars[0].id == "1"
    assert section.bars[0].end == 1


def test_bar_number_parses_ordinals_only():
    assert bar_number("12") == 12
    assert bar_number(" 3 ") == 3
    assert bar_number("bar-3") is None
