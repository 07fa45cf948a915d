from fastapi.testclient import TestClient

from markergrid.main import app
from markergrid.errors import StorageError
from markergrid.models import Bar, NestedSection
from markergrid.services.storage import DirectoryBackend
from markergrid.services.store import VersionedStore
from markergrid.services.timeline_service import TimelineService
from markergrid.services.tracks import TrackCatalog


client = TestClient(app)


def _use_tmp_service(monkeypatch, tmp_path):
    markers_dir = tmp_path / "markers"
    songs_dir = tmp_path / "songs"
    markers_dir.mkdir()
    songs_dir.mkdir()
    service = TimelineService(VersionedStore(DirectoryBackend(markers_dir)), TrackCatalog(songs_dir), bars_per_section=4)
    monkeypatch.setattr("markergrid.main.timeline_service", service)
    return service


def _sections_payload():
    sections = [
        NestedSection(
            id="section-1",
            type="verse",
            label="Verse",
            bars=[Bar(id=str(i), label=f"Bar {i}", start=(i - 1) * 3, end=i * 3) for i in range(1, 5)],
        ),
        NestedSection(
            id="section-2",
            type="chorus",
            label="Chorus",
            bars=[Bar(id=str(i), label=f"Bar {i}", start=(i - 1) * 3, end=i * 3) for i in range(5, 9)],
        ),
    ]
    return [section.model_dump() for section in sections]


def test_first_load_creates_default_record(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)

    first = client.get("/api/timelines/Amarras")
    second = client.get("/api/timelines/Amarras")

    assert first.status_code == 200
    assert first.json()["sections"] == []
    assert first.json()["songInfo"]["state"] == ["new"]
    assert second.json() == first.json()
    assert (tmp_path / "markers" / "Amarras-markers.json").is_file()
    assert first.headers["X-Request-ID"]


def test_save_rotates_backups_and_load_returns_nested(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)
    record = client.get("/api/timelines/Amarras").json()
    record["sections"] = _sections_payload()

    saved = client.put("/api/timelines/Amarras", json=record)
    loaded = client.get("/api/timelines/Amarras").json()
    backups = client.get("/api/timelines/Amarras/backups").json()

    assert saved.status_code == 200
    assert saved.json() == {"songId": "Amarras", "created": False, "backup": "Amarras-markers01.json"}
    assert [bar["id"] for bar in loaded["sections"][1]["bars"]] == ["5", "6", "7", "8"]
    assert "edited" in loaded["songInfo"]["state"]
    assert backups == {"songId": "Amarras", "backups": ["01"]}


def test_save_without_prior_record_creates_it(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)

    res = client.put("/api/timelines/Fresh", json={"songId": "Fresh", "sections": _sections_payload()})

    assert res.status_code == 200
    assert res.json()["created"] is True
    assert res.json()["backup"] is None


def test_generate_conflicts_with_existing_record(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)

    created = client.post("/api/timelines/Amarras/generate", json={"section1Time": 8, "section2Time": 72, "duration": 136})
    again = client.post("/api/timelines/Amarras/generate", json={"section1Time": 8, "section2Time": 72})

    assert created.status_code == 200
    assert [section["label"] for section in created.json()["sections"]] == ["Intro", "Section 1", "Section 2"]
    assert len(created.json()["sections"][0]["bars"]) == 4
    assert again.status_code == 409
    assert again.json()["detail"]["request_id"]


def test_generate_replaces_default_record_created_by_first_load(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)
    client.get("/api/timelines/Amarras")

    created = client.post("/api/timelines/Amarras/generate", json={"section1Time": 5, "section2Time": 20})
    loaded = client.get("/api/timelines/Amarras").json()
    again = client.post("/api/timelines/Amarras/generate", json={"section1Time": 5, "section2Time": 20})

    assert created.status_code == 200
    assert loaded["songInfo"]["state"] == ["generated"]
    assert [section["label"] for section in loaded["sections"]] == ["Intro", "Section 1", "Section 2"]
    assert client.get("/api/timelines/Amarras/backups").json()["backups"] == ["01"]
    assert again.status_code == 409


def test_generate_rejects_reversed_markers(monkeypatch, tmp_path):
    _use_tmp_service(monkeypatch, tmp_path)

    res = client.post("/api/timelines/Amarras/generate", json={"section1Time": 40, "section2Time": 20})

    assert res.status_code == 422
    assert "Timeline generation failed" in res.json()["detail"]["message"]


def test_approve_marks_state_and_registers_audio(monkeypatch, tmp_path):
    service = _use_tmp_service(monkeypatch, tmp_path)
    (tmp_path / "songs" / "Amarras.mp3").write_bytes(b"")
    client.get("/api/timelines/Amarras")

    res = client.post("/api/timelines/Amarras/approve")
    songs = client.get("/api/songs").json()

    assert res.status_code == 200
    assert "approved" in res.json()["songInfo"]["state"]
    assert songs == {"songs": [{"filename": "Amarras.mp3", "songId": "Amarras", "approved": True}]}
    assert service.catalog.approved() == {"Amarras.mp3"}


def test_approve_without_record_returns_404(monkeypatch, tmp_path):
    service = _use_tmp_service(monkeypatch, tmp_path)
    (tmp_path / "songs" / "Amarras.mp3").write_bytes(b"")

    res = client.post("/api/timelines/Amarras/approve")

    assert res.status_code == 404
    assert not service.store.exists("Amarras")
    assert service.catalog.approved() == set()


def test_adjust_bar_endpoint_ripples():
    res = client.post("/api/editor/adjust-bar", json={"sections": _sections_payload(), "barId": "5", "delta": 2})

    assert res.status_code == 200
    body = res.json()
    assert body["applied"] is True
    assert body["sections"][0]["end"] == 14
    assert body["sections"][1]["bars"][-1] == {"id": "8", "label": "Bar 8", "start": 23, "end": 26}


def test_adjust_bar_endpoint_reports_soft_miss():
    res = client.post("/api/editor/adjust-bar", json={"sections": _sections_payload(), "barId": "bar-5", "delta": 2})

    assert res.status_code == 200
    assert res.json()["applied"] is False
    assert res.json()["missedBarId"] == "bar-5"
    assert [s["bars"] for s in res.json()["sections"]] == [s["bars"] for s in _sections_payload()]


def test_uniform_length_endpoint_validates_length():
    res = client.post("/api/editor/uniform-length", json={"sections": _sections_payload(), "barId": "3", "newLength": 0})

    assert res.status_code == 422


def test_uniform_length_endpoint_applies_length():
    res = client.post("/api/editor/uniform-length", json={"sections": _sections_payload(), "barId": "3", "newLength": 2})

    assert res.status_code == 200
    assert res.json()["sections"][1]["end"] == 18


def test_split_section_endpoint_inserts_new_section():
    res = client.post(
        "/api/editor/split-section",
        json={"sections": _sections_payload(), "sectionId": "section-2", "barIdStart": "7", "barIdEnd": "8", "newType": "Outro"},
    )

    assert res.status_code == 200
    sections = res.json()["sections"]
    assert [s["id"] for s in sections] == ["section-1", "section-2", "section-3"]
    assert sections[2]["type"] == "outro"
    assert (sections[2]["start"], sections[2]["end"]) == (18, 24)


def test_split_section_endpoint_carves_range_across_sections():
    res = client.post(
        "/api/editor/split-section",
        json={"sections": _sections_payload(), "barIdStart": "3", "barIdEnd": "6", "newType": "Bridge"},
    )

    assert res.status_code == 200
    sections = res.json()["sections"]
    assert [s["id"] for s in sections] == ["section-1", "section-3", "section-2"]
    assert [[bar["id"] for bar in s["bars"]] for s in sections] == [["1", "2"], ["3", "4", "5", "6"], ["7", "8"]]
    assert (sections[1]["start"], sections[1]["end"]) == (6, 18)


def test_split_section_endpoint_rejects_unknown_bars():
    res = client.post(
        "/api/editor/split-section",
        json={"sections": _sections_payload(), "sectionId": "section-2", "barIdStart": "1", "barIdEnd": "8", "newType": "Outro"},
    )

    assert res.status_code == 422
    assert "bar IDs not found" in res.json()["detail"]["message"]


def test_delete_section_endpoint_statuses():
    merged = client.post("/api/editor/delete-section", json={"sections": _sections_payload(), "sectionId": "section-2"})
    first = client.post("/api/editor/delete-section", json={"sections": _sections_payload(), "sectionId": "section-1"})
    missing = client.post("/api/editor/delete-section", json={"sections": _sections_payload(), "sectionId": "section-9"})

    assert merged.status_code == 200
    assert len(merged.json()["sections"][0]["bars"]) == 8
    assert first.status_code == 422
    assert "Cannot delete the first section" in first.json()["detail"]["message"]
    assert missing.status_code == 404


def test_bars_endpoint_lists_picker_entries():
    res = client.post("/api/editor/bars", json={"sections": _sections_payload()})

    assert res.status_code == 200
    assert res.json()["bars"][:2] == [{"id": "1", "label": "Bar 1"}, {"id": "2", "label": "Bar 2"}]


def test_storage_failure_returns_500_with_request_id(monkeypatch, tmp_path):
    service = _use_tmp_service(monkeypatch, tmp_path)
    (tmp_path / "markers" / "Broken-markers.json").write_text("{oops", encoding="utf-8")

    res = client.get("/api/timelines/Broken", headers={"X-Request-ID": "req-42"})

    assert res.status_code == 500
    assert res.json()["detail"]["request_id"] == "req-42"
    assert service.store.exists("Broken")


def test_backup_listing_failure_returns_500(monkeypatch, tmp_path):
    service = _use_tmp_service(monkeypatch, tmp_path)

    def _broken_listing(song_id):
        raise StorageError("list", song_id, "disk unavailable")

    monkeypatch.setattr(service.store, "backup_versions", _broken_listing)

    res = client.get("/api/timelines/Amarras/backups", headers={"X-Request-ID": "req-7"})

    assert res.status_code == 500
    assert "Listing backups failed" in res.json()["detail"]["message"]
    assert res.json()["detail"]["request_id"] == "req-7"
