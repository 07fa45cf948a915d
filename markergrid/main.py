from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from markergrid.errors import (
    RecordConflictError,
    RecordNotFoundError,
    SectionNotFoundError,
    StorageError,
    StructuralEditError,
    TimelineError,
)
from markergrid.logging_utils import (
    clear_request_context,
    configure_logging,
    current_request_id,
    log_event,
    new_request_id,
    request_elapsed_ms,
    set_request_context,
)
from markergrid.models import (
    AdjustBarRequest,
    BackupListResponse,
    BarListResponse,
    DeleteSectionRequest,
    EditorRequest,
    EditorResponse,
    GenerateRequest,
    SaveResponse,
    SongRecord,
    SplitSectionRequest,
    TrackListResponse,
    UniformLengthRequest,
)
from markergrid.services.editor import (
    EditResult,
    adjust_bar_time,
    apply_uniform_length,
    delete_section_by_id,
    extract_bar_range,
    list_bars,
    split_section,
)
from markergrid.services.timeline_service import TimelineService
from markergrid.settings import get_settings

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Marker Grid")
timeline_service = TimelineService.from_settings(get_settings())

_STATUS_BY_ERROR: tuple[tuple[type[TimelineError], int], ...] = (
    (StructuralEditError, 422),
    (SectionNotFoundError, 404),
    (RecordNotFoundError, 404),
    (RecordConflictError, 409),
    (StorageError, 500),
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or new_request_id()
    set_request_context(request_id=request_id, route=request.url.path, method=request.method)
    started = time.perf_counter()
    log_event(logger, "request_started")
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = request_elapsed_ms(started)
        log_event(logger, "request_completed", status_code=500, duration_ms=elapsed_ms)
        raise

    elapsed_ms = request_elapsed_ms(started)
    log_event(logger, "request_completed", status_code=response.status_code, duration_ms=elapsed_ms)
    response.headers["X-Request-ID"] = request_id
    clear_request_context()
    return response


@app.exception_handler(Exception)
async def global_exception_handler(_request: Request, exc: Exception):
    request_id = current_request_id()
    logger.exception(
        "unhandled_exception",
        extra={"event": "unhandled_exception", "request_id": request_id},
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Something went wrong while processing your request. Please try again.",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )
    clear_request_context()
    return response


def _handle_timeline_error(action: str, exc: TimelineError) -> HTTPException:
    status_code = next((code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)), 500)
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    log_event(
        logger,
        "request_failed",
        level=level,
        action=action,
        error_type=type(exc).__name__,
        reason=str(exc),
    )
    return HTTPException(
        status_code=status_code,
        detail={
            "message": f"{action} failed: {exc}",
            "request_id": current_request_id(),
        },
    )


def _editor_response(result: EditResult) -> EditorResponse:
    return EditorResponse(sections=result.sections, applied=result.applied, missedBarId=result.missed_bar_id)


@app.get("/api/songs", response_model=TrackListResponse)
def list_songs_endpoint():
    try:
        return TrackListResponse(songs=timeline_service.catalog.list_tracks())
    except TimelineError as exc:
        raise _handle_timeline_error("Listing songs", exc) from exc


@app.get("/api/timelines/{song_id}", response_model=SongRecord)
def load_timeline_endpoint(song_id: str):
    try:
        return timeline_service.load_timeline(song_id)
    except TimelineError as exc:
        raise _handle_timeline_error("Loading the timeline", exc) from exc


@app.put("/api/timelines/{song_id}", response_model=SaveResponse)
def save_timeline_endpoint(song_id: str, payload: SongRecord):
    try:
        outcome = timeline_service.save_timeline(song_id, payload)
    except TimelineError as exc:
        raise _handle_timeline_error("Saving the timeline", exc) from exc
    return SaveResponse(songId=song_id, created=outcome.created, backup=outcome.backup)


@app.post("/api/timelines/{song_id}/generate", response_model=SongRecord)
def generate_timeline_endpoint(song_id: str, payload: GenerateRequest):
    log_event(
        logger,
        "timeline_generation_requested",
        section1_time=payload.section1Time,
        section2_time=payload.section2Time,
        duration=payload.duration,
        bars_per_section=payload.barsPerSection,
    )
    try:
        return timeline_service.generate_timeline(
            song_id,
            payload.section1Time,
            payload.section2Time,
            duration=payload.duration,
            bars_per_section=payload.barsPerSection,
        )
    except TimelineError as exc:
        raise _handle_timeline_error("Timeline generation", exc) from exc


@app.post("/api/timelines/{song_id}/approve", response_model=SongRecord)
def approve_song_endpoint(song_id: str):
    try:
        return timeline_service.approve_song(song_id)
    except TimelineError as exc:
        raise _handle_timeline_error("Song approval", exc) from exc


@app.get("/api/timelines/{song_id}/backups", response_model=BackupListResponse)
def list_backups_endpoint(song_id: str):
    try:
        backups = timeline_service.list_backups(song_id)
    except TimelineError as exc:
        raise _handle_timeline_error("Listing backups", exc) from exc
    return BackupListResponse(songId=song_id, backups=backups)


@app.post("/api/editor/adjust-bar", response_model=EditorResponse)
def adjust_bar_endpoint(payload: AdjustBarRequest):
    try:
        return _editor_response(adjust_bar_time(payload.sections, payload.barId, payload.delta))
    except TimelineError as exc:
        raise _handle_timeline_error("Bar adjustment", exc) from exc


@app.post("/api/editor/uniform-length", response_model=EditorResponse)
def uniform_length_endpoint(payload: UniformLengthRequest):
    try:
        return _editor_response(apply_uniform_length(payload.sections, payload.barId, payload.newLength))
    except TimelineError as exc:
        raise _handle_timeline_error("Bar length change", exc) from exc


@app.post("/api/editor/split-section", response_model=EditorResponse)
def split_section_endpoint(payload: SplitSectionRequest):
    try:
        if payload.sectionId is None:
            sections = extract_bar_range(payload.sections, payload.barIdStart, payload.barIdEnd, payload.newType)
        else:
            sections = split_section(
                payload.sections,
                payload.sectionId,
                payload.barIdStart,
                payload.barIdEnd,
                payload.newType,
            )
    except TimelineError as exc:
        raise _handle_timeline_error("Section split", exc) from exc
    return EditorResponse(sections=sections)


@app.post("/api/editor/delete-section", response_model=EditorResponse)
def delete_section_endpoint(payload: DeleteSectionRequest):
    try:
        sections = delete_section_by_id(payload.sections, payload.sectionId)
    except TimelineError as exc:
        raise _handle_timeline_error("Section deletion", exc) from exc
    return EditorResponse(sections=sections)


@app.post("/api/editor/bars", response_model=BarListResponse)
def list_bars_endpoint(payload: EditorRequest):
    return BarListResponse(bars=list_bars(payload.sections))
