from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


LifecycleState = Literal["new", "generated", "edited", "approved"]

EMPTY_BAR_ID = "0"


class Bar(BaseModel):
    id: str = Field(min_length=1, max_length=40)
    label: str = ""
    start: float = Field(ge=0)
    end: float

    @field_validator("id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, value):
        # Older marker files store ordinals as JSON numbers.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def validate_positive_length(self):
        if self.end <= self.start:
            raise ValueError(f"Bar {self.id} must end after it starts ({self.start} >= {self.end}).")
        return self


class NestedSection(BaseModel):
    id: str = Field(min_length=1, max_length=120)
    type: str = Field(default="section", min_length=1, max_length=40)
    label: str = ""
    start: float = 0
    end: float = 0
    bars: list[Bar] = Field(default_factory=list, validation_alias=AliasChoices("bars", "markers"))


class FlatSection(BaseModel):
    id: str = Field(min_length=1, max_length=120)
    type: str = Field(default="section", min_length=1, max_length=40)
    label: str = ""
    startBarId: str = EMPTY_BAR_ID
    endBarId: str = EMPTY_BAR_ID
    startTime: float = 0
    endTime: float = 0


class SongInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    songId: str = Field(min_length=1, max_length=200)
    audioFile: str | None = None
    markerFile: str | None = None
    state: list[str] = Field(default_factory=list)

    def with_state(self, state: LifecycleState) -> "SongInfo":
        if state in self.state:
            return self.model_copy(deep=True)
        return self.model_copy(update={"state": [*self.state, state]})


class SongRecord(BaseModel):
    """Nested, in-memory form of a timeline: each section owns its bars."""

    model_config = ConfigDict(extra="allow")

    songId: str = Field(min_length=1, max_length=200)
    title: str = ""
    duration: float = Field(default=0, ge=0)
    sections: list[NestedSection] = Field(default_factory=list)
    songInfo: SongInfo | None = None

    @model_validator(mode="after")
    def default_song_info(self):
        if self.songInfo is None:
            self.songInfo = SongInfo(songId=self.songId)
        return self


class FlatSongRecord(BaseModel):
    """Persisted form: one global bar list, sections reference bar-id ranges."""

    model_config = ConfigDict(extra="allow")

    songId: str = Field(min_length=1, max_length=200)
    title: str = ""
    duration: float = Field(default=0, ge=0)
    sections: list[FlatSection] = Field(default_factory=list, validation_alias=AliasChoices("sections", "sectionsList"))
    bars: list[Bar] = Field(default_factory=list)
    songInfo: SongInfo | None = None

    @model_validator(mode="after")
    def default_song_info(self):
        if self.songInfo is None:
            self.songInfo = SongInfo(songId=self.songId)
        return self


class EditorRequest(BaseModel):
    sections: list[NestedSection]


class AdjustBarRequest(EditorRequest):
    barId: str = Field(min_length=1, max_length=40)
    delta: float


class UniformLengthRequest(EditorRequest):
    barId: str = Field(min_length=1, max_length=40)
    newLength: float = Field(gt=0)


class SplitSectionRequest(EditorRequest):
    sectionId: str | None = Field(default=None, min_length=1, max_length=120)
    barIdStart: str = Field(min_length=1, max_length=40)
    barIdEnd: str = Field(min_length=1, max_length=40)
    newType: str = Field(min_length=1, max_length=40)


class DeleteSectionRequest(EditorRequest):
    sectionId: str = Field(min_length=1, max_length=120)


class EditorResponse(BaseModel):
    sections: list[NestedSection]
    applied: bool = True
    missedBarId: str | None = None


class BarRef(BaseModel):
    id: str
    label: str


class BarListResponse(BaseModel):
    bars: list[BarRef]


class GenerateRequest(BaseModel):
    section1Time: float = Field(ge=0)
    section2Time: float = Field(gt=0)
    duration: float | None = Field(default=None, gt=0)
    barsPerSection: int | None = Field(default=None, ge=1, le=512)


class SaveResponse(BaseModel):
    songId: str
    created: bool
    backup: str | None = None


class BackupListResponse(BaseModel):
    songId: str
    backups: list[str]


class TrackEntry(BaseModel):
    filename: str
    songId: str
    approved: bool = False


class TrackListResponse(BaseModel):
    songs: list[TrackEntry]
