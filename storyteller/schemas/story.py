"""
Story request and session credential schemas.

Wire names follow what the browser client sends (``storyControls`` with
``length``/``complexity``/``mainCharacter``/``includeSummary``); Python code
uses the descriptive field names.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyteller.core.exceptions import UpstreamError

# Identity the browser user joins the media room with; every other participant is the agent
LOCAL_PARTICIPANT_NAME = "Web User"


class StorySetting(str, Enum):
    """Where the story takes place."""

    FANTASY = "fantasy"
    SPACE = "space"
    MODERN = "modern"
    HISTORY = "history"
    RELIGIOUS = "religious"
    LEADERS = "leaders"
    UNDERWATER = "underwater"
    FOREST = "forest"
    CITY = "city"


class StoryTone(str, Enum):
    """Narration register, from playful to educational."""

    KINDERGARTEN = "kindergarten"
    ELEMENTARY = "elementary"
    MIDDLE = "middle"
    LECTURE = "lecture"


class StoryOptions(BaseModel):
    """User-controlled story shaping. Defaults apply to anything left out."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    duration_minutes: float = Field(3, ge=1, le=5, alias="length", description="Target spoken length")
    setting: StorySetting = Field(StorySetting.FANTASY)
    main_character: str = Field("", alias="mainCharacter")
    tone: StoryTone = Field(StoryTone.KINDERGARTEN)
    audience_age: int = Field(8, ge=6, le=20, alias="complexity", description="Listener age in years")
    include_summary: bool = Field(False, alias="includeSummary")

    @field_validator("setting", mode="before")
    @classmethod
    def _coerce_setting(cls, value: Any) -> Any:
        if isinstance(value, StorySetting):
            return value
        try:
            return StorySetting(str(value).strip().lower())
        except ValueError:
            return StorySetting.FANTASY

    @field_validator("tone", mode="before")
    @classmethod
    def _coerce_tone(cls, value: Any) -> Any:
        if isinstance(value, StoryTone):
            return value
        try:
            return StoryTone(str(value).strip().lower())
        except ValueError:
            return StoryTone.KINDERGARTEN

    @field_validator("main_character", mode="before")
    @classmethod
    def _coerce_character(cls, value: Any) -> Any:
        return "" if value is None else value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class AdhocSessionRequest(BaseModel):
    """Body of ``POST /session/adhoc``. ``summary`` carries interruption text."""

    model_config = ConfigDict(populate_by_name=True)

    topic: Optional[str] = None
    summary: Optional[str] = None
    story_controls: Optional[StoryOptions] = Field(None, alias="storyControls")


class SessionCredential(BaseModel):
    """Short-lived token and address needed to join a media room.

    Extra fields returned by the session backend are kept so the HTTP layer
    can pass the payload through untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    token: str = Field(..., min_length=1)
    ws_url: str = Field(..., min_length=1, alias="wsUrl")
    room_name: str = Field("", alias="roomName")

    @classmethod
    def from_payload(cls, payload: Any, *, operation: str = "createSession") -> "SessionCredential":
        """Parse a backend payload, treating malformed data as an upstream failure."""
        if not isinstance(payload, dict):
            raise UpstreamError(None, f"unexpected payload: {payload!r}", operation=operation)
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise UpstreamError(None, f"malformed session payload: {exc.error_count()} error(s)", operation=operation)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class StoryRequest:
    """One user action: a fresh topic, or an interruption of the current story."""

    topic: str
    options: StoryOptions = field(default_factory=StoryOptions)
    interruption_text: Optional[str] = None

    @property
    def is_continuation(self) -> bool:
        return bool(self.interruption_text and self.interruption_text.strip())

    def to_payload(self) -> Dict[str, Any]:
        """Body for ``POST /session/adhoc``."""
        payload: Dict[str, Any] = {"storyControls": self.options.to_wire()}
        if self.is_continuation:
            payload["summary"] = self.interruption_text.strip()
        else:
            payload["topic"] = self.topic
        return payload
