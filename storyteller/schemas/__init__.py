"""Pydantic models for story requests and session credentials."""

from storyteller.schemas.story import (
    AdhocSessionRequest,
    SessionCredential,
    StoryOptions,
    StoryRequest,
    StorySetting,
    StoryTone,
)

__all__ = [
    "AdhocSessionRequest",
    "SessionCredential",
    "StoryOptions",
    "StoryRequest",
    "StorySetting",
    "StoryTone",
]
