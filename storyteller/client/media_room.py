"""
Media room boundary.

The real-time transport SDK is an external capability; this module only
describes the surface the session controller relies on:

- ``MediaRoomCapability.create_room()`` once the SDK is loaded
- ``MediaRoom.connect(url, token)`` / ``disconnect()`` / ``on`` / ``off``
- a local participant whose microphone can be toggled
- audio tracks that attach to and detach from a playback sink

Event registration is paired through ``RoomSubscription`` so every handler
registered on a room is released exactly once.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from storyteller.core.logging import get_logger
from storyteller.schemas.story import LOCAL_PARTICIPANT_NAME

logger = get_logger(__name__)

AGENT_AUDIO_SINK_ID = "agent-audio"


class RoomEvent(str, Enum):
    """Room events the controller subscribes to."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    PARTICIPANT_CONNECTED = "participantConnected"
    PARTICIPANT_DISCONNECTED = "participantDisconnected"
    TRACK_SUBSCRIBED = "trackSubscribed"
    TRACK_UNSUBSCRIBED = "trackUnsubscribed"
    CONNECTION_QUALITY_CHANGED = "connectionQualityChanged"


@dataclass(frozen=True)
class RemoteParticipant:
    """A participant seen in the room, other than ourselves."""

    identity: str

    @property
    def is_agent(self) -> bool:
        return self.identity != LOCAL_PARTICIPANT_NAME


class AudioSink(ABC):
    """Playback element a remote audio track is attached to."""

    sink_id: str

    @abstractmethod
    def play(self) -> None:
        """Start playback. May raise if the platform refuses autoplay."""


class AudioTrack(ABC):
    @abstractmethod
    def attach(self, sink: AudioSink) -> None:
        ...

    @abstractmethod
    def detach(self, sink: AudioSink) -> None:
        ...


class LocalParticipant(ABC):
    @abstractmethod
    async def set_microphone_enabled(self, enabled: bool) -> None:
        ...


class MediaRoom(ABC):
    """One connection to a media room."""

    local_participant: LocalParticipant

    @abstractmethod
    def on(self, event: RoomEvent, handler: Callable[..., Any]) -> None:
        ...

    @abstractmethod
    def off(self, event: RoomEvent, handler: Callable[..., Any]) -> None:
        ...

    @abstractmethod
    async def connect(self, server_url: str, token: str) -> None:
        """Join the room. Raises on rejection."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...


class MediaRoomCapability(ABC):
    """The loaded media SDK: a factory for rooms."""

    @abstractmethod
    def create_room(self) -> MediaRoom:
        ...


class RoomSubscription:
    """
    Paired acquire/release of room event handlers.

    ``subscribe()`` registers every handler once; ``release()`` unregisters
    them once. Both are idempotent so a connection never leaks handlers
    across reconnects.
    """

    def __init__(self, room: MediaRoom, handlers: Dict[RoomEvent, Callable[..., Any]]):
        self.room = room
        self._handlers: List[Tuple[RoomEvent, Callable[..., Any]]] = list(handlers.items())
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def subscribe(self) -> None:
        if self._active:
            return
        for event, handler in self._handlers:
            self.room.on(event, handler)
        self._active = True

    def release(self) -> None:
        if not self._active:
            return
        for event, handler in self._handlers:
            self.room.off(event, handler)
        self._active = False


class PlaybackSink(AudioSink):
    """Default sink: tracks what is attached, playback is left to the platform."""

    def __init__(self, sink_id: str):
        self.sink_id = sink_id
        self.autoplay = True
        self.play_count = 0

    def play(self) -> None:
        self.play_count += 1


class AudioSinkRegistry:
    """
    Process-wide playback sinks keyed by element identifier.

    Sinks are created lazily on first use and reused across reconnects.
    """

    def __init__(self, factory: Optional[Callable[[str], AudioSink]] = None):
        self._factory = factory or PlaybackSink
        self._sinks: Dict[str, AudioSink] = {}

    def get_or_create(self, sink_id: str = AGENT_AUDIO_SINK_ID) -> AudioSink:
        sink = self._sinks.get(sink_id)
        if sink is None:
            sink = self._factory(sink_id)
            self._sinks[sink_id] = sink
            logger.debug("audio_sink_created", sink_id=sink_id)
        return sink

    def get(self, sink_id: str = AGENT_AUDIO_SINK_ID) -> Optional[AudioSink]:
        return self._sinks.get(sink_id)

    def __len__(self) -> int:
        return len(self._sinks)


# Global registry shared by every controller in the process
audio_sinks = AudioSinkRegistry()
