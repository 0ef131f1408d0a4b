"""
Session Lifecycle Controller

Owns the path from a user's story request to a live, cancellable audio
session:

    IDLE -> REQUESTING -> CONNECTING -> CONNECTED <-> INTERRUPTING
                                          |
                               DISCONNECTED / FAILED

- REQUESTING: asks the StoryTeller server for a session credential
- CONNECTING: waits for the media-room capability, then joins the room
- CONNECTED: the room reported "connected"; the agent's audio plays
- INTERRUPTING: captures a spoken (or typed) aside and sends it as a
  continuation request; the running audio session is left untouched

Only ``_transition`` changes state, and only along ``TRANSITIONS``. The
media-room connection is owned here and released in ``_teardown`` /
``_release_room``, the single place where it is closed. A new request tears
down the previous room before its backend call or capability wait begins,
so two sessions never attach to the shared playback sink at once.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from storyteller.client.capability import CapabilityProvider
from storyteller.client.media_room import (
    AGENT_AUDIO_SINK_ID,
    AudioSink,
    AudioSinkRegistry,
    MediaRoom,
    RemoteParticipant,
    RoomEvent,
    RoomSubscription,
    audio_sinks,
)
from storyteller.client.session_api import StorySessionClient
from storyteller.client.speech import (
    INTERRUPTION_PROMPT,
    SPEECH_CAPTURE_TIMEOUT_SEC,
    SpeechRecognizer,
    TextPrompt,
    capture_speech,
)
from storyteller.client.states import (
    LIVE,
    SUBMITTABLE,
    TRANSITIONS,
    IllegalTransitionError,
    SessionSnapshot,
    SessionState,
)
from storyteller.core.exceptions import (
    CapabilityError,
    InterruptionError,
    RoomConnectionError,
    SessionBusyError,
    StoryTellerError,
    UpstreamError,
    ValidationError,
)
from storyteller.core.logging import get_session_logger
from storyteller.schemas.story import SessionCredential, StoryOptions, StoryRequest

session_log = get_session_logger(__name__)


@dataclass(frozen=True)
class InterruptionOutcome:
    """Result of one interruption attempt."""

    applied: bool
    text: str = ""
    error: Optional[InterruptionError] = None


class SessionLifecycleController:
    """
    Drives one story session at a time against an injected session client
    and media-room capability provider.

    Args:
        session_client: Talks to ``/session/adhoc`` and ``/session/public``
        capability_provider: Yields the media-room capability once loaded
        sink_registry: Playback sinks (defaults to the process-wide registry)
        speech_recognizer: Used for interruptions; None skips straight to typing
        text_prompt: Async prompt used when no speech was captured
        on_change: Receives a SessionSnapshot after every change
        on_session_end: Called once when a live session disconnects
        notify: Receives user-facing notices (interruption results)
        capability_timeout: Overrides the provider's polling ceiling (seconds)
        speech_timeout: Bound on speech capture (seconds)
    """

    def __init__(
        self,
        session_client: StorySessionClient,
        capability_provider: CapabilityProvider,
        *,
        sink_registry: Optional[AudioSinkRegistry] = None,
        speech_recognizer: Optional[SpeechRecognizer] = None,
        text_prompt: Optional[TextPrompt] = None,
        on_change: Optional[Callable[[SessionSnapshot], None]] = None,
        on_session_end: Optional[Callable[[], None]] = None,
        notify: Optional[Callable[[str], None]] = None,
        capability_timeout: Optional[float] = None,
        speech_timeout: float = SPEECH_CAPTURE_TIMEOUT_SEC,
    ):
        self._client = session_client
        self._capability = capability_provider
        self._sinks = audio_sinks if sink_registry is None else sink_registry
        self._speech = speech_recognizer
        self._text_prompt = text_prompt
        self._on_change = on_change
        self._on_session_end = on_session_end
        self._notify_fn = notify
        self._capability_timeout = capability_timeout
        self._speech_timeout = speech_timeout

        self._state = SessionState.IDLE
        self._failure: Optional[StoryTellerError] = None
        self._request: Optional[StoryRequest] = None
        self._session_id: Optional[str] = None

        # Media-room ownership
        self._room: Optional[MediaRoom] = None
        self._subscription: Optional[RoomSubscription] = None
        self._room_live = False  # disconnect() still owed to the room
        self._generation = 0  # bumps per room; stale room events are ignored
        self._capability_wait: Optional[asyncio.Future] = None
        self._connected_at: Optional[float] = None
        self._closed = False

        # Derived from room events
        self._participants: Dict[str, RemoteParticipant] = {}
        self._agent: Optional[RemoteParticipant] = None
        self._attached: Dict[int, Tuple[Any, AudioSink]] = {}
        self._quality: Optional[str] = None
        self._microphone_enabled = True

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> Optional[StoryTellerError]:
        return self._failure

    @property
    def request(self) -> Optional[StoryRequest]:
        return self._request

    @property
    def agent_participant(self) -> Optional[RemoteParticipant]:
        return self._agent

    @property
    def participants(self) -> Tuple[RemoteParticipant, ...]:
        return tuple(self._participants.values())

    @property
    def room(self) -> Optional[MediaRoom]:
        return self._room

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            failure=self._failure,
            topic=self._request.topic if self._request else None,
            agent_identity=self._agent.identity if self._agent else None,
            participants=tuple(self._participants),
            connection_quality=self._quality,
            microphone_enabled=self._microphone_enabled,
        )

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def submit(self, topic: str, options: Optional[StoryOptions] = None) -> SessionState:
        """
        Start a new story about ``topic``.

        Raises:
            ValidationError: Empty or whitespace topic (nothing else happens)
            SessionBusyError: A request, connect or interruption is in flight

        Backend and media failures do not raise; they leave the controller in
        FAILED with ``failure`` set, from where the user can submit again.
        """
        if not topic or not topic.strip():
            raise ValidationError("Please enter a topic first")
        request = StoryRequest(topic=topic.strip(), options=options or StoryOptions())
        return await self._start(request, lambda: self._client.create_session(request))

    async def join_public(self) -> SessionState:
        """Join the pre-provisioned public assistant through the same pipeline."""
        return await self._start(None, self._client.create_public_session)

    async def interrupt(self) -> InterruptionOutcome:
        """
        Add a twist to the running story.

        Speech is captured first (bounded); with no transcript the text prompt
        is asked instead. Non-empty text is sent as a continuation request.
        Failure is reported through the outcome and a notice; the audio
        session keeps playing either way.
        """
        if self._state is not SessionState.CONNECTED:
            raise SessionBusyError(f"Cannot interrupt while {self._state.value}")

        self._transition(SessionState.INTERRUPTING, trigger="interrupt")
        try:
            text = await capture_speech(self._speech, timeout=self._speech_timeout)
            if not text.strip() and self._text_prompt is not None:
                text = await self._text_prompt(INTERRUPTION_PROMPT) or ""
            text = text.strip()
            if not text:
                session_log.info("interruption_skipped", session_id=self._session_id)
                return InterruptionOutcome(applied=False)

            base = self._request
            request = StoryRequest(
                topic=base.topic if base else "",
                options=base.options if base else StoryOptions(),
                interruption_text=text,
            )
            try:
                await self._client.create_session(request)
            except UpstreamError as exc:
                error = InterruptionError(
                    "Failed to apply interruption. Please try again.",
                    details={"cause": exc.message},
                )
                session_log.warning("interruption_failed", session_id=self._session_id, error=exc.message)
                self._notify(error.message)
                return InterruptionOutcome(applied=False, text=text, error=error)

            session_log.info("interruption_applied", session_id=self._session_id, length=len(text))
            self._notify(f'Interruption applied: "{text}". The story will continue with your change!')
            return InterruptionOutcome(applied=True, text=text)
        finally:
            # The room may have gone away meanwhile; only then do we stay put
            if self._state is SessionState.INTERRUPTING:
                self._transition(SessionState.CONNECTED, trigger="interrupt_done")

    async def disconnect(self) -> None:
        """End the live session (user action). No-op when nothing is live."""
        if self._state not in LIVE:
            return
        await self._end_session("user_disconnect")

    async def set_microphone_enabled(self, enabled: bool) -> bool:
        """Toggle the local microphone. Returns False when there is no live room."""
        if self._room is None or not self._room_live:
            return False
        await self._room.local_participant.set_microphone_enabled(enabled)
        self._microphone_enabled = enabled
        self._emit()
        return True

    def reset(self) -> None:
        """Discard a finished or failed session and return to IDLE."""
        if self._state in (SessionState.FAILED, SessionState.DISCONNECTED):
            self._failure = None
            self._request = None
            self._transition(SessionState.IDLE, trigger="reset")

    async def close(self) -> None:
        """Owning scope ended: cancel any capability wait and release the room."""
        if self._closed:
            return
        self._closed = True
        if self._state in LIVE:
            await self._end_session("closed")
        else:
            await self._teardown("closed")

    async def __aenter__(self) -> "SessionLifecycleController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _start(
        self,
        request: Optional[StoryRequest],
        fetch_credential: Callable[[], Awaitable[SessionCredential]],
    ) -> SessionState:
        if self._closed:
            raise SessionBusyError("Session controller is closed")
        if self._state not in SUBMITTABLE:
            raise SessionBusyError(f"Cannot start a new story while {self._state.value}")

        # Claimed before the first await; a concurrent submit sees REQUESTING
        previous = self._release_room("superseded")
        if self._connected_at is not None:
            session_log.session_end(
                session_id=self._session_id,
                duration_ms=(time.time() - self._connected_at) * 1000,
                status="superseded",
            )
            self._connected_at = None

        self._request = request
        self._failure = None
        self._session_id = uuid.uuid4().hex[:12]
        self._transition(SessionState.REQUESTING, trigger="submit")
        # The previous room is told to close before the new session is requested
        await self._disconnect_room(previous)

        start = time.time()
        try:
            credential = await fetch_credential()
        except UpstreamError as exc:
            return self._fail(exc, trigger="session_request_failed")
        session_log.latency("session_request", (time.time() - start) * 1000, session_id=self._session_id)

        if self._closed:
            # Unmounted while the request was in flight; the credential is dropped unused
            self._transition(SessionState.DISCONNECTED, trigger="closed")
            return self._state

        self._transition(SessionState.CONNECTING, trigger="credential_received", room_name=credential.room_name)
        return await self._open_room(credential)

    async def _open_room(self, credential: SessionCredential) -> SessionState:
        wait = asyncio.ensure_future(self._capability.await_ready(self._capability_timeout))
        self._capability_wait = wait
        try:
            capability = await wait
        except asyncio.CancelledError:
            if wait.cancelled() and self._state is not SessionState.CONNECTING:
                # Cancelled by disconnect()/close(), which already settled the state
                return self._state
            raise
        except CapabilityError as exc:
            return self._fail(exc, trigger="capability_unavailable")
        finally:
            self._capability_wait = None

        if self._closed or self._state is not SessionState.CONNECTING:
            # Ended while the capability wait was resuming
            return self._state

        room = capability.create_room()
        self._generation += 1
        self._room = room
        self._subscription = RoomSubscription(room, self._room_handlers(self._generation))
        self._subscription.subscribe()
        self._room_live = True
        generation = self._generation

        try:
            await room.connect(credential.ws_url, credential.token)
        except Exception as exc:  # SDK rejection types are not part of its contract
            if generation != self._generation:
                return self._state
            error = RoomConnectionError(f"Failed to connect room: {exc}")
            await self._teardown("connect_failed")
            return self._fail(error, trigger="room_connect_failed")

        return self._state

    def _fail(self, error: StoryTellerError, trigger: str) -> SessionState:
        self._failure = error
        session_log.error(
            "story_session_failed",
            session_id=self._session_id,
            error_code=error.code,
            recoverable=error.recoverable,
            error=error.message,
        )
        self._transition(SessionState.FAILED, trigger=trigger)
        return self._state

    async def _end_session(self, reason: str) -> None:
        self._cancel_capability_wait()
        await self._teardown(reason)
        self._finish_session(reason)

    def _finish_session(self, reason: str) -> None:
        self._transition(SessionState.DISCONNECTED, trigger=reason)
        if self._connected_at is not None:
            session_log.session_end(
                session_id=self._session_id,
                duration_ms=(time.time() - self._connected_at) * 1000,
                status=reason,
            )
            self._connected_at = None
        if self._on_session_end is not None:
            self._on_session_end()

    def _cancel_capability_wait(self) -> None:
        if self._capability_wait is not None and not self._capability_wait.done():
            self._capability_wait.cancel()

    async def _teardown(self, reason: str) -> None:
        await self._disconnect_room(self._release_room(reason))

    async def _disconnect_room(self, room: Optional[MediaRoom]) -> None:
        if room is None:
            return
        try:
            await room.disconnect()
        except Exception as exc:  # a failing SDK must not block the next session
            session_log.warning("room_disconnect_failed", session_id=self._session_id, error=str(exc))

    def _release_room(self, reason: str) -> Optional[MediaRoom]:
        """Drop every tie to the current room. Returns it if disconnect() is still owed."""
        room = self._room
        if room is None:
            return None

        if self._subscription is not None:
            self._subscription.release()
        for track, sink in self._attached.values():
            track.detach(sink)
        self._attached.clear()
        self._participants.clear()
        self._agent = None
        self._quality = None

        owed = self._room_live
        self._room = None
        self._subscription = None
        self._room_live = False
        self._generation += 1
        session_log.debug("room_released", session_id=self._session_id, reason=reason, disconnect=owed)
        return room if owed else None

    def _transition(self, to_state: SessionState, trigger: str, **kwargs) -> None:
        from_state = self._state
        if to_state not in TRANSITIONS[from_state]:
            raise IllegalTransitionError(from_state, to_state)
        self._state = to_state
        session_log.state_change(
            session_id=self._session_id or "-",
            from_state=from_state.value,
            to_state=to_state.value,
            trigger=trigger,
            **kwargs,
        )
        self._emit()

    def _emit(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

    def _notify(self, message: str) -> None:
        if self._notify_fn is not None:
            self._notify_fn(message)

    # ------------------------------------------------------------------
    # Room events
    # ------------------------------------------------------------------

    def _room_handlers(self, generation: int) -> Dict[RoomEvent, Callable[..., None]]:
        def current(fn):
            @wraps(fn)
            def handler(*args):
                if generation != self._generation:
                    return
                fn(*args)

            return handler

        return {
            RoomEvent.CONNECTED: current(self._on_connected),
            RoomEvent.DISCONNECTED: current(self._on_disconnected),
            RoomEvent.PARTICIPANT_CONNECTED: current(self._on_participant_connected),
            RoomEvent.PARTICIPANT_DISCONNECTED: current(self._on_participant_disconnected),
            RoomEvent.TRACK_SUBSCRIBED: current(self._on_track_subscribed),
            RoomEvent.TRACK_UNSUBSCRIBED: current(self._on_track_unsubscribed),
            RoomEvent.CONNECTION_QUALITY_CHANGED: current(self._on_quality_changed),
        }

    def _on_connected(self, *_args) -> None:
        if self._state is not SessionState.CONNECTING:
            return
        self._connected_at = time.time()
        self._transition(SessionState.CONNECTED, trigger="room_connected")
        session_log.session_start(session_id=self._session_id)

    def _on_disconnected(self, *_args) -> None:
        # The room is already closed on the far side; nothing more is owed
        self._room_live = False
        if self._state not in LIVE:
            return
        self._cancel_capability_wait()
        self._release_room("room_disconnected")
        self._finish_session("room_disconnected")

    def _on_participant_connected(self, participant: Any, *_args) -> None:
        remote = RemoteParticipant(identity=participant.identity)
        self._participants[remote.identity] = remote
        if remote.is_agent and self._agent is None:
            self._agent = remote
        session_log.debug("participant_connected", session_id=self._session_id, identity=remote.identity)
        self._emit()

    def _on_participant_disconnected(self, participant: Any, *_args) -> None:
        self._participants.pop(participant.identity, None)
        if self._agent is not None and self._agent.identity == participant.identity:
            self._agent = None
        session_log.debug("participant_disconnected", session_id=self._session_id, identity=participant.identity)
        self._emit()

    def _on_track_subscribed(self, track: Any, publication: Any, participant: Any = None, *_args) -> None:
        if track is None or getattr(publication, "kind", None) != "audio":
            return
        key = id(track)
        if key in self._attached:
            return

        sink = self._sinks.get_or_create(AGENT_AUDIO_SINK_ID)
        try:
            track.attach(sink)
        except Exception as exc:  # SDK attach failures leave the session usable
            session_log.error("audio_attach_failed", session_id=self._session_id, error=str(exc))
            return
        self._attached[key] = (track, sink)
        session_log.debug(
            "audio_track_attached",
            session_id=self._session_id,
            identity=getattr(participant, "identity", None),
        )

        try:
            sink.play()
        except Exception as exc:  # autoplay refusal; the user can enable audio by hand
            session_log.warning("audio_playback_blocked", session_id=self._session_id, error=str(exc))

    def _on_track_unsubscribed(self, track: Any, *_args) -> None:
        entry = self._attached.pop(id(track), None)
        if entry is None:
            return
        attached_track, sink = entry
        attached_track.detach(sink)
        session_log.debug("audio_track_detached", session_id=self._session_id)

    def _on_quality_changed(self, quality: Any, participant: Any = None, *_args) -> None:
        self._quality = getattr(quality, "value", None) or str(quality)
        session_log.debug(
            "connection_quality",
            session_id=self._session_id,
            quality=self._quality,
            identity=getattr(participant, "identity", None),
        )
        self._emit()
