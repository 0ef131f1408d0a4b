"""
Unit tests for the session lifecycle controller

Covers:
- Submit pipeline (request, capability wait, room connect)
- Teardown ordering when a new story supersedes a live one
- Failure paths (backend, capability, room connect)
- Room events (participants, audio tracks, remote disconnect, quality)
- Interruptions, microphone toggling and close()
"""

import asyncio

import pytest

from storyteller.client.capability import PollingCapabilityProvider
from storyteller.client.controller import SessionLifecycleController
from storyteller.client.media_room import AGENT_AUDIO_SINK_ID, AudioSinkRegistry, RoomEvent
from storyteller.client.speech import INTERRUPTION_PROMPT
from storyteller.client.states import SessionState
from storyteller.core.exceptions import (
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    InterruptionError,
    RoomConnectionError,
    SessionBusyError,
    UpstreamError,
    ValidationError,
)
from storyteller.schemas.story import StoryOptions, StorySetting
from tests.fakes import (
    FakeCapability,
    FakeCapabilityProvider,
    FakeParticipant,
    FakePublication,
    FakeSessionClient,
    FakeTrack,
)


class StubRecognizer:
    def __init__(self, transcript="", delay=0.0):
        self.transcript = transcript
        self.delay = delay
        self.stopped = False

    async def listen(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.transcript

    def stop(self):
        self.stopped = True


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def ended():
    return []


@pytest.fixture
def notices():
    return []


@pytest.fixture
def controller(session_client, capability_provider, sink_registry, snapshots, ended, notices):
    return SessionLifecycleController(
        session_client,
        capability_provider,
        sink_registry=sink_registry,
        on_change=snapshots.append,
        on_session_end=lambda: ended.append(True),
        notify=notices.append,
    )


async def connected(controller, topic="dragons", options=None):
    state = await controller.submit(topic, options)
    assert state is SessionState.CONNECTED
    return controller.room


class TestSubmit:
    """Tests for the submit pipeline."""

    @pytest.mark.asyncio
    async def test_happy_path(self, controller, session_client, capability, call_log, snapshots):
        options = StoryOptions(setting=StorySetting.SPACE)
        room = await connected(controller, "a moon mission", options)

        assert call_log == ["create_session", "await_ready", "connect"]
        assert room is capability.rooms[0]
        assert room.connect_calls == [("wss://media.test/room", "tok-123")]
        request = session_client.requests[0]
        assert request.topic == "a moon mission"
        assert request.options == options
        assert [s.state for s in snapshots] == [
            SessionState.REQUESTING,
            SessionState.CONNECTING,
            SessionState.CONNECTED,
        ]
        assert snapshots[-1].topic == "a moon mission"

    @pytest.mark.asyncio
    async def test_topic_is_trimmed(self, controller, session_client):
        await controller.submit("  dragons  ")
        assert session_client.requests[0].topic == "dragons"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic", ["", "   "])
    async def test_empty_topic_is_rejected_before_io(self, controller, call_log, topic):
        with pytest.raises(ValidationError):
            await controller.submit(topic)
        assert call_log == []
        assert controller.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_handlers_registered_once(self, controller):
        room = await connected(controller)
        assert room.on_calls == len(RoomEvent)
        assert room.handler_count == len(RoomEvent)

    @pytest.mark.asyncio
    async def test_connecting_until_room_reports_connected(self, call_log, session_client, sink_registry):
        capability = FakeCapability(call_log, auto_connect=False)
        controller = SessionLifecycleController(
            session_client, FakeCapabilityProvider(capability, call_log), sink_registry=sink_registry
        )

        assert await controller.submit("dragons") is SessionState.CONNECTING
        capability.rooms[0].emit(RoomEvent.CONNECTED)
        assert controller.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_join_public(self, controller, session_client, call_log):
        assert await controller.join_public() is SessionState.CONNECTED
        assert call_log == ["create_public_session", "await_ready", "connect"]
        assert controller.request is None


class TestSupersede:
    """A new story tears down the live room before anything else happens."""

    @pytest.mark.asyncio
    async def test_second_submit_disconnects_first_room_first(self, controller, capability, call_log):
        first = await connected(controller, "dragons")
        call_log.clear()

        await controller.submit("unicorns")

        assert call_log == ["disconnect", "create_session", "await_ready", "connect"]
        assert first.disconnect_calls == 1
        assert first.handler_count == 0
        assert first.off_calls == first.on_calls
        assert controller.room is capability.rooms[1]
        assert controller.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_old_room_events_are_ignored(self, controller, capability):
        first = await connected(controller, "dragons")
        handlers = {event: list(h) for event, h in first.handlers.items()}
        await controller.submit("unicorns")

        # A late event delivered through a captured handler must not touch the new session
        for handler in handlers[RoomEvent.DISCONNECTED]:
            handler()
        assert controller.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_submit_while_requesting_is_busy(self, call_log, capability_provider, sink_registry):
        release = asyncio.Event()

        class SlowClient(FakeSessionClient):
            async def create_session(self, request):
                await release.wait()
                return await super().create_session(request)

        controller = SessionLifecycleController(SlowClient(call_log), capability_provider, sink_registry=sink_registry)
        first = asyncio.ensure_future(controller.submit("dragons"))
        await asyncio.sleep(0)
        assert controller.state is SessionState.REQUESTING

        with pytest.raises(SessionBusyError):
            await controller.submit("unicorns")

        release.set()
        assert await first is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_concurrent_submits_open_one_room(self, call_log, session_client, sink_registry):
        capability = FakeCapability(call_log, disconnect_delay=0.01)
        controller = SessionLifecycleController(
            session_client, FakeCapabilityProvider(capability, call_log), sink_registry=sink_registry
        )
        first = await connected(controller, "dragons")

        results = await asyncio.gather(
            controller.submit("owls"), controller.submit("foxes"), return_exceptions=True
        )

        assert results[0] is SessionState.CONNECTED
        assert isinstance(results[1], SessionBusyError)
        assert len(capability.rooms) == 2
        assert first.disconnect_calls == 1
        assert capability.rooms[1].disconnect_calls == 0
        assert controller.room is capability.rooms[1]
        assert [r.topic for r in session_client.requests] == ["dragons", "owls"]


class TestFailures:
    """Failure paths end in FAILED with the error recorded."""

    @pytest.mark.asyncio
    async def test_backend_failure(self, call_log, capability_provider, sink_registry, snapshots):
        client = FakeSessionClient(call_log, error=UpstreamError(500, "down"))
        controller = SessionLifecycleController(
            client, capability_provider, sink_registry=sink_registry, on_change=snapshots.append
        )

        assert await controller.submit("dragons") is SessionState.FAILED
        assert isinstance(controller.failure, UpstreamError)
        assert call_log == ["create_session"]
        assert snapshots[-1].status_text == "createSession failed: 500"

    @pytest.mark.asyncio
    async def test_resubmit_after_failure(self, call_log, capability_provider, sink_registry):
        client = FakeSessionClient(call_log, error=UpstreamError(None, "offline"))
        controller = SessionLifecycleController(client, capability_provider, sink_registry=sink_registry)
        await controller.submit("dragons")

        client.error = None
        assert await controller.submit("dragons") is SessionState.CONNECTED
        assert controller.failure is None

    @pytest.mark.asyncio
    async def test_capability_timeout(self, call_log, capability, session_client, sink_registry):
        provider = FakeCapabilityProvider(capability, call_log, error=CapabilityTimeoutError(150, 0.1))
        controller = SessionLifecycleController(session_client, provider, sink_registry=sink_registry)

        assert await controller.submit("dragons") is SessionState.FAILED
        assert isinstance(controller.failure, CapabilityTimeoutError)
        assert "loading timeout" in controller.failure.message
        assert capability.rooms == []

    @pytest.mark.asyncio
    async def test_load_failed_signal_never_connects(self, call_log, capability, session_client, sink_registry, snapshots):
        """An explicit load failure is seen within one poll interval."""
        provider = PollingCapabilityProvider(lambda: None, poll_interval=0.01, max_attempts=150)
        controller = SessionLifecycleController(
            session_client, provider, sink_registry=sink_registry, on_change=snapshots.append
        )

        task = asyncio.ensure_future(controller.submit("dragons"))
        await asyncio.sleep(0.03)
        assert controller.state is SessionState.CONNECTING
        provider.mark_failed()

        state = await asyncio.wait_for(task, timeout=0.5)
        assert state is SessionState.FAILED
        assert isinstance(controller.failure, CapabilityUnavailableError)
        assert SessionState.CONNECTED not in [s.state for s in snapshots]
        assert capability.rooms == []

    @pytest.mark.asyncio
    async def test_capability_timeout_override(self, session_client, capability_provider, sink_registry):
        controller = SessionLifecycleController(
            session_client, capability_provider, sink_registry=sink_registry, capability_timeout=2.0
        )
        await controller.submit("dragons")
        assert capability_provider.timeouts == [2.0]

    @pytest.mark.asyncio
    async def test_room_connect_rejected(self, call_log, session_client, sink_registry, ended):
        capability = FakeCapability(call_log, connect_error=RuntimeError("token expired"))
        controller = SessionLifecycleController(
            session_client,
            FakeCapabilityProvider(capability, call_log),
            sink_registry=sink_registry,
            on_session_end=lambda: ended.append(True),
        )

        assert await controller.submit("dragons") is SessionState.FAILED
        assert isinstance(controller.failure, RoomConnectionError)
        assert "token expired" in controller.failure.message
        room = capability.rooms[0]
        assert room.handler_count == 0
        assert room.disconnect_calls == 1
        assert controller.room is None
        assert ended == []

    @pytest.mark.asyncio
    async def test_reset(self, call_log, capability_provider, sink_registry):
        client = FakeSessionClient(call_log, error=UpstreamError(500, "down"))
        controller = SessionLifecycleController(client, capability_provider, sink_registry=sink_registry)
        await controller.submit("dragons")

        controller.reset()
        assert controller.state is SessionState.IDLE
        assert controller.failure is None


class TestRoomEvents:
    """Tests for participant, track and connection events."""

    @pytest.mark.asyncio
    async def test_first_remote_participant_is_agent(self, controller, snapshots):
        room = await connected(controller)
        room.emit(RoomEvent.PARTICIPANT_CONNECTED, FakeParticipant("Web User"))
        room.emit(RoomEvent.PARTICIPANT_CONNECTED, FakeParticipant("agent-1"))
        room.emit(RoomEvent.PARTICIPANT_CONNECTED, FakeParticipant("agent-2"))

        assert controller.agent_participant.identity == "agent-1"
        assert snapshots[-1].agent_identity == "agent-1"
        assert snapshots[-1].status_text == "Telling your story..."

        room.emit(RoomEvent.PARTICIPANT_DISCONNECTED, FakeParticipant("agent-1"))
        assert controller.agent_participant is None
        assert snapshots[-1].status_text == "Waiting for storyteller..."

    @pytest.mark.asyncio
    async def test_audio_track_attached_once_and_played(self, controller, sink_registry):
        room = await connected(controller)
        track = FakeTrack()
        agent = FakeParticipant("agent-1")

        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("audio"), agent)
        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("audio"), agent)

        sink = sink_registry.get(AGENT_AUDIO_SINK_ID)
        assert track.attached == [sink]
        assert sink.play_count == 1
        assert len(sink_registry) == 1

    @pytest.mark.asyncio
    async def test_video_track_is_ignored(self, controller, sink_registry):
        room = await connected(controller)
        track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("video"), FakeParticipant("agent-1"))
        assert track.attached == []
        assert len(sink_registry) == 0

    @pytest.mark.asyncio
    async def test_track_unsubscribed_detaches(self, controller, sink_registry):
        room = await connected(controller)
        track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("audio"), FakeParticipant("agent-1"))
        room.emit(RoomEvent.TRACK_UNSUBSCRIBED, track, FakePublication("audio"), FakeParticipant("agent-1"))

        assert track.detached == [sink_registry.get(AGENT_AUDIO_SINK_ID)]

    @pytest.mark.asyncio
    async def test_playback_refusal_is_not_fatal(self, session_client, capability_provider):
        class RefusingSink:
            def __init__(self, sink_id):
                self.sink_id = sink_id

            def play(self):
                raise RuntimeError("autoplay blocked")

        controller = SessionLifecycleController(
            session_client, capability_provider, sink_registry=AudioSinkRegistry(factory=RefusingSink)
        )
        room = await connected(controller)
        track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("audio"), FakeParticipant("agent-1"))

        assert len(track.attached) == 1
        assert controller.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_sink_is_shared_across_sessions(self, controller, sink_registry):
        room = await connected(controller)
        first_track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, first_track, FakePublication("audio"), FakeParticipant("agent-1"))

        room = await connected(controller, "unicorns")
        second_track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, second_track, FakePublication("audio"), FakeParticipant("agent-1"))

        sink = sink_registry.get(AGENT_AUDIO_SINK_ID)
        assert first_track.detached == [sink]
        assert second_track.attached == [sink]
        assert len(sink_registry) == 1

    @pytest.mark.asyncio
    async def test_remote_disconnect(self, controller, ended, snapshots):
        room = await connected(controller)
        track = FakeTrack()
        room.emit(RoomEvent.TRACK_SUBSCRIBED, track, FakePublication("audio"), FakeParticipant("agent-1"))

        room.emit(RoomEvent.DISCONNECTED)

        assert controller.state is SessionState.DISCONNECTED
        assert ended == [True]
        assert room.handler_count == 0
        assert len(track.detached) == 1
        # The room already closed itself; nothing is owed
        assert room.disconnect_calls == 0
        assert snapshots[-1].status_text == "Not connected"

    @pytest.mark.asyncio
    async def test_connection_quality(self, controller, snapshots):
        room = await connected(controller)
        room.emit(RoomEvent.CONNECTION_QUALITY_CHANGED, "poor", FakeParticipant("agent-1"))
        assert snapshots[-1].connection_quality == "poor"


class TestDisconnectAndClose:
    @pytest.mark.asyncio
    async def test_user_disconnect(self, controller, ended):
        room = await connected(controller)

        await controller.disconnect()

        assert controller.state is SessionState.DISCONNECTED
        assert room.disconnect_calls == 1
        assert room.handler_count == 0
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_disconnect_when_idle_is_noop(self, controller, ended):
        await controller.disconnect()
        assert controller.state is SessionState.IDLE
        assert ended == []

    @pytest.mark.asyncio
    async def test_close_releases_room_once(self, controller):
        room = await connected(controller)

        await controller.close()
        await controller.close()

        assert room.disconnect_calls == 1
        assert room.handler_count == 0
        with pytest.raises(SessionBusyError):
            await controller.submit("dragons")

    @pytest.mark.asyncio
    async def test_close_cancels_capability_wait(self, call_log, session_client, capability, sink_registry):
        provider = PollingCapabilityProvider(lambda: None, poll_interval=0.01)
        controller = SessionLifecycleController(session_client, provider, sink_registry=sink_registry)

        task = asyncio.ensure_future(controller.submit("dragons"))
        await asyncio.sleep(0.02)
        assert controller.state is SessionState.CONNECTING

        await controller.close()
        assert await task is SessionState.DISCONNECTED
        assert capability.rooms == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ending", ["close", "disconnect"])
    async def test_session_ended_as_capability_resolves(self, ending, call_log, session_client, capability, sink_registry, ended):
        endings = []

        class EndingProvider(FakeCapabilityProvider):
            async def await_ready(self, timeout=None):
                endings.append(asyncio.ensure_future(getattr(controller, ending)()))
                return await super().await_ready(timeout)

        controller = SessionLifecycleController(
            session_client,
            EndingProvider(capability, call_log),
            sink_registry=sink_registry,
            on_session_end=lambda: ended.append(True),
        )

        assert await controller.submit("dragons") is SessionState.DISCONNECTED
        await asyncio.gather(*endings)

        assert capability.rooms == []
        assert "connect" not in call_log
        assert controller.state is SessionState.DISCONNECTED
        assert controller.room is None
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_async_context_manager(self, session_client, capability_provider, sink_registry):
        async with SessionLifecycleController(
            session_client, capability_provider, sink_registry=sink_registry
        ) as controller:
            room = await connected(controller)
        assert room.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_microphone_toggle(self, controller, snapshots):
        assert await controller.set_microphone_enabled(False) is False

        room = await connected(controller)
        assert await controller.set_microphone_enabled(False) is True
        assert room.local_participant.microphone_enabled is False
        assert snapshots[-1].microphone_enabled is False


class TestInterrupt:
    """Tests for interruptions during a live story."""

    @pytest.mark.asyncio
    async def test_spoken_interruption(self, session_client, capability_provider, sink_registry, notices, snapshots):
        controller = SessionLifecycleController(
            session_client,
            capability_provider,
            sink_registry=sink_registry,
            speech_recognizer=StubRecognizer("add a friendly dragon"),
            notify=notices.append,
            on_change=snapshots.append,
        )
        room = await connected(controller, "castles", StoryOptions(audience_age=12))

        outcome = await controller.interrupt()

        assert outcome.applied is True
        assert outcome.text == "add a friendly dragon"
        follow_up = session_client.requests[-1]
        assert follow_up.interruption_text == "add a friendly dragon"
        assert follow_up.topic == "castles"
        assert follow_up.options.audience_age == 12
        assert notices == ['Interruption applied: "add a friendly dragon". The story will continue with your change!']
        assert controller.state is SessionState.CONNECTED
        assert SessionState.INTERRUPTING in [s.state for s in snapshots]
        # The running room is untouched
        assert room.disconnect_calls == 0
        assert controller.room is room

    @pytest.mark.asyncio
    async def test_falls_back_to_text_prompt(self, session_client, capability_provider, sink_registry):
        prompts = []

        async def text_prompt(message):
            prompts.append(message)
            return "make it snow"

        controller = SessionLifecycleController(
            session_client,
            capability_provider,
            sink_registry=sink_registry,
            speech_recognizer=StubRecognizer("", delay=1.0),
            text_prompt=text_prompt,
            speech_timeout=0.01,
        )
        await connected(controller)

        outcome = await controller.interrupt()

        assert prompts == [INTERRUPTION_PROMPT]
        assert outcome.applied is True
        assert session_client.requests[-1].interruption_text == "make it snow"

    @pytest.mark.asyncio
    async def test_empty_input_sends_nothing(self, controller, session_client):
        await connected(controller)

        outcome = await controller.interrupt()

        assert outcome.applied is False
        assert len(session_client.requests) == 1
        assert controller.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_failed_interruption_is_non_fatal(self, call_log, capability_provider, sink_registry, notices):
        client = FakeSessionClient(call_log)
        controller = SessionLifecycleController(
            client,
            capability_provider,
            sink_registry=sink_registry,
            speech_recognizer=StubRecognizer("a twist"),
            notify=notices.append,
        )
        room = await connected(controller)
        client.error = UpstreamError(503, "busy")

        outcome = await controller.interrupt()

        assert outcome.applied is False
        assert isinstance(outcome.error, InterruptionError)
        assert notices == ["Failed to apply interruption. Please try again."]
        assert controller.state is SessionState.CONNECTED
        assert controller.failure is None
        assert room.disconnect_calls == 0

    @pytest.mark.asyncio
    async def test_interrupt_requires_live_story(self, controller):
        with pytest.raises(SessionBusyError):
            await controller.interrupt()

    @pytest.mark.asyncio
    async def test_room_lost_during_interruption(self, session_client, capability_provider, sink_registry):
        class DroppingRecognizer(StubRecognizer):
            async def listen(self):
                controller.room.emit(RoomEvent.DISCONNECTED)
                return "too late"

        controller = SessionLifecycleController(
            session_client,
            capability_provider,
            sink_registry=sink_registry,
            speech_recognizer=DroppingRecognizer(),
        )
        await connected(controller)

        await controller.interrupt()

        assert controller.state is SessionState.DISCONNECTED
