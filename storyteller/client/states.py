from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from storyteller.core.exceptions import StoryTellerError


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INTERRUPTING = "interrupting"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


S = SessionState

# Legal transitions. Anything else is a controller bug.
TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    S.IDLE: frozenset({S.REQUESTING}),
    S.REQUESTING: frozenset({S.CONNECTING, S.FAILED, S.DISCONNECTED}),
    S.CONNECTING: frozenset({S.CONNECTED, S.DISCONNECTED, S.FAILED}),
    S.CONNECTED: frozenset({S.INTERRUPTING, S.REQUESTING, S.DISCONNECTED, S.FAILED}),
    S.INTERRUPTING: frozenset({S.CONNECTED, S.DISCONNECTED, S.FAILED}),
    S.DISCONNECTED: frozenset({S.REQUESTING, S.IDLE}),
    S.FAILED: frozenset({S.REQUESTING, S.IDLE}),
}

# States from which a new story request may start
SUBMITTABLE: FrozenSet[SessionState] = frozenset({S.IDLE, S.CONNECTED, S.DISCONNECTED, S.FAILED})

# States that hold (or are acquiring) a media-room connection
LIVE: FrozenSet[SessionState] = frozenset({S.CONNECTING, S.CONNECTED, S.INTERRUPTING})


class IllegalTransitionError(RuntimeError):
    def __init__(self, from_state: SessionState, to_state: SessionState):
        super().__init__(f"illegal session transition {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


@dataclass(frozen=True)
class SessionSnapshot:
    """What a view needs to render the current session, passed explicitly."""

    state: SessionState
    failure: Optional[StoryTellerError] = None
    topic: Optional[str] = None
    agent_identity: Optional[str] = None
    participants: Tuple[str, ...] = ()
    connection_quality: Optional[str] = None
    microphone_enabled: bool = True

    @property
    def is_connected(self) -> bool:
        return self.state in (S.CONNECTED, S.INTERRUPTING)

    @property
    def status_text(self) -> str:
        if self.state == S.FAILED and self.failure is not None:
            return self.failure.message
        if not self.is_connected:
            return "Connecting to storyteller..." if self.state in (S.REQUESTING, S.CONNECTING) else "Not connected"
        if self.agent_identity is None:
            return "Waiting for storyteller..."
        if self.state == S.INTERRUPTING:
            return "Listening..."
        return "Telling your story..."
