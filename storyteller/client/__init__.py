"""
Story session client

Drives a story session from the user's request to a live media room:
- StorySessionClient: HTTP adapter for the StoryTeller server
- SessionLifecycleController: state machine, room ownership and interruptions
- Capability providers, media-room protocols and speech capture
- ErrorBoundary: last-resort fault view for the render path
"""

from storyteller.client.boundary import ErrorBoundary, FaultView
from storyteller.client.capability import CapabilityProvider, PollingCapabilityProvider, ReadyCapabilityProvider
from storyteller.client.controller import InterruptionOutcome, SessionLifecycleController
from storyteller.client.session_api import StorySessionClient
from storyteller.client.states import SessionSnapshot, SessionState

__all__ = [
    "CapabilityProvider",
    "ErrorBoundary",
    "FaultView",
    "InterruptionOutcome",
    "PollingCapabilityProvider",
    "ReadyCapabilityProvider",
    "SessionLifecycleController",
    "SessionSnapshot",
    "SessionState",
    "StorySessionClient",
]
