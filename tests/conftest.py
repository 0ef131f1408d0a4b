"""
Pytest configuration and shared fixtures for the StoryTeller test suite.
"""

import os

# Settings are read once per process; these defaults keep the app importable
# without a local .env. Values already set by the caller/CI win.
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("UPLIFTAI_API_KEY", "test-api-key")
os.environ.setdefault("UPLIFTAI_API_URL", "https://upstream.test/v1")
os.environ.setdefault("SESSION_RATE_LIMIT", "1000/minute")
os.environ.setdefault("STATIC_DIR", "/nonexistent-storyteller-static")

from typing import List  # noqa: E402

import pytest  # noqa: E402

from storyteller.client.media_room import AudioSinkRegistry  # noqa: E402
from storyteller.core.config import Settings  # noqa: E402
from storyteller.core.logging import SessionLogLevel, set_session_log_level  # noqa: E402
from tests.fakes import UPSTREAM_URL, FakeCapability, FakeCapabilityProvider, FakeSessionClient  # noqa: E402


@pytest.fixture(autouse=True)
def _verbose_session_logging():
    """Exercise every session log level while tests run."""
    set_session_log_level(SessionLogLevel.DEBUG)
    yield
    set_session_log_level(SessionLogLevel.STANDARD)


@pytest.fixture
def make_settings():
    """Build Settings from explicit values, independent of the environment."""

    def _make(**overrides) -> Settings:
        values = {
            "UPLIFTAI_API_KEY": "test-api-key",
            "UPLIFTAI_API_URL": UPSTREAM_URL,
            "ASSISTANT_ID": "",
            "SESSION_RATE_LIMIT": "1000/minute",
            "STATIC_DIR": "/nonexistent-storyteller-static",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def call_log() -> List[str]:
    return []


@pytest.fixture
def capability(call_log) -> FakeCapability:
    return FakeCapability(call_log)


@pytest.fixture
def capability_provider(capability, call_log) -> FakeCapabilityProvider:
    return FakeCapabilityProvider(capability, call_log)


@pytest.fixture
def session_client(call_log) -> FakeSessionClient:
    return FakeSessionClient(call_log)


@pytest.fixture
def sink_registry() -> AudioSinkRegistry:
    return AudioSinkRegistry()
