"""
Media-room capability providers.

The media SDK may load asynchronously. Instead of polling ambient global
flags, the controller is handed a ``CapabilityProvider`` and awaits
``await_ready()``, which either returns the loaded capability or raises:

- ``CapabilityTimeoutError`` when the polling ceiling is reached
- ``CapabilityUnavailableError`` when an explicit load failure was signalled
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

from storyteller.client.media_room import MediaRoomCapability
from storyteller.core.exceptions import CapabilityTimeoutError, CapabilityUnavailableError
from storyteller.core.logging import get_session_logger

session_log = get_session_logger(__name__)

POLL_INTERVAL_SEC = 0.1
MAX_POLL_ATTEMPTS = 150  # 15 seconds at the default interval
PROGRESS_LOG_EVERY = 20


class CapabilityProvider(ABC):
    @abstractmethod
    async def await_ready(self, timeout: Optional[float] = None) -> MediaRoomCapability:
        """Return the capability once usable, or raise a CapabilityError."""


class ReadyCapabilityProvider(CapabilityProvider):
    """A capability that is already loaded."""

    def __init__(self, capability: MediaRoomCapability):
        self.capability = capability

    async def await_ready(self, timeout: Optional[float] = None) -> MediaRoomCapability:
        return self.capability


class PollingCapabilityProvider(CapabilityProvider):
    """
    Polls a probe at a fixed interval until the capability appears.

    Args:
        probe: Returns the capability when loaded, else None
        poll_interval: Seconds between checks
        max_attempts: Polling ceiling; ``await_ready(timeout)`` overrides it

    ``mark_failed()`` is the explicit "load failed" signal; it is observed on
    the next poll, so a waiter fails within one interval.
    """

    def __init__(
        self,
        probe: Callable[[], Optional[MediaRoomCapability]],
        poll_interval: float = POLL_INTERVAL_SEC,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ):
        self._probe = probe
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._failure: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self._failure is not None

    def mark_failed(self, reason: str = "Media room capability failed to load - check network connection") -> None:
        self._failure = reason

    async def await_ready(self, timeout: Optional[float] = None) -> MediaRoomCapability:
        if self._failure is not None:
            raise CapabilityUnavailableError(self._failure)

        capability = self._probe()
        if capability is not None:
            session_log.debug("capability_immediately_available")
            return capability

        max_attempts = self.max_attempts
        if timeout is not None:
            max_attempts = max(1, int(round(timeout / self.poll_interval)))

        session_log.info("capability_wait_started", max_attempts=max_attempts, interval_ms=self.poll_interval * 1000)
        attempts = 0
        while True:
            await asyncio.sleep(self.poll_interval)
            attempts += 1

            if self._failure is not None:
                session_log.error("capability_load_failed", attempts=attempts, reason=self._failure)
                raise CapabilityUnavailableError(self._failure)

            capability = self._probe()
            if capability is not None:
                session_log.info("capability_ready", waited_ms=round(attempts * self.poll_interval * 1000))
                return capability

            if attempts >= max_attempts:
                session_log.error("capability_wait_timeout", attempts=attempts)
                raise CapabilityTimeoutError(attempts, self.poll_interval)

            if attempts % PROGRESS_LOG_EVERY == 0:
                session_log.debug("capability_still_waiting", attempts=attempts, max_attempts=max_attempts)
