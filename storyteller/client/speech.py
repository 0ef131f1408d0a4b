"""Bounded speech capture for story interruptions."""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from storyteller.core.exceptions import SpeechCaptureError
from storyteller.core.logging import get_session_logger

session_log = get_session_logger(__name__)

SPEECH_CAPTURE_TIMEOUT_SEC = 5.0
INTERRUPTION_PROMPT = "Type your story change or twist:"

TextPrompt = Callable[[str], Awaitable[Optional[str]]]


class SpeechRecognizer(ABC):
    """Single-utterance recognizer (language en-US, final results only)."""

    @abstractmethod
    async def listen(self) -> str:
        """Return the transcript of one utterance. Raises SpeechCaptureError."""

    @abstractmethod
    def stop(self) -> None:
        ...


async def capture_speech(
    recognizer: Optional[SpeechRecognizer],
    timeout: float = SPEECH_CAPTURE_TIMEOUT_SEC,
) -> str:
    """
    Listen for one utterance, bounded by ``timeout``.

    A timeout, a recognizer error, or no recognizer at all yield "" so the
    caller can fall back to typed input.
    """
    if recognizer is None:
        return ""

    try:
        transcript = await asyncio.wait_for(recognizer.listen(), timeout=timeout)
    except asyncio.TimeoutError:
        recognizer.stop()
        session_log.info("speech_capture_timeout", timeout_sec=timeout)
        return ""
    except SpeechCaptureError as exc:
        session_log.warning("speech_capture_failed", error=exc.message)
        return ""

    return transcript or ""
