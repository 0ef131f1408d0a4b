"""
Session Backend Gateway

Creates realtime-assistant sessions with the session backend (UpliftAI):

1. Ad-hoc sessions carrying composed story instructions (bearer secret held
   server side, never sent to the browser)
2. Public sessions for a pre-provisioned, publicly joinable assistant

Each request is a single outbound call. The gateway never retries; callers
decide whether to retry the whole request.
"""

import time
from typing import Any, Dict, Optional

import httpx

from storyteller.core.config import Settings, get_settings
from storyteller.core.exceptions import ConfigError, UpstreamError
from storyteller.core.logging import get_logger
from storyteller.core.metrics import session_requests_total, upstream_latency_seconds
from storyteller.schemas.story import LOCAL_PARTICIPANT_NAME, SessionCredential
from storyteller.services.prompt_composer import ComposedInstructions

logger = get_logger(__name__)


class SessionBackendGateway:
    """
    Outbound client for the session backend.

    Uses one persistent ``httpx.AsyncClient`` with keep-alive, created lazily
    and closed by ``aclose()`` at application shutdown. An injected client is
    used as-is and left for its owner to close.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.upliftai_api_url.rstrip("/")
        self._http_client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.upstream_timeout_sec,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                    keepalive_expiry=30.0,
                ),
            )
            self._owns_client = True
            logger.debug("Created persistent HTTP client for session backend")
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    def build_session_config(self, composed: ComposedInstructions) -> Dict[str, Any]:
        """Full ad-hoc session body. Provider choices come from settings only."""
        s = self.settings
        return {
            "participantName": LOCAL_PARTICIPANT_NAME,
            "config": {
                "session": {"ttl": s.session_ttl_sec},
                "agent": {
                    "instructions": composed.instruction_text,
                    "initialGreeting": True,
                    "greetingInstructions": composed.greeting_text,
                },
                "stt": {"default": {"provider": s.stt_provider, "model": s.stt_model, "language": s.stt_language}},
                "tts": {
                    "default": {
                        "provider": s.tts_provider,
                        "voiceId": s.tts_voice_id,
                        "outputFormat": s.tts_output_format,
                    }
                },
                "llm": {"default": {"provider": s.llm_provider, "model": s.llm_model}},
            },
        }

    async def _post(
        self,
        kind: str,
        operation: str,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
    ) -> SessionCredential:
        client = await self._get_http_client()
        start = time.time()
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            session_requests_total.labels(kind=kind, outcome="timeout").inc()
            logger.error("session_backend_timeout", operation=operation, error=str(e))
            raise UpstreamError(None, "session backend timed out", operation=operation) from e
        except httpx.HTTPError as e:
            session_requests_total.labels(kind=kind, outcome="transport_error").inc()
            logger.error("session_backend_http_error", operation=operation, error=str(e))
            raise UpstreamError(None, str(e), operation=operation) from e
        finally:
            upstream_latency_seconds.labels(kind=kind).observe(time.time() - start)

        if not response.is_success:
            session_requests_total.labels(kind=kind, outcome="rejected").inc()
            logger.error(
                "session_backend_rejected",
                operation=operation,
                status_code=response.status_code,
                response=response.text,
            )
            raise UpstreamError(response.status_code, response.text, operation=operation)

        try:
            payload = response.json()
        except ValueError as e:
            session_requests_total.labels(kind=kind, outcome="malformed").inc()
            raise UpstreamError(None, "session backend returned invalid JSON", operation=operation) from e

        try:
            credential = SessionCredential.from_payload(payload, operation=operation)
        except UpstreamError:
            session_requests_total.labels(kind=kind, outcome="malformed").inc()
            raise

        session_requests_total.labels(kind=kind, outcome="created").inc()
        logger.info(
            "session_created",
            operation=operation,
            room_name=credential.room_name,
            duration_ms=round((time.time() - start) * 1000, 2),
        )
        return credential

    async def request_session(self, composed: ComposedInstructions) -> SessionCredential:
        """
        Create an ad-hoc session carrying the composed instructions.

        Raises:
            ConfigError: No bearer secret configured (no call is made)
            UpstreamError: Backend answered non-2xx or could not be reached
        """
        if not self.settings.upliftai_api_key:
            raise ConfigError("UPLIFTAI_API_KEY not configured")

        return await self._post(
            "adhoc",
            "adhoc createSession",
            f"{self.base_url}/realtime-assistants/adhoc/createSession",
            self.build_session_config(composed),
            {
                "Authorization": f"Bearer {self.settings.upliftai_api_key}",
                "Content-Type": "application/json",
            },
        )

    async def request_public_session(self, assistant_id: Optional[str] = None) -> SessionCredential:
        """
        Create a public session for a pre-provisioned assistant. No bearer secret is sent.

        Raises:
            ConfigError: No assistant identifier configured (no call is made)
            UpstreamError: Backend answered non-2xx or could not be reached
        """
        assistant_id = assistant_id or self.settings.assistant_id
        if not assistant_id:
            raise ConfigError("ASSISTANT_ID not configured in .env")

        return await self._post(
            "public",
            "createPublicSession",
            f"{self.base_url}/realtime-assistants/{assistant_id}/createPublicSession",
            {"participantName": LOCAL_PARTICIPANT_NAME},
            {"Content-Type": "application/json"},
        )
