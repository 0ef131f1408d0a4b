"""HTTP adapter the story client uses to ask the StoryTeller server for sessions."""

from typing import Any, Dict, Optional

import httpx

from storyteller.core.exceptions import UpstreamError
from storyteller.core.logging import get_logger
from storyteller.schemas.story import SessionCredential, StoryRequest

logger = get_logger(__name__)


class StorySessionClient:
    """
    Calls ``/session/adhoc`` and ``/session/public`` on the StoryTeller server.

    Pass either ``base_url`` or a ready ``httpx.AsyncClient`` (whose base URL
    points at the server).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> SessionCredential:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            logger.error("session_request_transport_error", path=path, error=str(exc))
            raise UpstreamError(None, str(exc), operation=operation) from exc

        if not response.is_success:
            logger.error("session_request_failed", path=path, status_code=response.status_code)
            raise UpstreamError(response.status_code, response.text, operation=operation)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(None, "server returned invalid JSON", operation=operation) from exc
        return SessionCredential.from_payload(payload, operation=operation)

    async def create_session(self, request: StoryRequest) -> SessionCredential:
        """Request a session for a fresh story or an interruption of the current one."""
        return await self._post("/session/adhoc", request.to_payload(), "adhoc session request")

    async def create_public_session(self) -> SessionCredential:
        return await self._post("/session/public", {}, "public session request")
