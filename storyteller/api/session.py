"""
Session creation endpoints consumed by the story client.

- POST /session/adhoc  - compose instructions from a topic (or interruption
  summary) and story controls, then create an ad-hoc backend session
- POST /session/public - create a session for the configured public assistant

Both answer with the backend's payload passed through untouched
(``{token, wsUrl, roomName, ...}``) or ``{error}`` with a non-2xx status.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from storyteller.core.config import get_settings
from storyteller.core.exceptions import ValidationError
from storyteller.core.logging import get_logger
from storyteller.schemas.story import AdhocSessionRequest, StoryOptions
from storyteller.services.prompt_composer import compose_instructions
from storyteller.services.session_gateway import SessionBackendGateway

router = APIRouter(prefix="/session", tags=["session"])
logger = get_logger(__name__)
limiter = Limiter(key_func=get_remote_address)


def _session_rate_limit() -> str:
    return get_settings().session_rate_limit


def get_gateway(request: Request) -> SessionBackendGateway:
    """Gateway owned by the application (created at startup)."""
    return request.app.state.gateway


@router.post("/adhoc")
@limiter.limit(_session_rate_limit)
async def create_adhoc_session(
    request: Request,
    payload: Optional[AdhocSessionRequest] = None,
    gateway: SessionBackendGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    """
    Create an ad-hoc session with dynamic instructions.

    ``summary`` present → continue the running story with that input;
    otherwise tell a new story about ``topic``. Missing ``storyControls``
    means all-default story options.
    """
    payload = payload or AdhocSessionRequest()
    topic = (payload.topic or "").strip()
    summary = (payload.summary or "").strip()
    if not topic and not summary:
        raise ValidationError("Please provide a topic or a summary")

    options = payload.story_controls or StoryOptions()
    composed = compose_instructions(topic, options, interruption_text=summary or None)

    logger.info(
        "adhoc_session_requested",
        continuation=bool(summary),
        setting=options.setting.value,
        tone=options.tone.value,
        audience_age=options.audience_age,
    )
    credential = await gateway.request_session(composed)
    return credential.to_wire()


@router.post("/public")
@limiter.limit(_session_rate_limit)
async def create_public_session(
    request: Request,
    gateway: SessionBackendGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    """
    Create a public session for the configured, publicly joinable assistant.

    No Authorization header is sent upstream. Answers 400 when no assistant
    identifier is configured.
    """
    credential = await gateway.request_public_session()
    return credential.to_wire()
