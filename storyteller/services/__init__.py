"""
Server-side services

- Prompt composition (topic and story options to instruction text)
- Session backend gateway (one outbound call per session request)
"""

from storyteller.services.prompt_composer import ComposedInstructions, compose_instructions
from storyteller.services.session_gateway import SessionBackendGateway

__all__ = ["ComposedInstructions", "compose_instructions", "SessionBackendGateway"]
