from __future__ import annotations

from fastapi import Header, HTTPException, status

from buddysafe.config import get_settings
from buddysafe.safety.orchestrator import ValidationOrchestrator, create_orchestrator

_orchestrator: ValidationOrchestrator | None = None


def require_parent_auth(authorization: str | None = Header(None)) -> str:
    """Check the bearer token when PARENT_API_TOKEN is configured.

    Without a configured token the safety API is open, which suits local
    development and tests.
    """
    configured = get_settings().parent_api_token
    if not configured:
        return ""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token"
        )
    token = authorization.split(" ", 1)[1].strip()
    if token != configured:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token"
        )
    return token


def set_orchestrator(orchestrator: ValidationOrchestrator | None) -> None:
    """Install the orchestrator served by the API (None resets to default)."""
    global _orchestrator
    _orchestrator = orchestrator


def provide_orchestrator() -> ValidationOrchestrator:
    """Process-wide orchestrator, built from settings on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator()
    return _orchestrator
