from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import HTMLResponse, PlainTextResponse

from app.context import AppContext, get_context
from app.errors import AuthenticationError
from app.schemas.transcription import SessionResponse
from app.services.session import inject_nonce

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def index(context: AppContext = Depends(get_context)):
    """Serve the built frontend with a fresh single-use session nonce."""
    try:
        template = context.settings.frontend_index.read_text(encoding="utf-8")
    except OSError:
        return PlainTextResponse("Frontend not built. Run make build first.", status_code=404)
    return HTMLResponse(inject_nonce(template, context.nonces.issue()))


@router.get("/api/session", response_model=SessionResponse)
async def issue_session(
    x_session_nonce: str | None = Header(None),
    context: AppContext = Depends(get_context),
):
    if context.settings.require_nonce and not context.nonces.consume(x_session_nonce):
        raise AuthenticationError(
            "Valid session nonce required. Please refresh the page.",
            code="INVALID_NONCE",
            status_code=403,
        )
    logger.info("Issued session token")
    return SessionResponse(token=context.sessions.issue())
