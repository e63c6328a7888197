from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect  # type: ignore
from fastapi.websockets import WebSocketState

from app.context import AppContext
from app.errors import AuthenticationError, RelayError
from app.services.live import SERVER, LiveRelay, ReconnectPolicy

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Protocol message tags
# ---------------------------------------------------------------------------
CLIENT = {"PACKET": "packet-sent", "END": "end"}

# Close code sent when the session token is missing or invalid
CLOSE_UNAUTHORIZED = 4401


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------
async def _client_audio(websocket: WebSocket) -> AsyncIterator[bytes]:
    """Yield mic packets until the client sends `{type:'end'}` or goes away."""
    while True:
        pkt = await websocket.receive()
        if pkt.get("type") == "websocket.disconnect":
            logger.info("WebSocket disconnected by client")
            return
        if isinstance(pkt.get("bytes"), (bytes, bytearray)):
            yield bytes(pkt["bytes"])
            continue
        try:
            msg = json.loads(pkt.get("text") or "{}")
        except json.JSONDecodeError:
            continue
        if not isinstance(msg, dict):
            continue
        if msg.get("type") == CLIENT["END"]:
            return
        if msg.get("type") == CLIENT["PACKET"]:
            try:
                yield base64.b64decode(msg.get("data") or "", validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Dropping packet with invalid base64 payload")


async def _send_error(websocket: WebSocket, detail: str) -> None:
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.send_json({"type": SERVER["ERROR"], "detail": detail})


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


@router.websocket("/ws/listen")
async def live_transcription(
    websocket: WebSocket,
    token: str | None = Query(None, description="Session token from /api/session"),
):
    """Mic audio in, `print-transcript` events out."""

    context: AppContext = websocket.app.state.context

    if context.settings.require_session:
        try:
            context.sessions.verify(token or "")
        except AuthenticationError as exc:
            await websocket.close(code=CLOSE_UNAUTHORIZED, reason=exc.message)
            return

    await websocket.accept()
    settings = context.settings
    relay = LiveRelay(
        context.live_connector,
        queue_size=settings.live_queue_size,
        policy=ReconnectPolicy(
            max_attempts=settings.live_max_reconnects,
            initial_delay=settings.live_backoff_initial,
            max_delay=settings.live_backoff_max,
        ),
    )

    try:
        await relay.run(_client_audio(websocket), websocket.send_json)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected by client")
    except RelayError as exc:
        logger.error("Live relay failed: %s", exc.message)
        await _send_error(websocket, exc.message)
    except Exception as exc:  # pragma: no cover
        logger.exception("Unhandled error in live relay: %s", exc)
    finally:
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("Live relay finished after %d reconnects", relay.reconnects)
