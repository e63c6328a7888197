import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.context import AppContext, build_context
from app.errors import RelayError
from app.infra.config import settings
from app.infra.logging import setup_logging
from app.routers import history, metadata, session, transcribe, ws_live

logger = logging.getLogger(__name__)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Serialise every relay error into the uniform `{error: {...}}` envelope."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


async def _sweep_nonces(context: AppContext) -> None:
    """Periodically drop nonces that were never traded for a token."""
    while True:
        await asyncio.sleep(context.settings.nonce_sweep_seconds)
        context.nonces.sweep()


def _log_banner(context: AppContext) -> None:
    cfg = context.settings
    nonce_note = " (nonce required)" if cfg.require_nonce else ""
    auth_note = " (auth required)" if cfg.require_session else ""
    logger.info("=" * 70)
    logger.info("Backend API running at http://%s:%s", cfg.host, cfg.port)
    logger.info("GET  /api/session%s", nonce_note)
    logger.info("POST /stt/transcribe%s", auth_note)
    logger.info("GET  /api/metadata")
    logger.info("WS   /ws/listen%s", auth_note)
    logger.info("=" * 70)
    if not cfg.deepgram_api_key:
        logger.warning(
            "Deepgram API key not found! Set DEEPGRAM_API_KEY in .env or dgKey in config.json. "
            "Get a key at https://console.deepgram.com"
        )


def create_app(context: AppContext | None = None) -> FastAPI:
    context = context or build_context(settings)
    setup_logging(context.settings.log_level)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        _log_banner(context)
        sweeper = asyncio.create_task(_sweep_nonces(context))
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="Deepgram Transcription Starter",
        version="0.1.0",
        summary="Browser ↔ Deepgram speech-to-text relay",
        lifespan=lifespan,
    )
    app.state.context = context

    app.include_router(session.router)
    app.include_router(transcribe.router)
    app.include_router(metadata.router)
    app.include_router(history.router)
    app.include_router(ws_live.router)

    # Same-origin behind the dev proxy; widen or narrow via CORS_ORIGINS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    app.add_exception_handler(RelayError, relay_error_handler)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


app = create_app()
