# infra/config.py
"""Centralised configuration using python-dotenv (simple).

Loads variables from a local `.env` if present and exposes a `settings` object
with attribute access. The Deepgram key may also come from a `config.json`
(`{"dgKey": "..."}`) next to the working directory, mirroring the starter
apps this server replaces.
"""

from __future__ import annotations

import json
import os
import secrets
from pathlib import Path
from types import SimpleNamespace

from dotenv import load_dotenv


# Read .env into os.environ (no-op if file is missing)
load_dotenv()


def _env(key: str, default: str | None = None) -> str:
    """Tiny helper for getenv with default."""

    return os.getenv(key, default or "")


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _api_key_from_config_json(path: Path = Path("config.json")) -> str:
    """Fallback for the Deepgram key: `dgKey` in config.json."""
    try:
        with open(path, "r", encoding="utf-8") as fp:
            return str(json.load(fp).get("dgKey") or "")
    except (OSError, ValueError, AttributeError):
        return ""


def load_settings() -> SimpleNamespace:
    """Build a fresh settings namespace from the current environment."""

    session_secret = _env("SESSION_SECRET")

    return SimpleNamespace(
        # Core
        port=int(_env("PORT", "8081")),
        host=_env("HOST", "0.0.0.0"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()],

        # Vendor keys
        deepgram_api_key=_env("DEEPGRAM_API_KEY") or _api_key_from_config_json(),

        # Model names
        default_model=_env("DEFAULT_MODEL", "nova-3"),
        live_model=_env("LIVE_MODEL", "nova-3"),

        # Session auth. Without SESSION_SECRET tokens are signed with a
        # per-process secret and issued without a nonce.
        session_secret=session_secret or secrets.token_hex(32),
        require_nonce=bool(session_secret),
        require_session=_env_bool("REQUIRE_SESSION", True),
        nonce_ttl_seconds=int(_env("NONCE_TTL_SECONDS", "300")),
        nonce_sweep_seconds=float(_env("NONCE_SWEEP_SECONDS", "60")),
        token_ttl_seconds=int(_env("TOKEN_TTL_SECONDS", "3600")),

        # Files
        metadata_path=Path(_env("METADATA_PATH", "deepgram.toml")),
        frontend_index=Path(_env("FRONTEND_INDEX", "frontend/dist/index.html")),
        history_path=Path(_env("HISTORY_PATH", ".transcription_history.json")),
        history_max_entries=int(_env("HISTORY_MAX_ENTRIES", "50")),

        # Live relay
        live_queue_size=int(_env("LIVE_QUEUE_SIZE", "64")),
        live_max_reconnects=int(_env("LIVE_MAX_RECONNECTS", "5")),
        live_backoff_initial=float(_env("LIVE_BACKOFF_INITIAL", "0.5")),
        live_backoff_max=float(_env("LIVE_BACKOFF_MAX", "8.0")),
    )


# Single namespace exported for easy imports
settings = load_settings()


# Ensure the SDK can find the key when it reads the environment itself
if settings.deepgram_api_key:
    os.environ.setdefault("DEEPGRAM_API_KEY", settings.deepgram_api_key)
