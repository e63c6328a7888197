from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends

from app.context import AppContext, get_context
from app.errors import ConfigurationError

logger = logging.getLogger(__name__)

router = APIRouter()


def read_meta(path: Path) -> dict[str, Any]:
    """Return the `[meta]` table of a deepgram.toml file."""
    try:
        with open(path, "rb") as fp:
            config = tomllib.load(fp)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.error("Error reading metadata: %s", exc)
        raise ConfigurationError(
            f"Failed to read metadata from {path.name}",
            code="METADATA_UNAVAILABLE",
        ) from exc

    meta = config.get("meta")
    if not isinstance(meta, dict):
        raise ConfigurationError(
            f"Missing [meta] section in {path.name}",
            code="METADATA_UNAVAILABLE",
        )
    return meta


@router.get("/api/metadata")
async def get_metadata(context: AppContext = Depends(get_context)):
    return read_meta(context.settings.metadata_path)
