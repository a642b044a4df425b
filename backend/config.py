"""
Server settings for the canvas studio.

Reads STUDIO_* variables from backend/.env (via python-dotenv) and the
process environment. Invalid numbers fall back to their defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parent / ".env"

DEFAULT_WORKSPACE_DIR = Path(__file__).resolve().parent.parent / ".workspace"
DEFAULT_FONT_CDN = (
    "https://cdn.jsdelivr.net/fontsource/fonts/"
    "{name}@latest/{subset}-{weight}-normal.{format}"
)


@dataclass(frozen=True)
class Settings:
    workspace_dir: Path = DEFAULT_WORKSPACE_DIR
    debounce_ms: int = 800
    viewport_padding: int = 20
    slow_script_ms: int = 2000
    font_cdn: str = DEFAULT_FONT_CDN
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%d is below %d, using %d", name, value, minimum, default)
        return default
    return value


def load_settings(env_path: Path | None = ENV_PATH) -> Settings:
    """Load settings from the .env file (if present) and the environment."""
    if env_path is not None and env_path.exists():
        load_dotenv(env_path, override=False)

    workspace_dir = os.environ.get("STUDIO_WORKSPACE_DIR")
    return Settings(
        workspace_dir=Path(workspace_dir).expanduser() if workspace_dir else DEFAULT_WORKSPACE_DIR,
        debounce_ms=_env_int("STUDIO_DEBOUNCE_MS", 800),
        viewport_padding=_env_int("STUDIO_VIEWPORT_PADDING", 20),
        slow_script_ms=_env_int("STUDIO_SLOW_SCRIPT_MS", 2000, minimum=1),
        font_cdn=os.environ.get("STUDIO_FONT_CDN") or DEFAULT_FONT_CDN,
        log_level=(os.environ.get("STUDIO_LOG_LEVEL") or "INFO").upper(),
        host=os.environ.get("STUDIO_HOST") or "127.0.0.1",
        port=_env_int("STUDIO_PORT", 8000, minimum=1),
    )
