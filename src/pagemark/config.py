"""Configuration management via .env file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from pagemark.parsers.encoding import DEFAULT_ENCODINGS, DEFAULT_REPLACEMENT_THRESHOLD

log = logging.getLogger(__name__)


def _xdg_data_home() -> Path:
    return Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))


def _xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


@dataclass
class AppConfig:
    # Paths
    data_dir: Path = field(default_factory=lambda: _xdg_data_home() / "pagemark")
    config_dir: Path = field(default_factory=lambda: _xdg_config_home() / "pagemark")
    db_path: Path = field(init=False)
    log_path: Path = field(init=False)
    log_level: str = "DEBUG"

    # Reading
    progress_debounce_seconds: float = 0.5
    chapter_throttle_seconds: float = 0.2

    # Text import
    text_encodings: tuple[str, ...] = DEFAULT_ENCODINGS
    replacement_threshold: float = DEFAULT_REPLACEMENT_THRESHOLD

    def __post_init__(self) -> None:
        self.db_path = self.data_dir / "pagemark.db"
        self.log_path = self.data_dir / "pagemark.log"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def load_config(env_path: Optional[Path] = None) -> AppConfig:
    """Load config from .env file. Searches CWD then config dir."""
    search_paths = [
        env_path,
        Path.cwd() / ".env",
        _xdg_config_home() / "pagemark" / ".env",
        Path.home() / ".env",
    ]
    for p in search_paths:
        if p and p.exists():
            load_dotenv(p)
            break

    kwargs: dict = {}

    data_dir = os.getenv("PAGEMARK_DATA_DIR")
    if data_dir:
        kwargs["data_dir"] = Path(data_dir).expanduser()

    encodings = os.getenv("PAGEMARK_TEXT_ENCODINGS")
    if encodings:
        parsed = tuple(e.strip() for e in encodings.split(",") if e.strip())
        if parsed:
            kwargs["text_encodings"] = parsed

    config = AppConfig(
        log_level=os.getenv("PAGEMARK_LOG_LEVEL", AppConfig.log_level).upper(),
        progress_debounce_seconds=_env_float(
            "PAGEMARK_PROGRESS_DEBOUNCE",
            AppConfig.progress_debounce_seconds,
        ),
        chapter_throttle_seconds=_env_float(
            "PAGEMARK_CHAPTER_THROTTLE",
            AppConfig.chapter_throttle_seconds,
        ),
        replacement_threshold=_env_float(
            "PAGEMARK_REPLACEMENT_THRESHOLD",
            AppConfig.replacement_threshold,
        ),
        **kwargs,
    )
    return config
