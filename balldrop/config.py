"""Environment-driven settings and logging setup."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from balldrop.models import GameConfig, GameMode

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_INT_SETTINGS = {
    "grid_size": "BALLDROP_GRID_SIZE",
    "balls_per_player": "BALLDROP_BALLS_PER_PLAYER",
    "min_boxes": "BALLDROP_MIN_BOXES",
    "max_boxes": "BALLDROP_MAX_BOXES",
}
_TRUTHY = {"1", "true", "yes", "on"}


def _read_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_config(env_file: str | None = None, **overrides) -> GameConfig:
    """Build a GameConfig from ``BALLDROP_*`` variables; keyword overrides win."""
    load_dotenv(env_file)

    values: dict = {}
    for field_name, env_name in _INT_SETTINGS.items():
        value = _read_int(env_name)
        if value is not None:
            values[field_name] = value

    mode = os.getenv("BALLDROP_GAME_MODE")
    if mode:
        try:
            values["game_mode"] = GameMode(mode.strip().upper())
        except ValueError:
            raise ValueError(f"BALLDROP_GAME_MODE must be NORMAL or HARD_MODE, got {mode!r}") from None

    reserve = os.getenv("BALLDROP_RESERVE_COLUMNS")
    if reserve:
        values["reserve_columns"] = reserve.strip().lower() in _TRUTHY

    values.update(overrides)
    return GameConfig(**values)


def configure_logging(level: str | int | None = None) -> None:
    if level is None:
        level = os.getenv("BALLDROP_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
