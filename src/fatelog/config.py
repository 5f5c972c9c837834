"""
Engine configuration persistence.

Stores settings like chunk size and snapshot cadence in a JSON file
beside the session directories.
"""

import json
import logging
from pathlib import Path
from typing import TypedDict


class Config(TypedDict, total=False):
    """Engine configuration."""
    sessions_dir: str  # Root holding active/<session_id>/
    chunk_size: int  # Turns per log chunk file
    snapshot_interval: int  # Snapshot every N turns; 0 disables
    retry_preset: str  # fast, standard, patient
    log_level: str  # DEBUG, INFO, WARNING, ...


DEFAULT_CONFIG: Config = {
    "sessions_dir": "sessions",
    "chunk_size": 100,
    "snapshot_interval": 10,
    "retry_preset": "standard",
    "log_level": "INFO",
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def get_config_path(sessions_dir: Path | str = "sessions") -> Path:
    """Get path to config file."""
    return Path(sessions_dir) / ".fatelog_config.json"


def load_config(sessions_dir: Path | str = "sessions") -> Config:
    """Load config from file, or return defaults if not found."""
    path = get_config_path(sessions_dir)

    if not path.exists():
        return DEFAULT_CONFIG.copy()

    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        # Merge with defaults to handle missing keys
        config = DEFAULT_CONFIG.copy()
        config.update(saved)
        return config
    except (json.JSONDecodeError, IOError):
        return DEFAULT_CONFIG.copy()


def save_config(config: Config, sessions_dir: Path | str = "sessions") -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(sessions_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except IOError:
        return False


def set_snapshot_interval(interval: int, sessions_dir: Path | str = "sessions") -> None:
    """Save snapshot cadence (0 disables automatic snapshots)."""
    if interval < 0:
        raise ValueError(f"snapshot_interval must be >= 0, got {interval}")
    config = load_config(sessions_dir)
    config["snapshot_interval"] = interval
    save_config(config, sessions_dir)


def set_retry_preset(preset: str, sessions_dir: Path | str = "sessions") -> None:
    """Save retry preset for collaborator calls."""
    from .llm.retry import RETRY_PRESETS

    if preset not in RETRY_PRESETS:
        raise ValueError(f"Unknown retry preset '{preset}' (choose from {', '.join(RETRY_PRESETS)})")
    config = load_config(sessions_dir)
    config["retry_preset"] = preset
    save_config(config, sessions_dir)


def set_log_level(level: str, sessions_dir: Path | str = "sessions") -> None:
    """Save log level."""
    config = load_config(sessions_dir)
    config["log_level"] = level.upper()
    save_config(config, sessions_dir)


def configure_logging(level: str | int = "INFO") -> None:
    """Set up root logging for an embedding application."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
