"""Ballot configuration.

Sources, lowest precedence first:
1. ``ballot.json`` in the config directory.
2. Environment variables (``BALLOT_*``), with a ``.env`` file loaded first.
   Variables already set in the environment win over the ``.env`` file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_DIR = ROOT / "config"
DEFAULT_DATA_DIR = ROOT / "data"
CONFIG_FILENAME = "ballot.json"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Environment variable → config field
_ENV_FIELDS = {
    "BALLOT_ID": "ballot_id",
    "BALLOT_ADMINISTRATOR": "administrator",
    "BALLOT_DATA_DIR": "data_dir",
    "BALLOT_LOG_LEVEL": "log_level",
    "BALLOT_LOG_FILE": "log_file",
}


@dataclass(frozen=True)
class BallotConfig:
    """Runtime settings for one ballot deployment.

    ``administrator`` is only needed to create a ballot that has no stored
    state yet; a stored ballot keeps the administrator it was created with.
    """
    ballot_id: str = "default"
    administrator: Optional[str] = None
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.ballot_id:
            raise ValueError("ballot_id cannot be empty")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

    @property
    def events_path(self) -> Path:
        return self.data_dir / f"{self.ballot_id}.events.jsonl"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BallotConfig:
        kwargs: dict[str, Any] = {}
        if "ballot_id" in data:
            kwargs["ballot_id"] = str(data["ballot_id"])
        if data.get("administrator"):
            kwargs["administrator"] = str(data["administrator"])
        if data.get("data_dir"):
            kwargs["data_dir"] = Path(data["data_dir"])
        if data.get("log_level"):
            kwargs["log_level"] = str(data["log_level"]).upper()
        if data.get("log_file"):
            kwargs["log_file"] = Path(data["log_file"])
        return cls(**kwargs)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> BallotConfig:
        """Load ``ballot.json`` from ``config_dir``; defaults if absent.

        Relative paths in the file are resolved against the config
        directory's parent (the project root).
        """
        path = config_dir / CONFIG_FILENAME
        if not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")
        config = cls.from_dict(data)
        base = config_dir.resolve().parent
        if "data_dir" in data and not config.data_dir.is_absolute():
            config = replace(config, data_dir=base / config.data_dir)
        if config.log_file is not None and not config.log_file.is_absolute():
            config = replace(config, log_file=base / config.log_file)
        return config

    def with_env_overrides(self, dotenv_path: Optional[Path] = None) -> BallotConfig:
        """Apply ``BALLOT_*`` environment variables over this config."""
        load_dotenv(dotenv_path or ROOT / ".env", override=False)
        overrides: dict[str, Any] = {}
        for env_name, field_name in _ENV_FIELDS.items():
            value = os.getenv(env_name)
            if value:
                overrides[field_name] = value
        if not overrides:
            return self
        merged = self.to_dict()
        merged.update(overrides)
        return BallotConfig.from_dict(merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ballot_id": self.ballot_id,
            "administrator": self.administrator,
            "data_dir": str(self.data_dir),
            "log_level": self.log_level,
            "log_file": str(self.log_file) if self.log_file else None,
        }


def load_config(
    config_dir: Path = DEFAULT_CONFIG_DIR,
    dotenv_path: Optional[Path] = None,
) -> BallotConfig:
    """File config with environment overrides applied."""
    config = BallotConfig.from_config_dir(config_dir).with_env_overrides(dotenv_path)
    logging.getLogger(__name__).debug("Loaded config: %s", config.to_dict())
    return config
