"""
Configuration loader for pnlledger.

What it does:
- Reads static settings from `config/config.yaml` (a missing file means defaults).
- Applies environment overrides: `PNLLEDGER_STORE`, `PNLLEDGER_SQLITE_PATH`,
  `PNLLEDGER_PUBLISH_EVENTS`.
- Validates the result using Pydantic models.

Where it is used:
- `Ledger.from_settings` builds its store and event publishing from `Settings`.
"""

import os
import pathlib
from typing import Any, Dict, Literal

import yaml
from pydantic import BaseModel, field_validator


class Settings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    store: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "data/positions.sqlite"
    publish_events: bool = False
    events_stream: str = "pnlledger.events"

    @field_validator("sqlite_path", "events_stream")
    @classmethod
    def not_empty(cls, v, info):
        if not v:
            raise ValueError(f"Empty setting: {info.field_name}")
        return v


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if os.getenv("PNLLEDGER_STORE"):
        out["store"] = os.environ["PNLLEDGER_STORE"]
    if os.getenv("PNLLEDGER_SQLITE_PATH"):
        out["sqlite_path"] = os.environ["PNLLEDGER_SQLITE_PATH"]
    if os.getenv("PNLLEDGER_PUBLISH_EVENTS"):
        out["publish_events"] = os.environ["PNLLEDGER_PUBLISH_EVENTS"].lower() in ("1", "true", "yes")
    return out


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Load YAML config, apply env-var overrides, and return Settings."""
    config: Dict[str, Any] = {}
    p = pathlib.Path(path)
    if p.exists():
        with open(p, "r") as f:
            config = yaml.safe_load(f) or {}
    ledger_cfg = dict(config.get("ledger", {}) or {})
    ledger_cfg.update(_env_overrides())
    return Settings(**ledger_cfg)
