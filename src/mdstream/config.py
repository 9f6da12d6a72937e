"""Application configuration: settings schema and config.yaml loader"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


CONFIG_FILE = "config.yaml"
ENV_PREFIX = "MDSTREAM_"


class Settings(BaseModel):
    app_name:           str = "mdstream"
    parser_config:      str = Field(default="gfm-like", description="MarkdownIt parser preset name")
    batch_window_ms:    int = Field(default=32, ge=0, description="Streaming batch window in milliseconds")
    max_batch_chunks:   int = Field(default=0,  ge=0, description="Flush a batch after N chunks; 0 = time only")
    max_queued_chunks:  int = Field(default=64, ge=0, description="Chunks buffered ahead of the parser; 0 = unbounded")
    repair_on_complete: bool = Field(default=True, description="Repair unterminated markup before the final parse")
    chunk_size:         int = Field(default=16, ge=1, description="Characters per simulated chunk in the stream command")
    log_level:          str = Field(default="WARNING", pattern="^(DEBUG|INFO|WARNING|ERROR)$")


def load_config(overrides: dict[str, Any] = None) -> Settings:
    """Load Settings from config.yaml, then MDSTREAM_<FIELD> env vars, then non-None CLI overrides."""
    data: dict[str, Any] = {}
    if Path(CONFIG_FILE).exists():
        try:
            data = yaml.safe_load(Path(CONFIG_FILE).read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid {CONFIG_FILE}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid {CONFIG_FILE}: expected a mapping, got {type(data).__name__}")

    for name in Settings.model_fields:
        if val := os.getenv(f"{ENV_PREFIX}{name.upper()}"):
            data[name] = val

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
