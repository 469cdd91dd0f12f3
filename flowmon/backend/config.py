"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    TABLE_MODE=ovn
    AGGREGATE_KEYS=SrcAddr,DstAddr,Proto
    DEFAULT_SORT_KEY=TotalBytes
    COLLECTOR_PORT=2055
"""

from __future__ import annotations

import json
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_MODES = ("normal", "ovn", "ovn_acl")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Flow table
    TABLE_MODE: str = "normal"
    DEFAULT_SORT_KEY: str = "LastTimeReceived"
    AGGREGATE_KEYS: Annotated[list[str], NoDecode] = []   # empty → every column of the mode

    # Collector (JSON over UDP)
    COLLECTOR_HOST: str = "0.0.0.0"
    COLLECTOR_PORT: int = 2055

    # Ingest
    INGEST_WORKERS: int = 4
    INGEST_QUEUE_SIZE: int = 10_000

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    SNAPSHOT_INTERVAL_SECONDS: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("TABLE_MODE")
    @classmethod
    def check_mode(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _MODES:
            raise ValueError(f"TABLE_MODE must be one of {_MODES}, got {v!r}")
        return v

    @field_validator("INGEST_WORKERS", "INGEST_QUEUE_SIZE")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("AGGREGATE_KEYS", mode="before")
    @classmethod
    def parse_keys(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


settings = Settings()
