"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables, a .env file, or
the command-line flags in main.py. Settings are built on demand (main.py
validates them inside its error handling), never at import time.

Quick start — create a .env file in your project root:
    ROUTER_HOST=192.168.88.1
    LAN_SUBNETS=192.168.88.0/24,10.0.0.0/8
    INFLUX_URL=http://localhost:8086
    INFLUX_DB=mikrotik
"""

from __future__ import annotations

import ipaddress
import json
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Router / accounting feed
    ROUTER_HOST: str = "192.168.88.1"
    ACCOUNTING_URL: str | None = None   # defaults to http://ROUTER_HOST/accounting/ip.cgi
    FETCH_TIMEOUT_SECONDS: float = 3.0

    # LAN classification — at least one CIDR
    LAN_SUBNETS: Annotated[list[str], NoDecode] = ["192.168.88.0/24"]

    # Storage (InfluxDB 1.x)
    INFLUX_URL: str = "http://localhost:8086"
    INFLUX_USER: str = ""
    INFLUX_PASSWORD: str = ""
    INFLUX_DB: str = "mikrotik"
    INFLUX_RETENTION_POLICY: str = "180_days_retention_policy"
    INFLUX_RETENTION_DURATION: str = "180d"

    # Scheduling
    POLL_INTERVAL_SECONDS: float = 10.0
    MAX_RETRIES: int = 3
    STATUS_INTERVAL_SECONDS: float = 30.0

    # Status API
    API_ENABLED: bool = False
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("LAN_SUBNETS", mode="before")
    @classmethod
    def split_subnets(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("LAN_SUBNETS")
    @classmethod
    def validate_subnets(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one LAN subnet is required")
        for subnet in v:
            try:
                ipaddress.ip_network(subnet, strict=False)
            except ValueError as exc:
                raise ValueError(f"invalid LAN subnet {subnet!r}: {exc}") from exc
        return v

    @field_validator("POLL_INTERVAL_SECONDS", "STATUS_INTERVAL_SECONDS", "FETCH_TIMEOUT_SECONDS")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalise_log_level(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("MAX_RETRIES")
    @classmethod
    def positive_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def accounting_url(self) -> str:
        return self.ACCOUNTING_URL or f"http://{self.ROUTER_HOST}/accounting/ip.cgi"

