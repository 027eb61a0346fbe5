from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Intent store
    consul_addr: str = os.getenv("SETLIVE_CONSUL_ADDR", os.getenv("CONSUL_HTTP_ADDR", "127.0.0.1:8500"))
    kv_prefix: str = os.getenv("SETLIVE_KV_PREFIX", "")
    kv_timeout_s: int = _env_int("SETLIVE_KV_TIMEOUT_S", 10)
    hostname: str | None = os.getenv("SETLIVE_HOSTNAME")

    # Host-wide paths for servicebuilder and runit
    sb_path: str = os.getenv("SETLIVE_SB_PATH", "/etc/servicebuilder.d")
    runit_staging_path: str = os.getenv("SETLIVE_RUNIT_STAGING_PATH", "/var/service-stage")
    runit_path: str = os.getenv("SETLIVE_RUNIT_PATH", "/var/service")
    sv_bin: str = os.getenv("SETLIVE_SV_BIN", "sv")
    servicebuilder_bin: str = os.getenv("SETLIVE_SERVICEBUILDER_BIN", "servicebuilder")

    # Pipeline
    queue_size: int = _env_int("SETLIVE_QUEUE_SIZE", 1)
    pipelined: bool = _env_bool("SETLIVE_PIPELINED", True)

    # Optional sqlite journal of events. Never read back by reconciliation.
    events_db: str | None = os.getenv("SETLIVE_EVENTS_DB")


settings = Settings()
