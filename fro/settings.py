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
    # Store
    db_path: str = os.getenv("FRO_DB_PATH", "fro.db")
    store_read_only: bool = _env_bool("FRO_STORE_READ_ONLY", False)

    # Controller
    workers: int = _env_int("FRO_WORKERS", 2)
    retry_delay_s: int = _env_int("FRO_RETRY_DELAY_S", 5)

    # Workload
    image: str = os.getenv("FRO_IMAGE", "quay.io/saas-patterns/freshrss-image:latest")

    # CLI
    api_url: str = os.getenv("FRO_API", "http://localhost:8000")


settings = Settings()
