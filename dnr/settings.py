from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("DNR_DB_PATH", "dnr.db")
    runtime: str = os.getenv("DNR_RUNTIME", "docker")  # docker|memory

    # Docker control channel
    docker_base_url: str | None = os.getenv("DNR_DOCKER_BASE_URL")
    docker_timeout_s: int = _env_int("DNR_DOCKER_TIMEOUT_S", 30)

    # Reconciliation
    # Deadline for one observe/plan/execute cycle; 0 disables it.
    operation_timeout_s: int = _env_int("DNR_OPERATION_TIMEOUT_S", 60)
    # Passes per apply; >1 re-observes and re-plans after a partial failure.
    apply_max_passes: int = _env_int("DNR_APPLY_MAX_PASSES", 1)

    # API
    cors_origins: tuple[str, ...] = _env_list("DNR_CORS_ORIGINS", "http://localhost:3000")


settings = Settings()
