"""
Settings for the admin layer.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator


class AdminConfig(BaseModel):
    database_url: Optional[str] = None
    echo_sql: bool = False
    pool_timeout_seconds: int = 30
    currency: str = "INR"
    """ISO code reported with every monetary figure"""

    default_page_size: int = Field(default=50, gt=0)
    max_page_size: int = Field(default=500, gt=0)
    search_limit: int = 20
    top_cities_limit: int = 10
    recent_scans_limit: int = 20
    default_window_days: int = 30
    default_expiry_days: int = 30

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "AdminConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "AdminConfig":
        load_dotenv(dotenv_path)
        defaults = cls()
        max_page_size = _env_int("PET_ADMIN_MAX_PAGE_SIZE", defaults.max_page_size)
        if max_page_size <= 0:
            max_page_size = defaults.max_page_size
        page_size = _env_int("PET_ADMIN_PAGE_SIZE", defaults.default_page_size)
        if not 0 < page_size <= max_page_size:
            page_size = min(defaults.default_page_size, max_page_size)
        return cls(
            database_url=os.getenv("PET_ADMIN_DATABASE_URL", defaults.database_url),
            echo_sql=_env_bool("PET_ADMIN_ECHO_SQL", defaults.echo_sql),
            pool_timeout_seconds=_env_int("PET_ADMIN_POOL_TIMEOUT", defaults.pool_timeout_seconds),
            currency=os.getenv("PET_ADMIN_CURRENCY", defaults.currency),
            default_page_size=page_size,
            max_page_size=max_page_size,
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
