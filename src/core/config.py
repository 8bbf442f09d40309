"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    # ── Postgres (Supabase) ──────────────────────────────
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    data_source: str = "postgres"  # postgres | memory
    query_timeout_ms: int = 10_000
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle_seconds: int = 300
    db_connect_timeout_seconds: int = 5

    # ── Catalog ──────────────────────────────────────────
    catalog_path: str = str(_PROJECT_ROOT / "catalog" / "sources.yml")

    # ── Paging & scanning ────────────────────────────────
    default_page_size: int = 50
    max_page_size: int = 1000
    scan_batch_size: int = 1000
    scan_row_cap: int = 100_000
    scan_deadline_seconds: float = 30.0
    pattern_cap: int = 500

    # ── Aggregation cache ────────────────────────────────
    cache_ttl_seconds: float = 600.0
    cache_max_size: int = 512
    serve_stale_on_error: bool = True

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
