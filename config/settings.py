"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Marker scanning ──────────────────────────────────────
    tag_max_markers: int = 5  # Hard cap on markers per request

    # ── Budgets (defaults for the purpose table) ─────────────
    tag_text_length_per_entity: int = 1000
    tag_aggregate_text_length: int = 4000
    tag_truncation_suffix: str = "…"

    # ── Suggestions ──────────────────────────────────────────
    tag_suggestion_limit: int = 10
    tag_recent_suggestion_limit: int = 5

    # ── Resolution audit log ─────────────────────────────────
    tag_resolution_log_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for engine settings."""
    return Settings()
