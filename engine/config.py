"""
Engine settings.

Values come from the environment or a local .env file. Field names match the
environment variables case-insensitively (e.g. SPEED_FULL_POINTS_MS).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------
    # Storage
    # --------------------
    database_path: str = Field(default="adaptive_quiz.db", description="sqlite file")

    # --------------------
    # Question generator
    # --------------------
    mistral_api_key: str = Field(default="", description="Mistral API key")
    mistral_model: str = "mistral-small-latest"
    generator_temperature: float = 0.4
    generator_timeout_ms: int = Field(default=20000, gt=0)
    generator_max_retries: int = Field(default=3, ge=0)
    generator_base_delay: float = 0.8
    generator_max_delay: float = 8.0
    source_text_limit: int = 8000

    generation_cache_ttl_seconds: float = Field(default=30.0, gt=0)
    generation_cache_max_entries: int = Field(default=256, gt=0)

    # --------------------
    # Sessions
    # --------------------
    default_max_questions: int = 20
    max_questions_limit: int = 50
    review_streak_threshold: int = 4
    list_page_size_limit: int = Field(default=50, gt=0)

    # --------------------
    # Time-weighted points
    # --------------------
    points_max_per_correct: int = 100
    points_min_per_correct: int = 20
    speed_full_points_ms: int = 3000
    speed_min_points_ms: int = 30000

    points_mult_identification: float = 1.25
    points_mult_enumeration: float = 1.4
    points_mult_multiple_choice: float = 1.0
    points_mult_true_false: float = 0.9

    def type_multipliers(self) -> Dict[str, float]:
        return {
            "identification": self.points_mult_identification,
            "enumeration": self.points_mult_enumeration,
            "multiple_choice": self.points_mult_multiple_choice,
            "true_false": self.points_mult_true_false,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
