"""
Application configuration settings.
"""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Self, Tuple

from app.core.exam.types import build_grade_bands


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Exam Engine API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/exam_engine_dev"

    # Grading
    # Descending (min_percentage, letter) pairs. The first band whose minimum is
    # met wins; the last band must start at 0 so every percentage gets a letter.
    GRADE_BANDS: List[Tuple[float, str]] = Field(
        default=[
            (90.0, "A*"),
            (80.0, "A"),
            (70.0, "B"),
            (60.0, "C"),
            (50.0, "D"),
            (0.0, "U"),
        ],
        description="Percentage to letter-grade bands, highest first",
    )
    # Manually graded answers count as correct when
    # marks > CORRECTNESS_THRESHOLD * max_marks (0.0 means any positive mark).
    CORRECTNESS_THRESHOLD: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Fraction of max marks above which a graded answer is correct",
    )
    DEFAULT_PASSING_SCORE: float = Field(
        default=40.0,
        ge=0.0,
        le=100.0,
        description="Passing percentage used when a test does not set one",
    )

    # Expired-attempt sweep
    SWEEP_BATCH_SIZE: int = Field(
        default=500,
        ge=1,
        description="Maximum attempts examined per sweep run",
    )

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    # Metrics
    PROMETHEUS_METRICS_ENABLED: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @field_validator("GRADE_BANDS")
    @classmethod
    def validate_grade_bands(
        cls, bands: List[Tuple[float, str]]
    ) -> List[Tuple[float, str]]:
        """Validate GRADE_BANDS: non-empty, strictly descending, ending at 0."""
        build_grade_bands(bands)
        return bands

    @model_validator(mode="after")
    def validate_production_database(self) -> Self:
        """Refuse to run production against a SQLite database."""
        if self.ENV == "production" and self.DATABASE_URL.startswith("sqlite"):
            raise ValueError("DATABASE_URL must not point to SQLite when ENV=production")
        return self


settings = Settings()
