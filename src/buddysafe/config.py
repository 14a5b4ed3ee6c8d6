"""
Configuration management for BuddySafe.

Handles environment variables, runtime settings, age bands and the
policy thresholds used by the safety pipeline.
"""

from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

DATA_DIR = Path(__file__).parent / "data"

# Policy thresholds. Changing these values changes safety outcomes and
# needs product sign-off; components accept overrides for testing.
CACHE_AGE_TOLERANCE_YEARS = 1
CACHE_MESSAGE_MAX_CHARS = 200
CACHE_EVICTION_FRACTION = 0.1
NEGATIVE_EMOTION_THRESHOLD = 3
REPEATED_TOPIC_MIN_OCCURRENCES = 3
REPEATED_TOPIC_THRESHOLD = 2
RECENT_CONTEXT_MIN_MESSAGES = 3
LONG_MESSAGE_CHARS = 1000
COMPLEX_VOCAB_MAX_AGE = 8
COMPLEX_VOCAB_MIN_CHARS = 200


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class AgeBand(str, Enum):
    """Age bands used to pick child-facing response wording."""

    YOUNG = "7-8"
    MIDDLE = "9-10"
    OLDER = "11-12"

    @classmethod
    def for_age(cls, age: int) -> "AgeBand | None":
        """Exact band for an age, or None when the age is outside 7-12."""
        if 7 <= age <= 8:
            return cls.YOUNG
        if 9 <= age <= 10:
            return cls.MIDDLE
        if 11 <= age <= 12:
            return cls.OLDER
        return None


def get_age_group(age: int) -> str:
    """Coarse age group used when a template has no exact band entry."""
    if age <= 8:
        return "young"
    elif age <= 10:
        return "middle"
    return "older"


class Settings(BaseModel):
    """
    Application settings loaded from environment variables.

    These settings control API keys, logging, classifier behaviour,
    cache sizing and escalation delivery.
    """

    # API Keys
    google_api_key: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""),
        description="Google AI / Gemini API key for the remote classifier",
    )
    resend_api_key: str = Field(
        default_factory=lambda: os.getenv("RESEND_API_KEY", ""),
        description="Resend API key for parent alert emails",
    )
    parent_api_token: str = Field(
        default_factory=lambda: os.getenv("PARENT_API_TOKEN", ""),
        description="Bearer token guarding the HTTP API (optional)",
    )

    # Runtime settings
    environment: Environment = Field(
        default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development")),
        description="Application environment",
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"),
        description="Logging level",
    )

    # Remote classifier
    classifier_model: str = Field(
        default_factory=lambda: os.getenv(
            "SAFETY_CLASSIFIER_MODEL", "gemini-2.0-flash"
        ),
        description="Gemini model used for safety classification",
    )
    classifier_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SAFETY_CLASSIFIER_TIMEOUT", "5.0")),
        gt=0,
        description="Upper bound on a single classifier call",
    )
    classifier_temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    classifier_max_output_tokens: int = Field(default=200, gt=0)

    # Result cache
    cache_max_size: int = Field(
        default_factory=lambda: int(os.getenv("SAFETY_CACHE_MAX_SIZE", "10000")),
        gt=0,
    )
    cache_ttl_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SAFETY_CACHE_TTL", "3600")),
        gt=0,
    )
    cache_cleanup_interval_seconds: float = Field(default=900.0, gt=0)

    # Classifier health
    health_check_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SAFETY_HEALTH_INTERVAL", "30")),
        gt=0,
        description="Freshness window for the last confirmed classifier state",
    )

    # Rule set and response templates
    rules_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SAFETY_RULES_PATH", str(DATA_DIR / "safety_rules.json"))
        )
    )
    responses_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv(
                "SAFETY_RESPONSES_PATH", str(DATA_DIR / "safety_responses.json")
            )
        )
    )

    # Escalation
    alert_from_address: str = Field(
        default_factory=lambda: os.getenv(
            "SAFETY_ALERT_FROM", "safety@buddysafe.local"
        )
    )

    # Batch validation
    batch_size: int = Field(default=5, gt=0)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def validate_api_key(self) -> bool:
        """Validate that the classifier API key is set."""
        return bool(self.google_api_key and self.google_api_key != "your_api_key_here")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
