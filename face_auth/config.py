"""Configuration management for the face authentication microservice."""

from typing import Dict, List, Optional, Union
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"

    # Storage configuration ("memory" or "supabase")
    storage_backend: str = "memory"
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Embedding model output length
    embedding_dim: int = 128

    # Enrollment capture settings
    enrollment_samples: int = 3
    capture_interval_ms: int = 1500
    # Sessions untouched for this long are discarded
    enrollment_session_ttl_ms: int = 300000
    enrollment_policy: str = "roster"
    roster_seed: List[Dict[str, Union[str, bool]]] = []

    # Recognition thresholds
    recognition_mode: str = "distance"
    recognition_distance_threshold: float = 1.0
    recognition_similarity_threshold: float = 0.55
    mark_presence_on_recognition: bool = True

    # Duplicate detection thresholds (stricter than recognition)
    duplicate_similarity_high: float = 0.82
    duplicate_similarity_mid: float = 0.75
    duplicate_confirm_similarity: float = 0.78
    duplicate_distance_threshold: float = 1.05
    duplicate_require_distance: bool = True

    # Observability
    otlp_endpoint: Optional[str] = None
    enable_console_export: bool = False

    # Logging configuration
    log_level: str = "INFO"

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "supabase"):
            raise ValueError('STORAGE_BACKEND must be "memory" or "supabase"')
        return v

    @field_validator('enrollment_policy')
    @classmethod
    def validate_enrollment_policy(cls, v):
        v = v.lower()
        if v not in ("roster", "register"):
            raise ValueError('ENROLLMENT_POLICY must be "roster" or "register"')
        return v

    @field_validator('recognition_mode')
    @classmethod
    def validate_recognition_mode(cls, v):
        v = v.lower()
        if v not in ("distance", "similarity"):
            raise ValueError('RECOGNITION_MODE must be "distance" or "similarity"')
        return v

    @field_validator('embedding_dim', 'enrollment_samples', 'enrollment_session_ttl_ms')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError('value must be a positive integer')
        return v

    @field_validator('capture_interval_ms')
    @classmethod
    def validate_capture_interval(cls, v):
        if v < 0:
            raise ValueError('CAPTURE_INTERVAL_MS must not be negative')
        return v

    @field_validator(
        'recognition_similarity_threshold',
        'duplicate_similarity_high',
        'duplicate_similarity_mid',
        'duplicate_confirm_similarity',
    )
    @classmethod
    def validate_similarity_threshold(cls, v):
        if not -1.0 <= v <= 1.0:
            raise ValueError('similarity thresholds must be between -1.0 and 1.0')
        return v

    @field_validator('recognition_distance_threshold', 'duplicate_distance_threshold')
    @classmethod
    def validate_distance_threshold(cls, v):
        if v <= 0.0:
            raise ValueError('distance thresholds must be positive')
        return v

    @model_validator(mode='after')
    def validate_supabase_credentials(self):
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                raise ValueError('SUPABASE_URL environment variable is required')
            if not self.supabase_anon_key:
                raise ValueError('SUPABASE_ANON_KEY environment variable is required')
        return self


# Global settings instance
settings = Settings()
