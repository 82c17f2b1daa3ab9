"""
Configuration Management for the Receipt Scanner

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

The image analyzer thresholds live here too. They were chosen empirically,
so they are exposed as named settings that can be overridden per deployment
instead of being buried in the analysis code.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenRouterSettings(BaseSettings):
    """OpenRouter (OpenAI-compatible) vision endpoint configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPENROUTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="OpenRouter API key (bearer token)"
    )
    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the chat completions API"
    )
    referer: str = Field(
        default="https://localhost",
        description="Value for the HTTP-Referer identification header"
    )
    app_name: str = Field(
        default="ai-finance-platform",
        description="Value for the X-Title identification header"
    )

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class OCRSettings(BaseSettings):
    """Receipt processing limits and business rules."""

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_mime_types: str = Field(
        default="image/jpeg,image/png,image/webp",
        description="Comma-separated list of accepted MIME types"
    )

    # Shared state bounds
    cache_max_size: int = Field(
        default=100,
        ge=1,
        description="Maximum number of cached results (FIFO eviction)"
    )
    batch_max_concurrency: int = Field(
        default=3,
        ge=1,
        le=20,
        description="How many receipts of a batch are processed at once"
    )

    # Sanity limits
    high_amount_warning: float = Field(
        default=1e6,
        gt=0,
        description="Amounts above this produce a validation warning"
    )
    min_valid_year: int = Field(
        default=1900,
        description="Dates before this year produce a validation warning"
    )

    fallback_confidence: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Confidence assigned to results of the fallback path"
    )
    processing_version: str = Field(
        default="1.0.0",
        description="Version tag stamped onto enriched results"
    )

    @property
    def supported_mime_types_list(self) -> list[str]:
        """Get supported MIME types as a list."""
        return [t.strip().lower() for t in self.supported_mime_types.split(",") if t.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class AnalyzerSettings(BaseSettings):
    """
    Thresholds used by the image characteristics analyzer.

    None of these values come from calibration data. They are kept
    as-is and made overridable rather than tuned in code.
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Pixel classification
    text_gray_threshold: int = Field(default=128, ge=1, le=255)

    # Line consistency
    row_text_ratio: float = Field(default=0.02, ge=0.0, le=1.0)
    line_merge_gap_px: int = Field(default=3, ge=1)
    min_rows_per_line: int = Field(default=3, ge=1)
    min_line_count: int = Field(default=3, ge=1)

    # Character spacing
    spacing_cv_threshold: float = Field(default=0.4, gt=0.0)

    # Stroke consistency
    stroke_sample_count: int = Field(default=10, ge=1)
    stroke_sample_max_size: int = Field(default=50, ge=1)
    stroke_min_density: float = Field(default=0.1, ge=0.0, le=1.0)
    stroke_max_density: float = Field(default=0.8, ge=0.0, le=1.0)
    stroke_uniform_ratio: float = Field(default=0.6, ge=0.0, le=1.0)

    # Complexity
    edge_gradient_threshold: float = Field(default=30.0, ge=0.0)
    edge_density_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    # Strategy decision
    batch_density_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    mixed_density_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    lightweight_density_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    handwriting_min_indicators: int = Field(default=2, ge=1, le=3)
    # Not calibrated. Without this gate a blank page shows two inconsistency
    # signals and would be classified as handwriting; set to 0.0 for that behavior.
    handwriting_min_density: float = Field(
        default=0.02,
        ge=0.0,
        le=1.0,
        description="Below this text density there is too little ink to judge handwriting"
    )

    # Decode-failure heuristic
    fallback_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    fallback_medium_size_kb: float = Field(default=500.0, ge=0.0)
    fallback_large_size_kb: float = Field(default=2000.0, ge=0.0)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the stdlib logger behind structlog"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def openrouter(self) -> OpenRouterSettings:
        return OpenRouterSettings()

    @property
    def ocr(self) -> OCRSettings:
        return OCRSettings()

    @property
    def analyzer(self) -> AnalyzerSettings:
        return AnalyzerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool | str]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus
    {setting_name_error: message} for each failure.
    Useful for startup checks.
    """
    results: dict[str, bool | str] = {}

    settings = get_settings()

    for name in ("openrouter", "ocr", "analyzer", "app"):
        try:
            section = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
            continue

        if name == "openrouter" and not section.api_key:
            results[name] = False
            results[f"{name}_error"] = "OPENROUTER_API_KEY is not set"

    return results
