"""Configuration package."""

from receipt_scanner.config.settings import (
    AnalyzerSettings,
    AppSettings,
    OCRSettings,
    OpenRouterSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AnalyzerSettings",
    "AppSettings",
    "OCRSettings",
    "OpenRouterSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
