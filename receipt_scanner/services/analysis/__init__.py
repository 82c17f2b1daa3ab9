"""Image analysis package."""

from receipt_scanner.services.analysis.image_analyzer import ImageAnalyzer

__all__ = ["ImageAnalyzer"]
