"""Service layer: image analysis, vision models, OCR routing and storage."""
