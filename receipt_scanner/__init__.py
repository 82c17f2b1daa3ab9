"""
Receipt Scanner - Adaptive Receipt OCR

Turns a photo of a receipt into a structured, sanitized transaction draft
by routing each image to the vision model best suited to it.

DESIGN PRINCIPLES:
1. Inspect the image before choosing a model
2. Escalate to another model instead of failing
3. Model output is untrusted until sanitized
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Receipt Scanner Team"
