"""
Image Characteristics Analyzer

Decodes a receipt image and measures low-level pixel statistics to decide
how the image should be read:

1. Text density       - share of dark pixels
2. Line consistency   - regular horizontal text lines suggest print
3. Spacing uniformity - coefficient of variation of gaps between text runs
4. Stroke consistency - sampled regions with "normal" ink density
5. Complexity         - gradient edge density

The signals are combined into one of six strategies plus a confidence score.

DESIGN DECISION: analyze() never raises. If the bytes cannot be decoded we
fall back to a heuristic driven by file size alone (bigger uploads are
assumed denser and messier) and flag the result with is_fallback=True.
An unreadable image still has to be routed somewhere.

No network access happens here. Everything is synchronous numpy work, so
async callers should run it in a worker thread.
"""

import random
from io import BytesIO
from typing import Optional

import numpy as np
import structlog
from PIL import Image, UnidentifiedImageError

from receipt_scanner.config import AnalyzerSettings, get_settings
from receipt_scanner.exceptions import ImageDecodeError
from receipt_scanner.models.receipt import (
    ComplexityLevel,
    ComplexityScore,
    ImageAnalysis,
    LineAnalysis,
    SpacingAnalysis,
    Strategy,
    StrokeAnalysis,
    TextDensity,
)


logger = structlog.get_logger(__name__)


class ImageAnalyzer:
    """
    Classifies receipt images into OCR strategies.

    Thresholds come from AnalyzerSettings. Pass `rng` to make the
    stroke sampling reproducible.
    """

    def __init__(
        self,
        settings: Optional[AnalyzerSettings] = None,
        rng: Optional[random.Random] = None,
    ):
        self._settings = settings or get_settings().analyzer
        self._rng = rng or random.Random()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def analyze(self, image_bytes: bytes) -> ImageAnalysis:
        """
        Analyze an image.

        Never raises: decode failures produce a file-size heuristic result.
        """
        try:
            gray = self._decode_grayscale(image_bytes)
        except ImageDecodeError as e:
            logger.warning(
                "image_decode_failed",
                error=str(e),
                file_size_kb=round(len(image_bytes) / 1024, 1),
            )
            return self._fallback_analysis(image_bytes, str(e))

        height, width = gray.shape
        text_mask = gray < self._settings.text_gray_threshold

        text_density = self.calculate_text_density(text_mask)
        line_analysis = self.analyze_line_characteristics(text_mask)
        spacing_analysis = self.analyze_character_spacing(text_mask)
        stroke_analysis = self.analyze_stroke_consistency(text_mask)
        complexity_score = self.calculate_image_complexity(gray)

        strategy = self.determine_strategy(
            text_density, line_analysis, spacing_analysis, stroke_analysis, complexity_score
        )
        confidence = self.calculate_confidence(
            text_density, line_analysis, spacing_analysis, stroke_analysis, complexity_score
        )

        analysis = ImageAnalysis(
            text_density=text_density,
            line_analysis=line_analysis,
            spacing_analysis=spacing_analysis,
            stroke_analysis=stroke_analysis,
            complexity_score=complexity_score,
            recommended_strategy=strategy,
            confidence=confidence,
            width=width,
            height=height,
        )
        logger.info("image_analyzed", **analysis.summary())
        return analysis

    # =========================================================================
    # DECODING
    # =========================================================================

    def _decode_grayscale(self, image_bytes: bytes) -> np.ndarray:
        """Decode to a float (height, width) array of channel means."""
        if not image_bytes:
            raise ImageDecodeError("Empty image data")
        try:
            with Image.open(BytesIO(image_bytes)) as img:
                rgb = np.asarray(img.convert("RGB"), dtype=np.float64)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ImageDecodeError(f"Could not decode image: {e}") from e

        if rgb.ndim != 3 or rgb.shape[0] == 0 or rgb.shape[1] == 0:
            raise ImageDecodeError("Decoded image has no pixels")
        return rgb.mean(axis=2)

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def calculate_text_density(self, text_mask: np.ndarray) -> TextDensity:
        text_pixels = int(text_mask.sum())
        total_pixels = int(text_mask.size)
        return TextDensity(
            density=text_pixels / total_pixels if total_pixels else 0.0,
            text_pixel_count=text_pixels,
            total_pixels=total_pixels,
        )

    def analyze_line_characteristics(self, text_mask: np.ndarray) -> LineAnalysis:
        """
        Group text-bearing rows into lines.

        A row is text-bearing when at least `row_text_ratio` of it is text.
        Rows no more than `line_merge_gap_px` apart belong to the same line,
        and a line only counts with at least `min_rows_per_line` rows.
        """
        s = self._settings
        width = text_mask.shape[1]
        row_counts = text_mask.sum(axis=1)
        text_rows = np.flatnonzero(row_counts >= width * s.row_text_ratio)

        line_count = 0
        if text_rows.size:
            # Split wherever consecutive text rows are further apart than the gap
            breaks = np.flatnonzero(np.diff(text_rows) > s.line_merge_gap_px)
            run_lengths = np.diff(np.concatenate(([0], breaks + 1, [text_rows.size])))
            line_count = int((run_lengths >= s.min_rows_per_line).sum())

        return LineAnalysis(
            is_consistent=line_count >= s.min_line_count,
            line_count=line_count,
        )

    def analyze_character_spacing(self, text_mask: np.ndarray) -> SpacingAnalysis:
        """
        Coefficient of variation of the gaps between horizontal text runs.

        Only runs closed by a background pixel count; a run touching the
        right edge is dropped. The previous run end carries over from row
        to row, so the first gap of a row can be negative.
        """
        gaps: list[int] = []
        last_end = -1

        for row in text_mask:
            edges = np.diff(np.concatenate(([0], row.astype(np.int8))))
            ends = np.flatnonzero(edges == -1) - 1
            if ends.size == 0:
                continue
            starts = np.flatnonzero(edges == 1)[:ends.size]
            for start, end in zip(starts, ends):
                if last_end != -1:
                    gaps.append(int(start) - last_end)
                last_end = int(end)

        if not gaps:
            return SpacingAnalysis(uniform=True, coefficient_of_variation=0.0)

        spacing = np.asarray(gaps, dtype=np.float64)
        mean = float(spacing.mean())
        std = float(spacing.std())
        cv = std / mean if mean != 0 else float("inf")

        return SpacingAnalysis(
            uniform=cv < self._settings.spacing_cv_threshold,
            coefficient_of_variation=cv,
            average_spacing=mean,
            gap_count=len(gaps),
        )

    def analyze_stroke_consistency(self, text_mask: np.ndarray) -> StrokeAnalysis:
        """Sample square regions and count those with a text-like ink density."""
        s = self._settings
        height, width = text_mask.shape
        size = min(s.stroke_sample_max_size, width // 10)
        total = s.stroke_sample_count

        if size <= 0:
            return StrokeAnalysis(consistent=False, consistency_ratio=0.0, total_regions=total)

        uniform = 0
        for _ in range(total):
            x = int(self._rng.random() * max(width - size, 0))
            y = int(self._rng.random() * max(height - size, 0))
            region = text_mask[y:y + size, x:x + size]
            density = float(region.sum()) / (size * size)
            if s.stroke_min_density < density < s.stroke_max_density:
                uniform += 1

        ratio = uniform / total
        return StrokeAnalysis(
            consistent=ratio > s.stroke_uniform_ratio,
            consistency_ratio=ratio,
            uniform_regions=uniform,
            total_regions=total,
        )

    def calculate_image_complexity(self, gray: np.ndarray) -> ComplexityScore:
        """Share of interior pixels with a strong right or bottom gradient."""
        s = self._settings
        height, width = gray.shape
        edge_count = 0

        if height >= 3 and width >= 3:
            center = gray[1:-1, 1:-1]
            horizontal = np.abs(center - gray[1:-1, 2:])
            vertical = np.abs(center - gray[2:, 1:-1])
            edges = (horizontal > s.edge_gradient_threshold) | (vertical > s.edge_gradient_threshold)
            edge_count = int(edges.sum())

        edge_density = edge_count / (width * height)
        return ComplexityScore(
            complexity=(
                ComplexityLevel.HIGH
                if edge_density > s.edge_density_threshold
                else ComplexityLevel.LOW
            ),
            edge_density=edge_density,
            edge_count=edge_count,
        )

    # =========================================================================
    # DECISION
    # =========================================================================

    @staticmethod
    def count_inconsistencies(
        line_analysis: LineAnalysis,
        spacing_analysis: SpacingAnalysis,
        stroke_analysis: StrokeAnalysis,
    ) -> int:
        return sum([
            not line_analysis.is_consistent,
            not spacing_analysis.uniform,
            not stroke_analysis.consistent,
        ])

    def determine_strategy(
        self,
        text_density: TextDensity,
        line_analysis: LineAnalysis,
        spacing_analysis: SpacingAnalysis,
        stroke_analysis: StrokeAnalysis,
        complexity_score: ComplexityScore,
    ) -> Strategy:
        """
        First match wins: batch, handwriting, mixed, lightweight, standard.

        Handwriting needs corroborating signals and enough ink to judge:
        a near-blank page fails every regularity test without being
        handwritten.
        """
        s = self._settings
        density = text_density.density
        high_complexity = complexity_score.complexity == ComplexityLevel.HIGH
        inconsistencies = self.count_inconsistencies(line_analysis, spacing_analysis, stroke_analysis)

        if density > s.batch_density_threshold and high_complexity:
            return Strategy.BATCH
        if inconsistencies >= s.handwriting_min_indicators and density >= s.handwriting_min_density:
            return Strategy.HANDWRITING
        if (
            density > s.mixed_density_threshold
            and high_complexity
            and (not line_analysis.is_consistent or not spacing_analysis.uniform)
        ):
            return Strategy.MIXED
        if density < s.lightweight_density_threshold:
            return Strategy.LIGHTWEIGHT
        return Strategy.STANDARD

    def calculate_confidence(
        self,
        text_density: TextDensity,
        line_analysis: LineAnalysis,
        spacing_analysis: SpacingAnalysis,
        stroke_analysis: StrokeAnalysis,
        complexity_score: ComplexityScore,
    ) -> float:
        """
        Base 0.4 plus bonuses for agreeing signals, weighted by an
        agreement ratio over six checks. Clamped to [0, 1].
        """
        confidence = 0.4
        agreement_score = 0

        consistent_signals = sum([
            line_analysis.is_consistent,
            spacing_analysis.uniform,
            stroke_analysis.consistent,
        ])
        if consistent_signals == 3:
            confidence += 0.4
            agreement_score += 3
        elif consistent_signals == 2:
            confidence += 0.25
            agreement_score += 2
        elif consistent_signals == 1:
            confidence += 0.15
            agreement_score += 1

        inconsistencies = 3 - consistent_signals
        if inconsistencies >= self._settings.handwriting_min_indicators:
            confidence += 0.3
            agreement_score += inconsistencies

        density = text_density.density
        if 0.02 < density < 0.7:
            confidence += 0.1

        if complexity_score.complexity == ComplexityLevel.LOW and density < 0.3:
            confidence += 0.15
        elif complexity_score.complexity == ComplexityLevel.HIGH and density > 0.3:
            confidence += 0.1

        final = confidence + (agreement_score / 6) * 0.2
        return max(0.0, min(final, 1.0))

    # =========================================================================
    # FALLBACK
    # =========================================================================

    def _fallback_analysis(self, image_bytes: bytes, reason: str) -> ImageAnalysis:
        """Estimate signals from the file size when pixels are unavailable."""
        s = self._settings
        size_kb = len(image_bytes) / 1024

        density = 0.1
        complexity = ComplexityLevel.LOW
        consistent = True

        if size_kb > s.fallback_medium_size_kb:
            density = 0.3
        if size_kb > s.fallback_large_size_kb:
            complexity = ComplexityLevel.HIGH
            consistent = False

        text_density = TextDensity(density=density)
        line_analysis = LineAnalysis(is_consistent=consistent)
        spacing_analysis = SpacingAnalysis(uniform=consistent)
        stroke_analysis = StrokeAnalysis(consistent=consistent)
        complexity_score = ComplexityScore(complexity=complexity)

        strategy = self.determine_strategy(
            text_density, line_analysis, spacing_analysis, stroke_analysis, complexity_score
        )
        analysis = ImageAnalysis(
            text_density=text_density,
            line_analysis=line_analysis,
            spacing_analysis=spacing_analysis,
            stroke_analysis=stroke_analysis,
            complexity_score=complexity_score,
            recommended_strategy=strategy,
            confidence=s.fallback_confidence,
            is_fallback=True,
            fallback_reason=reason,
        )
        logger.info("image_analyzed", **analysis.summary())
        return analysis
