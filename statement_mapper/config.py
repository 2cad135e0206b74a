"""
Configuration module for Statement Mapper.

All tuneable parameters (thresholds, model lists, timeouts, paths) live
here.  Nothing is hard-coded in business logic modules.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class TextLayerConfig:
    """Controls native text-layer extraction."""

    # Words whose vertical coordinates differ by at most this many units
    # belong to the same line.
    line_tolerance: float = 2.0

    max_pages: int = 50


@dataclass(frozen=True)
class QualityConfig:
    """Thresholds of the scan / quality classifier."""

    # Anything shorter than this is treated as a scanned document.
    min_text_chars: int = 20

    # Watermark detection: few unique, short lines repeated many times.
    watermark_max_unique_lines: int = 3
    watermark_min_total_lines: int = 3
    watermark_max_avg_length: float = 40.0

    # Meaningfulness: ratio of "real words" and their average length.
    strict_min_real_ratio: float = 0.30
    strict_min_avg_length: float = 3.0
    lenient_min_real_ratio: float = 0.10
    lenient_min_avg_length: float = 2.0


@dataclass(frozen=True)
class ParserConfig:
    """Controls the generic label/value parser."""

    colon_confidence: float = 0.90
    trailing_number_confidence: float = 0.82
    wide_gap_confidence: float = 0.78
    alt_separator_confidence: float = 0.78
    two_line_confidence: float = 0.72
    raw_line_confidence: float = 0.35

    raw_line_min_length: int = 4
    raw_line_limit: int = 60

    # Relaxed limits used for OCR output, where some text beats none.
    forced_raw_line_min_length: int = 2
    forced_raw_line_limit: int = 100


@dataclass(frozen=True)
class OcrConfig:
    """Controls the rasterise + tesseract fallback."""

    language: str = "eng"
    dpi: int = 150
    retry_dpi: int = 300
    max_pages: int = 10
    page_segmentation_mode: int = 6

    # Below this many characters the first page is retried at ``retry_dpi``.
    retry_below_chars: int = 50

    # Upper bound for each external call (rasterisation, one OCR page).
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class AIConfig:
    """Controls the Gemini multimodal extractor."""

    # Priority-ordered model identifiers; the next one is tried when the
    # current one is rejected.
    models: tuple[str, ...] = (
        "gemini-2.0-flash",
        "gemini-1.5-flash",
        "gemini-1.5-pro",
    )

    # HTTP status codes meaning "this model won't serve us, try the next".
    fallthrough_status_codes: tuple[int, ...] = (400, 404, 429)

    temperature: float = 0.1
    timeout_seconds: float = 90.0

    # Text-prompt variant: document text beyond this is cut off.
    max_prompt_chars: int = 28000

    # Environment variables consulted when no key is passed explicitly.
    api_key_env_vars: tuple[str, ...] = ("GEMINI_API_KEY", "GOOGLE_AI_API_KEY")

    # Confidence given to every pair of the generic AI field listing.
    field_listing_confidence: float = 0.95


@dataclass(frozen=True)
class MatchingConfig:
    """Controls canonical resolution of parsed labels."""

    # Fuzzy matching: minimum similarity score (0–100) to accept a match
    fuzzy_threshold: float = 85.0

    # If two candidates are within this delta of each other the match is
    # logged as ambiguous.
    fuzzy_ambiguity_delta: float = 5.0


@dataclass(frozen=True)
class MemoryMatchConfig:
    """Scoring constants of the mapping-memory matcher.

    The overlap threshold and the score scaling were chosen empirically;
    they are exposed here so deployments can tune them.
    """

    exact_score: float = 1.0
    containment_score: float = 0.85
    overlap_threshold: float = 0.60
    overlap_base: float = 0.5
    overlap_scale: float = 0.3

    # Proposals scoring below this are dropped.
    min_confidence: float = 0.5


@dataclass(frozen=True)
class ValidationConfig:
    """Controls validation of extracted canonical figures."""

    # Maximum allowed absolute value; catches obvious unit errors
    max_absolute_value: float = 1e15


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration aggregating all sub-configs."""

    text_layer: TextLayerConfig = field(default_factory=TextLayerConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    memory_match: MemoryMatchConfig = field(default_factory=MemoryMatchConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    # Logging level for the extraction audit trail
    log_level: int = logging.INFO

    # Also write the log to this file when set.
    log_file: Optional[str] = None

    # Optional path to a user-supplied synonym JSON file that is *merged*
    # with the built-in table.
    custom_synonym_path: Optional[Path] = None

    # Where per-tenant mapping-memory files are written.
    memory_directory: Path = Path("mapping-memory")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build a config, overriding selected knobs from the environment."""
        ocr = OcrConfig(
            language=os.getenv("STATEMENT_MAPPER_OCR_LANG", OcrConfig.language),
        )

        ai = AIConfig()
        models_env = os.getenv("STATEMENT_MAPPER_AI_MODELS", "").strip()
        if models_env:
            models = tuple(m.strip() for m in models_env.split(",") if m.strip())
            ai = AIConfig(models=models)

        level_name = os.getenv("STATEMENT_MAPPER_LOG_LEVEL", "INFO").upper()
        log_level = logging.getLevelName(level_name)
        if not isinstance(log_level, int):
            log_level = logging.INFO

        memory_dir = os.getenv("STATEMENT_MAPPER_MEMORY_DIR")
        synonyms = os.getenv("STATEMENT_MAPPER_SYNONYMS")
        log_file = os.getenv("STATEMENT_MAPPER_LOG_FILE") or None

        return cls(
            ocr=ocr,
            ai=ai,
            log_level=log_level,
            log_file=log_file,
            custom_synonym_path=Path(synonyms) if synonyms else None,
            memory_directory=Path(memory_dir) if memory_dir else Path("mapping-memory"),
        )
