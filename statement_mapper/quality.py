"""
Scan / Quality Classifier.

Decides whether extracted text is trustworthy prose or noise, gating
whether OCR or AI extraction is needed.

Two composable checks:

1. **Watermark detection**: a handful of short unique lines repeated on
   every page (scanner branding such as "CompanyScan").
2. **Meaningfulness**: the share of "real words" (≥ 3 alphanumeric
   characters, at least one letter) among whitespace tokens and their
   average length.  Strict thresholds apply to native text, lenient ones
   to OCR output, which is noisier but still useful.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from statement_mapper.config import QualityConfig
from statement_mapper.logging_setup import get_logger

logger = get_logger("quality")

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_LETTER_RE = re.compile(r"[A-Za-z]")


@dataclass(frozen=True)
class QualityVerdict:
    scanned: bool
    reason: str
    # No usable text at all (too short, or only a scanner stamp).  Such text
    # is discarded, never offered for review.
    image_only: bool = False


class QualityClassifier:
    """Classify text as trustworthy or scanned/untrustworthy."""

    def __init__(self, config: QualityConfig) -> None:
        self._config = config

    def is_watermark_only(self, text: str) -> bool:
        """True when the text is just a short stamp repeated line after line."""
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return True

        unique = {line.lower() for line in lines}
        if (
            len(unique) <= self._config.watermark_max_unique_lines
            and len(lines) >= self._config.watermark_min_total_lines
        ):
            avg_len = sum(len(u) for u in unique) / len(unique)
            if avg_len < self._config.watermark_max_avg_length:
                return True
        return False

    def is_text_meaningful(self, text: str, strict: bool = True) -> bool:
        """True when enough tokens look like real words.

        Parameters
        ----------
        strict:
            Native text uses the strict thresholds; OCR output the lenient
            ones.
        """
        tokens = text.split()
        if not tokens:
            return False

        real_words = [
            t for t in tokens
            if len(_NON_ALNUM_RE.sub("", t)) >= 3 and _LETTER_RE.search(t)
        ]
        ratio = len(real_words) / len(tokens)
        avg_len = sum(len(w) for w in real_words) / (len(real_words) or 1)

        if strict:
            min_ratio = self._config.strict_min_real_ratio
            min_avg = self._config.strict_min_avg_length
        else:
            min_ratio = self._config.lenient_min_real_ratio
            min_avg = self._config.lenient_min_avg_length

        logger.debug(
            "Meaningfulness: ratio=%.2f (min %.2f), avg_len=%.2f (min %.2f), strict=%s",
            ratio, min_ratio, avg_len, min_avg, strict,
        )
        return ratio >= min_ratio and avg_len >= min_avg

    def classify(self, text: str, strict: bool = True) -> QualityVerdict:
        """Combine both checks into a single verdict."""
        stripped = text.strip()
        if len(stripped) < self._config.min_text_chars:
            return QualityVerdict(True, f"only {len(stripped)} characters of text", image_only=True)
        if self.is_watermark_only(stripped):
            return QualityVerdict(True, "text is a repeated watermark", image_only=True)
        if not self.is_text_meaningful(stripped, strict=strict):
            return QualityVerdict(True, "text has too few real words")
        return QualityVerdict(False, "text is readable")
