"""
Label & Amount Normalization Layer.

Transforms raw document labels and amounts into a uniform representation so
that downstream matchers operate on clean, comparable strings and numbers.

Label transformations (``normalize_label``, used for synonym / fuzzy lookup):
1. Strip leading / trailing whitespace
2. Lowercase conversion
3. Strip punctuation (except hyphens and '&')
4. Collapse whitespace

Memory labels (``normalize_memory_label``) are only lowercased with
whitespace collapsed, so learned variants keep their punctuation.

Amounts: currency symbols, thousands separators (Western and Indian
grouping), parenthetical negatives and trailing percent signs.
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional, Tuple

from statement_mapper.logging_setup import get_logger

logger = get_logger("normalizer")

CURRENCY_SYMBOLS = "₹$€£¥"

# 1234 | 1,234,567 | 12,34,567, optional decimals
_NUMBER = r"(?:\d{1,3}(?:,\d{2,3})+|\d+)(?:\.\d+)?"

# A value that *is* an amount, end to end.
AMOUNT_RE = re.compile(
    rf"^\(?\s*-?\s*[{CURRENCY_SYMBOLS}]?\s*-?\s*{_NUMBER}\s*%?\s*\)?$"
)

# An amount somewhere inside a line; must not be glued to letters.
AMOUNT_IN_LINE_RE = re.compile(
    rf"(?<![\w.,])[{CURRENCY_SYMBOLS}]?\s*\(?-?\s*{_NUMBER}\)?(?![\w])"
)


def looks_like_amount(value: str) -> bool:
    """Return True if *value* is shaped like a monetary amount."""
    return bool(AMOUNT_RE.match(value.strip()))


class LabelNormalizer:
    """Stateless label / amount normaliser.  All methods are pure functions."""

    _CURRENCY_RE = re.compile(rf"[{CURRENCY_SYMBOLS}]")

    # Parenthetical negative: ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    # Characters to remove from labels (keep letters, digits, spaces, hyphens)
    _PUNCT_RE = re.compile(r"[^a-z0-9\s\-&]")

    # Collapse whitespace
    _MULTI_SPACE_RE = re.compile(r"\s+")

    # ------------------------------------------------------------------ #
    # Labels
    # ------------------------------------------------------------------ #

    def normalize_label(self, raw: str) -> str:
        """Return the canonical-comparable form of a raw label string.

        Parameters
        ----------
        raw:
            The label as found in the document.

        Returns
        -------
        str
            Cleaned label ready for synonym / fuzzy matching.
        """
        text = raw.strip()
        text = text.lower()
        # Replace common unicode dashes with ASCII hyphen
        text = text.replace("–", "-").replace("—", "-")
        text = self._PUNCT_RE.sub("", text)
        text = self._MULTI_SPACE_RE.sub(" ", text).strip()

        logger.debug("normalize_label: %r → %r", raw, text)
        return text

    def normalize_memory_label(self, raw: str) -> str:
        """Lowercase and collapse whitespace; punctuation is kept."""
        return self._MULTI_SPACE_RE.sub(" ", raw.lower()).strip()

    # ------------------------------------------------------------------ #
    # Amounts
    # ------------------------------------------------------------------ #

    def normalize_value(self, raw: Any) -> Tuple[Optional[float], list[str]]:
        """Attempt to parse a numeric financial value.

        Handles:
        * String numbers with commas: ``"1,23,456"``
        * Currency prefixes: ``"₹12000"``
        * Parenthetical negatives: ``"(5000)"``
        * Already-numeric inputs (int / float)

        Returns
        -------
        tuple[float | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []

        if raw is None:
            warnings.append("Value is None")
            return None, warnings

        if isinstance(raw, bool):
            warnings.append("Unexpected value type: bool")
            return None, warnings

        # Already numeric
        if isinstance(raw, (int, float)):
            if math.isnan(raw) or math.isinf(raw):
                warnings.append(f"Non-finite value: {raw!r}")
                return None, warnings
            return float(raw), warnings

        if not isinstance(raw, str):
            warnings.append(f"Unexpected value type: {type(raw).__name__}")
            return None, warnings

        text = raw.strip()
        if not text:
            warnings.append("Value is empty string")
            return None, warnings

        # Currency symbols and inner whitespace ("₹ 1,000", "( 500 )")
        text = self._CURRENCY_RE.sub("", text)
        text = self._MULTI_SPACE_RE.sub("", text)

        # Parenthetical negative
        m = self._PAREN_NEG_RE.match(text)
        if m:
            text = "-" + m.group(1).lstrip("-")

        # Remove commas (Indian / Western formatting)
        text = text.replace(",", "")

        # Percent sign
        if text.endswith("%"):
            text = text[:-1].strip()
            warnings.append("Percent symbol stripped; raw value treated as number")

        try:
            value = float(text)
        except ValueError:
            warnings.append(f"Cannot parse numeric value from: {raw!r}")
            return None, warnings

        if math.isnan(value) or math.isinf(value):
            warnings.append(f"Non-finite value: {raw!r}")
            return None, warnings

        logger.debug("normalize_value: %r → %s (warnings=%s)", raw, value, warnings)
        return value, warnings

    def parse_amount(self, raw: Any) -> Optional[float]:
        """Like ``normalize_value`` but drops the warnings."""
        value, _ = self.normalize_value(raw)
        return value

    def find_amount(self, line: str) -> Optional[float]:
        """Return the first amount appearing in *line*, or ``None``."""
        for match in AMOUNT_IN_LINE_RE.finditer(line):
            value = self.parse_amount(match.group(0))
            if value is not None:
                return value
        return None
