"""
Generic Label/Value Parser.

Turns an arbitrary text stream into ``ExtractedField`` candidates using
layout heuristics.  Each line is tried against an ordered list of patterns
and the first hit wins:

====================  ==========================  ==========
Pattern               Example                     Confidence
====================  ==========================  ==========
colon                 ``Label: Value``            0.90
trailing numeric      ``Label    12,345.67``      0.82
wide gap              ``Label    Value``          0.78
alternate separator   ``Key = Value / Key | V``   0.78
====================  ==========================  ==========

A second pass pairs adjacent lines (label on one line, value on the next)
at 0.72.  When nothing structured is found the non-empty lines themselves
are returned as low-confidence placeholders so a reviewer always has
something to work with.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from statement_mapper.config import ParserConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import CURRENCY_SYMBOLS, looks_like_amount
from statement_mapper.schema import ExtractedField

logger = get_logger("label_parser")

_LABEL_CHARS = r"A-Za-z0-9_\s\-/().&'\",%#@"

_COLON_RE = re.compile(rf"^([A-Za-z][{_LABEL_CHARS}]{{1,120}})\s*:\s*(.+)$")
_TRAILING_NUMBER_RE = re.compile(
    rf"^([A-Za-z][{_LABEL_CHARS}]{{2,120}})\s+"
    rf"([{CURRENCY_SYMBOLS}]?\s?\(?-?\d[\d,]*(?:\.\d+)?\)?\s?%?)$"
)
_WIDE_GAP_RE = re.compile(rf"^([A-Za-z][{_LABEL_CHARS}]{{1,120}}?)\s{{2,}}(.+)$")
_ALT_SEP_RE = re.compile(rf"^([A-Za-z][{_LABEL_CHARS}]{{1,120}})\s*[=|]\s*(.+)$")

_LABEL_LINE_RE = re.compile(rf"^[A-Za-z][{_LABEL_CHARS}:]*$")
_SYMBOLIC_RE = re.compile(r"^[\d\W_]+$")
_TEXT_VALUE_RE = re.compile(
    rf"^[A-Za-z0-9{CURRENCY_SYMBOLS}][A-Za-z0-9_\-/().,:#'\"\s]{{1,300}}$"
)

_SPACES_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[:\-]+$")


def sanitize_label(label: str) -> str:
    label = _SPACES_RE.sub(" ", label)
    return _TRAILING_PUNCT_RE.sub("", label).strip()


def sanitize_value(value: str) -> str:
    return _SPACES_RE.sub(" ", value).strip()


def is_likely_label(line: str) -> bool:
    """A label starts with a letter, is 2–150 chars, not purely symbolic."""
    t = line.strip()
    if len(t) < 2 or len(t) > 150:
        return False
    if _SYMBOLIC_RE.match(t):
        return False
    return bool(_LABEL_LINE_RE.match(t))


def is_likely_value(line: str) -> bool:
    """An amount, or plausible short text."""
    t = line.strip()
    if not t or len(t) > 300:
        return False
    if looks_like_amount(t):
        return True
    return bool(_TEXT_VALUE_RE.match(t))


class LabelValueParser:
    """Layout-heuristic parser for plain text."""

    def __init__(self, config: ParserConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------ #
    # Single line
    # ------------------------------------------------------------------ #

    def parse_line(self, line: str) -> Optional[Tuple[str, str, float]]:
        """Return ``(label, value, confidence)`` for the first matching pattern."""
        trimmed = line.strip()
        if len(trimmed) < 3:
            return None

        m = _COLON_RE.match(trimmed)
        if m:
            return (
                sanitize_label(m.group(1)),
                sanitize_value(m.group(2)),
                self._config.colon_confidence,
            )

        m = _TRAILING_NUMBER_RE.match(trimmed)
        if m and looks_like_amount(m.group(2)):
            return (
                sanitize_label(m.group(1)),
                sanitize_value(m.group(2)),
                self._config.trailing_number_confidence,
            )

        m = _WIDE_GAP_RE.match(trimmed)
        if m and is_likely_value(m.group(2)):
            return (
                sanitize_label(m.group(1)),
                sanitize_value(m.group(2)),
                self._config.wide_gap_confidence,
            )

        m = _ALT_SEP_RE.match(trimmed)
        if m:
            return (
                sanitize_label(m.group(1)),
                sanitize_value(m.group(2)),
                self._config.alt_separator_confidence,
            )

        return None

    # ------------------------------------------------------------------ #
    # Whole text
    # ------------------------------------------------------------------ #

    def parse(self, text: str, force_raw_fallback: bool = False) -> List[ExtractedField]:
        """Extract candidate fields from *text*.

        Parameters
        ----------
        force_raw_fallback:
            Relax the raw-line fallback limits; used for OCR output where
            showing any recognised text beats showing nothing.
        """
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        fields: List[ExtractedField] = []
        seen: set[str] = set()

        def add(label: str, value: str, confidence: float) -> None:
            key = f"{label.lower()}::{value.lower()}"
            if not label or not value or key in seen:
                return
            seen.add(key)
            fields.append(
                ExtractedField(
                    id=f"ef_{len(fields) + 1}",
                    label=label,
                    value=value,
                    confidence=confidence,
                )
            )

        for line in lines:
            candidate = self.parse_line(line)
            if candidate is not None:
                add(*candidate)

        for current, following in zip(lines, lines[1:]):
            if ":" in following or current.lower() == following.lower():
                continue
            if not is_likely_label(current) or not is_likely_value(following):
                continue
            add(
                sanitize_label(current),
                sanitize_value(following),
                self._config.two_line_confidence,
            )

        if not fields and lines:
            if force_raw_fallback:
                min_len = self._config.forced_raw_line_min_length
                limit = self._config.forced_raw_line_limit
            else:
                min_len = self._config.raw_line_min_length
                limit = self._config.raw_line_limit

            raw_lines = [line for line in lines if len(line) >= min_len][:limit]
            raw_seen: set[str] = set()
            for line in raw_lines:
                value = sanitize_value(line)
                if value.lower() in raw_seen:
                    continue
                raw_seen.add(value.lower())
                fields.append(
                    ExtractedField(
                        id=f"ef_{len(fields) + 1}",
                        label=f"Line {len(fields) + 1}",
                        value=value,
                        confidence=self._config.raw_line_confidence,
                    )
                )
            logger.info("No structured fields; returning %d raw lines", len(fields))
        else:
            logger.info("Parsed %d structured fields from %d lines", len(fields), len(lines))

        return fields
