"""
Native Text Layer Extractor.

Rebuilds a reading-order text rendering from a PDF's embedded text layer.
``pdfplumber`` yields positioned words; words whose vertical coordinate
differs by no more than ``line_tolerance`` are grouped into one line,
ordered left to right, and lines are joined top to bottom.

No error is raised for empty or unreadable documents: the result is simply
empty text, and the quality classifier decides what happens next.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping

import pdfplumber

from statement_mapper.config import TextLayerConfig
from statement_mapper.logging_setup import get_logger

logger = get_logger("text_layer")


@dataclass
class TextLayer:
    """Text rendering of a document plus the number of pages read."""

    text: str
    page_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def group_words_into_lines(
    words: Iterable[Mapping[str, Any]],
    tolerance: float = 2.0,
) -> List[str]:
    """Group positioned words into text lines.

    Each word is a mapping with ``text``, ``x0`` and ``top`` (``top`` grows
    downwards, as in pdfplumber).  Blank words are ignored.
    """
    items = [
        (float(w.get("top", 0.0)), float(w.get("x0", 0.0)), str(w.get("text", "")).strip())
        for w in words
    ]
    items = [item for item in items if item[2]]
    items.sort(key=lambda item: (item[0], item[1]))

    lines: List[str] = []
    current: list[tuple[float, str]] = []
    current_top: float | None = None

    for top, x0, text in items:
        if current_top is None or abs(top - current_top) <= tolerance:
            if current_top is None:
                current_top = top
            current.append((x0, text))
            continue
        lines.append(" ".join(t for _, t in sorted(current)))
        current = [(x0, text)]
        current_top = top

    if current:
        lines.append(" ".join(t for _, t in sorted(current)))

    return lines


class TextLayerExtractor:
    """Pull the native text layer out of PDF bytes."""

    def __init__(self, config: TextLayerConfig) -> None:
        self._config = config

    def extract(self, document: bytes) -> TextLayer:
        if not document:
            return TextLayer(text="")

        page_texts: list[str] = []
        page_count = 0
        try:
            with pdfplumber.open(io.BytesIO(document)) as pdf:
                for page in pdf.pages[: self._config.max_pages]:
                    page_count += 1
                    words = page.extract_words() or []
                    lines = group_words_into_lines(words, self._config.line_tolerance)
                    if lines:
                        page_texts.append("\n".join(lines))
        except Exception as exc:  # pdfminer raises a zoo of parser errors
            logger.warning("Text layer extraction failed: %s", exc)
            return TextLayer(text="", page_count=page_count)

        text = "\n".join(page_texts)
        logger.info(
            "Text layer: %d chars from %d page(s)", len(text), page_count
        )
        return TextLayer(text=text, page_count=page_count)
