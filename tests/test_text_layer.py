"""
Unit tests for the native text-layer extractor.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from statement_mapper import text_layer
from statement_mapper.config import TextLayerConfig
from statement_mapper.text_layer import TextLayerExtractor, group_words_into_lines


def _word(text: str, x0: float, top: float) -> Dict[str, Any]:
    return {"text": text, "x0": x0, "top": top}


class _FakePage:
    def __init__(self, words: List[Dict[str, Any]]) -> None:
        self._words = words

    def extract_words(self) -> List[Dict[str, Any]]:
        return self._words


class _FakePdf:
    def __init__(self, pages: List[_FakePage]) -> None:
        self.pages = pages

    def __enter__(self) -> "_FakePdf":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


# ======================================================================
# Line grouping
# ======================================================================

class TestGroupWords:
    def test_same_line_within_tolerance(self) -> None:
        words = [
            _word("Capital", 10, 100),
            _word("5,00,000", 200, 101.5),
            _word("Interest", 10, 120),
            _word("Sundry", 5, 100.5),
        ]
        assert group_words_into_lines(words, tolerance=2.0) == [
            "Sundry Capital 5,00,000",
            "Interest",
        ]

    def test_split_beyond_tolerance(self) -> None:
        words = [_word("Capital", 10, 100), _word("500", 200, 102.5)]
        assert group_words_into_lines(words, tolerance=2.0) == ["Capital", "500"]

    def test_blank_words_ignored(self) -> None:
        words = [_word("  ", 10, 100), _word("Purchases", 20, 100)]
        assert group_words_into_lines(words) == ["Purchases"]

    def test_empty(self) -> None:
        assert group_words_into_lines([]) == []


# ======================================================================
# Extraction
# ======================================================================

class TestExtractor:
    def test_empty_bytes(self) -> None:
        layer = TextLayerExtractor(TextLayerConfig()).extract(b"")
        assert layer.is_empty
        assert layer.page_count == 0

    def test_unparseable_document(self) -> None:
        layer = TextLayerExtractor(TextLayerConfig()).extract(b"%PDF-1.4 not really a pdf")
        assert layer.text == ""

    def test_pages_joined_top_to_bottom(self, monkeypatch: pytest.MonkeyPatch) -> None:
        pdf = _FakePdf([
            _FakePage([_word("Turnover", 10, 50), _word("98,00,000", 300, 50.4)]),
            _FakePage([_word("Purchases", 10, 50), _word("72,00,000", 300, 51)]),
        ])
        monkeypatch.setattr(text_layer.pdfplumber, "open", lambda stream: pdf)

        layer = TextLayerExtractor(TextLayerConfig()).extract(b"%PDF-1.4")
        assert layer.text == "Turnover 98,00,000\nPurchases 72,00,000"
        assert layer.page_count == 2

    def test_page_cap(self, monkeypatch: pytest.MonkeyPatch) -> None:
        pdf = _FakePdf([_FakePage([_word(f"Page{i}", 10, 50)]) for i in range(5)])
        monkeypatch.setattr(text_layer.pdfplumber, "open", lambda stream: pdf)

        layer = TextLayerExtractor(TextLayerConfig(max_pages=2)).extract(b"%PDF-1.4")
        assert layer.text == "Page0\nPage1"
        assert layer.page_count == 2
