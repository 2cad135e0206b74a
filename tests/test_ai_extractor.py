"""
Unit tests for the Gemini extractor.  The provider client is replaced by a
fake that replays scripted answers per model.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from google.genai import errors as genai_errors

from statement_mapper.ai_extractor import (
    GeminiExtractor,
    extract_json_array,
    extract_json_object,
    parse_ai_response,
    parse_field_listing,
    strip_code_fences,
)
from statement_mapper.config import AIConfig
from statement_mapper.errors import AIExtractionError
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import CanonicalField
from statement_mapper.synonym_mapper import SynonymMatcher

GOOD_ANSWER = json.dumps({
    "mapped": {"pbit": 675000, "interest": "1,20,000", "purchases": None},
    "unmapped": [{"label": "Advance from Customers", "value": 45000}],
})


class FakeAPIError(genai_errors.APIError):
    """APIError carrying only a status code."""

    def __init__(self, code: int) -> None:
        Exception.__init__(self, f"{code} scripted failure")
        self.code = code
        self.status = str(code)
        self.message = "scripted failure"
        self.details = {}


class FakeModels:
    def __init__(self, script: Dict[str, Any]) -> None:
        self.script = script
        self.calls: List[str] = []
        self.contents: List[Any] = []

    def generate_content(self, model: str, contents: Any, config: Any = None) -> Any:
        self.calls.append(model)
        self.contents.append(contents)
        outcome = self.script.get(model, "")
        if isinstance(outcome, BaseException):
            raise outcome
        return SimpleNamespace(text=outcome)


class FakeClient:
    def __init__(self, script: Dict[str, Any]) -> None:
        self.models = FakeModels(script)


@pytest.fixture(autouse=True)
def no_env_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_AI_API_KEY", raising=False)


@pytest.fixture
def synonyms() -> SynonymMatcher:
    return SynonymMatcher(normalizer=LabelNormalizer())


def _extractor(synonyms: SynonymMatcher, client: FakeClient, **config: Any) -> GeminiExtractor:
    return GeminiExtractor(
        config=AIConfig(**config),
        synonyms=synonyms,
        client_factory=lambda key: client,
    )


# ======================================================================
# Response parsing
# ======================================================================

class TestParseResponse:
    def test_plain_json(self) -> None:
        response = parse_ai_response(GOOD_ANSWER)
        assert response is not None
        assert response.mapped == {
            CanonicalField.PBIT: 675000.0,
            CanonicalField.INTEREST: 120000.0,
        }
        assert response.unmapped[0].raw_label == "Advance from Customers"
        assert response.unmapped[0].raw_value == "45000"

    def test_code_fences(self) -> None:
        response = parse_ai_response(f"```json\n{GOOD_ANSWER}\n```")
        assert response is not None
        assert response.populated == 2

    def test_prose_around_json(self) -> None:
        response = parse_ai_response(f"Here is the data you asked for: {GOOD_ANSWER} Thanks!")
        assert response is not None
        assert response.populated == 2

    def test_unknown_and_bad_values_dropped(self) -> None:
        text = json.dumps({"mapped": {"net_profit": 5, "pbit": "n/a", "interest": "(2,500)"}})
        response = parse_ai_response(text)
        assert response is not None
        assert response.mapped == {CanonicalField.INTEREST: -2500.0}

    def test_not_json(self) -> None:
        assert parse_ai_response("I could not read this document.") is None
        assert parse_ai_response("") is None

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences("```\n{}\n```") == "{}"

    def test_extract_json_braces_in_strings(self) -> None:
        assert extract_json_object('noise {"a": "}{", "b": 1} tail') == {"a": "}{", "b": 1}


# ======================================================================
# Prompt
# ======================================================================

class TestPrompt:
    def test_contains_schema_and_synonyms(self, synonyms: SynonymMatcher) -> None:
        prompt = _extractor(synonyms, FakeClient({})).build_prompt()
        for canonical in CanonicalField:
            assert canonical.label in prompt
            assert f'"{canonical.value}"' in prompt
        assert "sundry creditors" in prompt
        assert "Trial Balance" in prompt
        assert "most recent year" in prompt

    def test_year_hint(self, synonyms: SynonymMatcher) -> None:
        prompt = _extractor(synonyms, FakeClient({})).build_prompt("2023-24")
        assert '"2023-24"' in prompt
        assert "most recent year" not in prompt

    def test_text_variant_truncated(self, synonyms: SynonymMatcher) -> None:
        extractor = _extractor(synonyms, FakeClient({}), max_prompt_chars=10)
        prompt = extractor.build_prompt(document_text="ABCDEFGHIJKLMNOP")
        assert "ABCDEFGHIJ\n---" in prompt
        assert "KLMNOP" not in prompt


# ======================================================================
# API key resolution
# ======================================================================

class TestApiKey:
    def test_explicit_wins(self, synonyms: SynonymMatcher, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        assert _extractor(synonyms, FakeClient({})).resolve_api_key("call-key") == "call-key"

    def test_env_order(self, synonyms: SynonymMatcher, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_AI_API_KEY", "second")
        extractor = _extractor(synonyms, FakeClient({}))
        assert extractor.resolve_api_key() == "second"
        monkeypatch.setenv("GEMINI_API_KEY", "first")
        assert extractor.resolve_api_key() == "first"

    def test_no_key_skips_call(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": GOOD_ANSWER})
        assert _extractor(synonyms, client).extract_document(b"%PDF-1.4") is None
        assert client.models.calls == []


# ======================================================================
# Model fallback
# ======================================================================

class TestModelFallback:
    def test_first_model_succeeds(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": GOOD_ANSWER})
        response = _extractor(synonyms, client).extract_document(b"%PDF-1.4", api_key="k")
        assert response is not None
        assert response.model == "gemini-2.0-flash"
        assert client.models.calls == ["gemini-2.0-flash"]

    def test_404_falls_through(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({
            "gemini-2.0-flash": FakeAPIError(404),
            "gemini-1.5-flash": GOOD_ANSWER,
        })
        response = _extractor(synonyms, client).extract_document(b"%PDF-1.4", api_key="k")
        assert response is not None
        assert response.model == "gemini-1.5-flash"
        assert client.models.calls == ["gemini-2.0-flash", "gemini-1.5-flash"]

    def test_500_is_fatal(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({
            "gemini-2.0-flash": FakeAPIError(500),
            "gemini-1.5-flash": GOOD_ANSWER,
        })
        with pytest.raises(AIExtractionError) as info:
            _extractor(synonyms, client).extract_document(b"%PDF-1.4", api_key="k")
        assert info.value.status == 500
        assert client.models.calls == ["gemini-2.0-flash"]

    def test_transport_error_falls_through(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({
            "gemini-2.0-flash": httpx.ConnectError("connection refused"),
            "gemini-1.5-flash": GOOD_ANSWER,
        })
        response = _extractor(synonyms, client).extract_document(b"%PDF-1.4", api_key="k")
        assert response is not None
        assert response.model == "gemini-1.5-flash"

    def test_malformed_answers_exhaust_list(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({
            "gemini-2.0-flash": "",
            "gemini-1.5-flash": "sorry, no JSON here",
            "gemini-1.5-pro": "   ",
        })
        assert _extractor(synonyms, client).extract_document(b"%PDF-1.4", api_key="k") is None
        assert len(client.models.calls) == 3

    def test_text_variant_sends_prompt_only(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": GOOD_ANSWER})
        response = _extractor(synonyms, client).extract_text(
            "Profit before interest and tax 6,75,000", api_key="k"
        )
        assert response is not None
        sent = client.models.contents[0]
        assert len(sent) == 1
        assert "Profit before interest and tax 6,75,000" in sent[0]


# ======================================================================
# Generic field listing
# ======================================================================

LISTING_ANSWER = """```json
[
  {"label": "Company Name", "value": "ABC Traders"},
  {"label": "Sundry Creditors", "value": "1,23,456.00"},
  {"label": "sundry creditors", "value": "1,23,456.00"},
  {"label": "Capital", "value": 500000},
  {"label": "Remarks", "value": null},
  {"label": "", "value": "orphan"},
  "not an object",
]
```"""


class TestFieldListing:
    def test_parse_listing(self) -> None:
        fields = parse_field_listing(LISTING_ANSWER, confidence=0.95)
        assert [(f.id, f.label, f.value) for f in fields] == [
            ("ef_1", "Company Name", "ABC Traders"),
            ("ef_2", "Sundry Creditors", "1,23,456.00"),
            ("ef_3", "Capital", "500000"),
        ]
        assert all(f.confidence == 0.95 for f in fields)

    def test_json_array_with_prose(self) -> None:
        assert extract_json_array('Sure! [{"label": "A", "value": "1"},] Done.') == [
            {"label": "A", "value": "1"}
        ]
        assert extract_json_array("no array here") is None
        assert extract_json_array('{"label": "A"}') is None

    def test_sends_pdf_and_listing_prompt(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": LISTING_ANSWER})
        fields = _extractor(synonyms, client).extract_fields(b"%PDF-1.4", api_key="k")
        assert len(fields) == 3
        sent = client.models.contents[0]
        assert len(sent) == 2
        assert "Extract ALL key-value data fields" in sent[1]

    def test_empty_array_falls_through(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({
            "gemini-2.0-flash": "[]",
            "gemini-1.5-flash": LISTING_ANSWER,
        })
        fields = _extractor(synonyms, client).extract_fields(b"%PDF-1.4", api_key="k")
        assert len(fields) == 3
        assert client.models.calls == ["gemini-2.0-flash", "gemini-1.5-flash"]

    def test_configured_confidence(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": LISTING_ANSWER})
        extractor = _extractor(synonyms, client, field_listing_confidence=0.8)
        assert {f.confidence for f in extractor.extract_fields(b"%PDF-1.4", api_key="k")} == {0.8}

    def test_no_key_lists_nothing(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": LISTING_ANSWER})
        assert _extractor(synonyms, client).extract_fields(b"%PDF-1.4") == []
        assert client.models.calls == []

    def test_500_is_fatal(self, synonyms: SynonymMatcher) -> None:
        client = FakeClient({"gemini-2.0-flash": FakeAPIError(500)})
        with pytest.raises(AIExtractionError):
            _extractor(synonyms, client).extract_fields(b"%PDF-1.4", api_key="k")
