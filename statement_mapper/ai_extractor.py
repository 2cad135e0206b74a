"""
AI Multimodal Extractor.

Sends the raw PDF bytes (or, as a second chance, the document text) to a
Gemini model together with the canonical schema and its synonym hints, and
parses the model's JSON answer into canonical figures plus unmapped values.

The model performs its own recognition, so this path works for scanned and
text-native documents alike.

Failure handling
----------------
* A model rejected with a status in ``AIConfig.fallthrough_status_codes``
  (or failing at the transport level / timing out) is skipped and the next
  model in the priority list is tried.
* Any other provider error raises ``AIExtractionError``.
* An empty answer or unparseable JSON is "no result" for that model.
* The generic field listing asks for every label/value pair as a JSON
  array; an empty array is "no result" as well.
* The model has no notion of certainty; confidence is derived later from the
  number of populated keys only.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from statement_mapper.config import AIConfig
from statement_mapper.errors import AIExtractionError
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import (
    CanonicalField,
    ExtractedField,
    UnmappedField,
    canonical_lookup,
)
from statement_mapper.synonym_mapper import SynonymMatcher

logger = get_logger("ai_extractor")

SECTION_HEADINGS = (
    "Balance Sheet",
    "Profit & Loss Account",
    "P&L",
    "Trading Account",
    "Trial Balance",
    "Income Statement",
)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

FIELD_LISTING_PROMPT = """You are a precise data extraction assistant. Extract ALL key-value data fields from the attached document.

Rules:
1. Extract every label and its value: names, numbers, amounts, dates, IDs, addresses and so on.
2. Keep labels exactly as they appear in the document.
3. Keep values as they appear; do not convert or reformat numbers.
4. Include values from tables as well, using the row and column headings as the label.
5. Return ONLY a valid JSON array. No markdown fences, no explanation.

Return format:
[
  { "label": "Company Name", "value": "ABC Traders" },
  { "label": "Sundry Creditors", "value": "1,23,456.00" }
]"""


# ---------------------------------------------------------------------------
# Response model
# ---------------------------------------------------------------------------

@dataclass
class AIResponse:
    """Validated answer of one model call."""

    mapped: Dict[CanonicalField, float] = field(default_factory=dict)
    unmapped: List[UnmappedField] = field(default_factory=list)
    model: str = ""

    @property
    def populated(self) -> int:
        return len(self.mapped)


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_OPEN_RE.sub("", cleaned)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned.strip()


def extract_json_object(text: str) -> Optional[dict]:
    """Return the first JSON object found in *text*, or ``None``.

    Tries the whole text first, then every ``{`` as the start of a
    brace-balanced candidate.
    """
    stripped = text.strip()
    if not stripped:
        return None

    try:
        parsed = json.loads(stripped)
        return parsed if isinstance(parsed, dict) else None
    except ValueError:
        pass

    for start, ch in enumerate(stripped):
        if ch != "{":
            continue
        candidate = _balanced_object(stripped, start)
        if candidate is not None:
            return candidate
    return None


def _balanced_object(text: str, start: int) -> Optional[dict]:
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : i + 1])
                except ValueError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def extract_json_array(text: str) -> Optional[list]:
    """Return the JSON array spanning the first ``[`` to the last ``]``.

    A second attempt drops trailing commas, which models like to leave
    before a closing bracket.
    """
    cleaned = strip_code_fences(text or "")
    start, end = cleaned.find("["), cleaned.rfind("]")
    if start == -1 or end <= start:
        return None

    candidate = cleaned[start : end + 1]
    for attempt in (candidate, _TRAILING_COMMA_RE.sub(r"\1", candidate)):
        try:
            parsed = json.loads(attempt)
        except ValueError:
            continue
        return parsed if isinstance(parsed, list) else None
    return None


def parse_field_listing(text: str, confidence: float) -> List[ExtractedField]:
    """Turn a field-listing answer into ``ExtractedField`` objects.

    Items without a label or value are skipped, and a pair already seen
    (case-insensitive ``label::value``) is dropped.
    """
    items = extract_json_array(text)
    if items is None:
        return []

    fields: List[ExtractedField] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("label"), str):
            continue
        label = item["label"].strip()
        raw_value = item.get("value")
        value = "" if raw_value is None else str(raw_value).strip()
        if not label or not value:
            continue
        key = f"{label.lower()}::{value.lower()}"
        if key in seen:
            continue
        seen.add(key)
        fields.append(
            ExtractedField(
                id=f"ef_{len(fields) + 1}",
                label=label,
                value=value,
                confidence=confidence,
            )
        )
    return fields


def parse_ai_response(
    text: str,
    normalizer: Optional[LabelNormalizer] = None,
) -> Optional[AIResponse]:
    """Parse and validate a model answer.

    Unknown keys, nulls, non-numeric and non-finite values are dropped; a
    canonical key the model left out is simply absent.  Returns ``None``
    when no JSON object can be recovered.
    """
    normalizer = normalizer or LabelNormalizer()
    payload = extract_json_object(strip_code_fences(text or ""))
    if payload is None:
        return None

    response = AIResponse()

    mapped = payload.get("mapped")
    if isinstance(mapped, dict):
        for key, raw_value in mapped.items():
            canonical = canonical_lookup(str(key))
            if canonical is None:
                logger.debug("Dropping unknown key from AI answer: %r", key)
                continue
            value, warnings = normalizer.normalize_value(raw_value)
            if value is None:
                logger.debug("Dropping %s=%r from AI answer: %s", key, raw_value, warnings)
                continue
            response.mapped[canonical] = value
    elif mapped is not None:
        logger.warning("AI answer has a non-object 'mapped' (%s)", type(mapped).__name__)

    unmapped = payload.get("unmapped")
    if isinstance(unmapped, list):
        for item in unmapped:
            if not isinstance(item, dict):
                continue
            label = str(item.get("label") or "").strip()
            raw_value = item.get("value")
            if not label or raw_value is None:
                continue
            response.unmapped.append(UnmappedField(raw_label=label, raw_value=str(raw_value)))

    return response


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

ClientFactory = Callable[[str], Any]


class GeminiExtractor:
    """Prompt construction and model calls for canonical-figure extraction.

    Parameters
    ----------
    config:
        Model list, timeouts and prompt limits.
    synonyms:
        Source of the alias hints embedded in the prompt.
    client_factory:
        ``api_key -> client`` hook; defaults to ``google.genai.Client``.
    """

    def __init__(
        self,
        config: AIConfig,
        synonyms: SynonymMatcher,
        normalizer: Optional[LabelNormalizer] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._config = config
        self._synonyms = synonyms
        self._normalizer = normalizer or LabelNormalizer()
        self._client_factory = client_factory or self._default_client

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def resolve_api_key(self, explicit: Optional[str] = None) -> str:
        """Explicit key first, then the configured environment variables."""
        if explicit and explicit.strip():
            return explicit.strip()
        for name in self._config.api_key_env_vars:
            value = os.getenv(name, "").strip()
            if value:
                return value
        return ""

    def _default_client(self, api_key: str) -> Any:
        timeout_ms = int(self._config.timeout_seconds * 1000)
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )

    # ------------------------------------------------------------------ #
    # Prompt
    # ------------------------------------------------------------------ #

    def build_prompt(self, year_hint: str = "", document_text: Optional[str] = None) -> str:
        """Build the extraction prompt.

        With ``document_text`` the prompt carries the (truncated) text
        itself; without it the prompt accompanies an attached document.
        """
        field_lines = "\n".join(
            f'  - "{canonical.label}" (key "{canonical.value}"; also known as: '
            f'{" / ".join(self._synonyms.aliases(canonical))})'
            for canonical in CanonicalField
        )

        year_hint = (year_hint or "").strip()
        if year_hint:
            year_section = (
                "The document may contain figures for multiple years. Extract values "
                f'only for the financial year "{year_hint}". If the year appears in a '
                "column header, use that column."
            )
        else:
            year_section = (
                "If the document has multiple years, extract the most recent year's figures."
            )

        source = (
            "the document text below"
            if document_text is not None
            else "the attached document. It may be a scanned image, so read it carefully"
        )

        example_mapped = ",\n".join(
            f'    "{canonical.value}": 0' for canonical in CanonicalField
        )

        prompt = f"""You are an expert financial data extractor for audited financial statements (Trial Balance, Profit & Loss, Balance Sheet, Trading Account).

{year_section}

Extract exactly these {len(CanonicalField)} financial figures from {source}:
{field_lines}

Rules:
1. Match each field using its primary name OR any of its known aliases; all comparisons are case-insensitive.
2. The document may use these section headings: {", ".join(SECTION_HEADINGS)}. Search all sections.
3. Strip thousands separators from numbers. Convert bracket notation (1,23,456) to -123456. Remove currency symbols such as ₹ / $ / £ / €.
4. Return ONLY a valid JSON object. No markdown fences, no explanation.
5. Omit a key from "mapped" if you cannot find a reliable value for it.
6. Place numeric values you found but could not match to these fields in "unmapped".

Return format (strict JSON):
{{
  "mapped": {{
{example_mapped}
  }},
  "unmapped": [
    {{ "label": "Advance from Customers", "value": 45000 }}
  ]
}}"""

        if document_text is not None:
            prompt += (
                "\n\nDOCUMENT TEXT:\n---\n"
                f"{document_text[: self._config.max_prompt_chars]}\n---"
            )
        return prompt

    # ------------------------------------------------------------------ #
    # Extraction
    # ------------------------------------------------------------------ #

    def extract_document(
        self,
        document: bytes,
        year_hint: str = "",
        api_key: Optional[str] = None,
    ) -> Optional[AIResponse]:
        """Send the PDF itself as an inline attachment."""
        prompt = self.build_prompt(year_hint)
        contents = [
            types.Part.from_bytes(data=document, mime_type="application/pdf"),
            prompt,
        ]
        result = self._generate(contents, api_key, "multimodal", self._parse_canonical)
        return self._with_model(result)

    def extract_text(
        self,
        text: str,
        year_hint: str = "",
        api_key: Optional[str] = None,
    ) -> Optional[AIResponse]:
        """Send the document text inside the prompt."""
        prompt = self.build_prompt(year_hint, document_text=text)
        result = self._generate([prompt], api_key, "text", self._parse_canonical)
        return self._with_model(result)

    def extract_fields(
        self,
        document: bytes,
        api_key: Optional[str] = None,
    ) -> List[ExtractedField]:
        """List every label/value pair of the attached PDF, unmapped."""
        contents = [
            types.Part.from_bytes(data=document, mime_type="application/pdf"),
            FIELD_LISTING_PROMPT,
        ]
        result = self._generate(contents, api_key, "field-listing", self._parse_listing)
        if result is None:
            return []
        model, fields = result
        logger.info("Gemini %s listed %d fields", model, len(fields))
        return fields

    def _parse_canonical(self, text: str) -> Optional[AIResponse]:
        return parse_ai_response(text, self._normalizer)

    def _parse_listing(self, text: str) -> List[ExtractedField]:
        return parse_field_listing(text, self._config.field_listing_confidence)

    @staticmethod
    def _with_model(result: Optional[Tuple[str, AIResponse]]) -> Optional[AIResponse]:
        if result is None:
            return None
        model, parsed = result
        parsed.model = model
        logger.info(
            "Gemini %s extraction mapped %d/%d fields",
            model, parsed.populated, len(CanonicalField),
        )
        return parsed

    def _generate(
        self,
        contents: List[Any],
        api_key: Optional[str],
        mode: str,
        parse: Callable[[str], Any],
    ) -> Optional[Tuple[str, Any]]:
        """Try each model in turn; ``(model, parsed)`` of the first usable answer."""
        key = self.resolve_api_key(api_key)
        if not key:
            logger.info("No AI API key configured; skipping %s extraction", mode)
            return None

        client = self._client_factory(key)
        generation_config = types.GenerateContentConfig(
            temperature=self._config.temperature,
        )

        for model in self._config.models:
            try:
                response = client.models.generate_content(
                    model=model,
                    contents=contents,
                    config=generation_config,
                )
            except genai_errors.APIError as exc:
                status = int(getattr(exc, "code", 0) or 0)
                if status in self._config.fallthrough_status_codes:
                    logger.warning(
                        "Gemini %s %s rejected (%d): %s; trying next model",
                        model, mode, status, exc,
                    )
                    continue
                raise AIExtractionError(
                    f"Gemini {model} {mode} extraction failed ({status}): {exc}",
                    status=status,
                ) from exc
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                logger.warning(
                    "Gemini %s %s transport failure: %s; trying next model", model, mode, exc
                )
                continue

            text = (getattr(response, "text", None) or "").strip()
            if not text:
                logger.warning("Gemini %s returned an empty %s answer", model, mode)
                continue

            logger.debug("Gemini %s %s answer (first 300): %s", model, mode, text[:300])

            parsed = parse(text)
            if not parsed:
                logger.warning("Gemini %s %s answer has no usable JSON", model, mode)
                continue

            return model, parsed

        logger.warning("All Gemini models exhausted for %s extraction", mode)
        return None
