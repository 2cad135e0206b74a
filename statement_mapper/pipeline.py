"""
Pipeline Orchestrator.

The central entry point that wires every extraction layer into an ordered
chain of strategies:

    AI multimodal  →  AI text  →  Parser + canonical resolution
                   →  Synonym matcher  →  Raw-line placeholders

Each strategy implements ``attempt(context)`` and returns a
``FinancialExtractionResult`` or ``None``.  The driver stops at the first
result with at least one populated canonical field.  Document text (text
layer, gated by the quality classifier, else OCR) is computed lazily, once,
and shared by every strategy that needs it.

Usage
-----
>>> from statement_mapper.pipeline import FinancialExtractionPipeline
>>> from statement_mapper.config import PipelineConfig
>>>
>>> pipe = FinancialExtractionPipeline(PipelineConfig())
>>> result = pipe.extract(pdf_bytes, year_hint="2023-24")
>>> print(result.to_dict())
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from statement_mapper.ai_extractor import AIResponse, ClientFactory, GeminiExtractor
from statement_mapper.config import PipelineConfig
from statement_mapper.errors import AIExtractionError, DocumentRejectedError
from statement_mapper.fuzzy_matcher import FuzzyMatcher
from statement_mapper.label_parser import LabelValueParser
from statement_mapper.logging_setup import configure_logging, get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.ocr import OcrEngine
from statement_mapper.quality import QualityClassifier, QualityVerdict
from statement_mapper.schema import (
    CANONICAL_COUNT,
    CanonicalField,
    FieldExtractionResult,
    FinancialExtractionResult,
    UnmappedField,
)
from statement_mapper.synonym_mapper import SynonymMatcher
from statement_mapper.text_layer import TextLayerExtractor
from statement_mapper.validator import ExtractionValidator

logger = get_logger("pipeline")

PDF_MAGIC = b"%PDF-"
PDF_HEADER_WINDOW = 1024

# Parsed fields at or above this confidence count as "structured".
STRUCTURED_MIN_CONFIDENCE = 0.7


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class DocumentText:
    """Best available text of a document and where it came from."""

    text: str
    source: str  # "pdf-text" | "ocr" | "none"
    reason: str = ""
    verdict: Optional[QualityVerdict] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass
class ExtractionContext:
    """Per-document state shared by the strategies of one extraction."""

    document: bytes
    year_hint: str = ""
    api_key: str = ""
    text_loader: Optional[Callable[[bytes], DocumentText]] = None
    notes: List[str] = field(default_factory=list)
    _text: Optional[DocumentText] = field(default=None, repr=False)

    @property
    def ai_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def document_text(self) -> DocumentText:
        """Computed on first access, then cached."""
        if self._text is None:
            if self.text_loader is None:
                self._text = DocumentText(text="", source="none", reason="no text loader")
            else:
                self._text = self.text_loader(self.document)
        return self._text

    def add_note(self, note: str) -> None:
        if note and note not in self.notes:
            self.notes.append(note)


class ExtractionStrategy(Protocol):
    name: str

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        ...


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _result_from_ai(response: AIResponse, strategy: str, via: str) -> FinancialExtractionResult:
    return FinancialExtractionResult(
        fields=dict(response.mapped),
        unmapped_fields=list(response.unmapped),
        note=(
            f"Gemini AI ({response.model}) extracted {response.populated}/"
            f"{CANONICAL_COUNT} fields {via}."
        ),
        strategy=strategy,
    )


class AIMultimodalStrategy:
    """Send the document itself to the model."""

    name = "ai-multimodal"

    def __init__(self, extractor: GeminiExtractor) -> None:
        self._extractor = extractor

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        if not context.ai_configured:
            context.add_note("AI unavailable (no API key configured)")
            return None

        response = self._extractor.extract_document(
            context.document, context.year_hint, context.api_key
        )
        if response is None:
            context.add_note("AI multimodal extraction returned no result")
            return None
        if response.populated == 0:
            context.add_note("AI multimodal extraction found no fields")
            return None
        return _result_from_ai(response, self.name, "from the document")


class AITextStrategy:
    """Send the document text inside the prompt."""

    name = "ai-text"

    def __init__(self, extractor: GeminiExtractor) -> None:
        self._extractor = extractor

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        if not context.ai_configured:
            return None

        doc_text = context.document_text
        if doc_text.is_empty:
            context.add_note("no document text for AI text extraction")
            return None

        response = self._extractor.extract_text(
            doc_text.text, context.year_hint, context.api_key
        )
        if response is None or response.populated == 0:
            context.add_note("AI text extraction found no fields")
            return None
        return _result_from_ai(response, self.name, f"from {doc_text.source} text")


class ParserStrategy:
    """Generic label/value parser with canonical resolution of each label.

    Resolution per parsed label: exact alias lookup first, then fuzzy match
    against every alias.  Ambiguous fuzzy matches are declined.  The first
    parsed field claiming a canonical key wins; everything else with an
    amount lands in ``unmapped_fields``.
    """

    name = "parser"

    def __init__(
        self,
        parser: LabelValueParser,
        synonyms: SynonymMatcher,
        fuzzy: FuzzyMatcher,
        normalizer: LabelNormalizer,
        raw_line_confidence: float,
    ) -> None:
        self._parser = parser
        self._synonyms = synonyms
        self._fuzzy = fuzzy
        self._normalizer = normalizer
        self._raw_line_confidence = raw_line_confidence

    def resolve(self, label: str) -> Optional[CanonicalField]:
        norm_label = self._normalizer.normalize_label(label)
        canonical = self._synonyms.lookup(norm_label)
        if canonical is not None:
            return canonical

        candidate = self._fuzzy.match(norm_label)
        if candidate is None:
            return None
        if candidate.is_ambiguous:
            logger.warning("Declining ambiguous match %r → %r", label, candidate.canonical.value)
            return None
        return candidate.canonical

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        doc_text = context.document_text
        if doc_text.is_empty:
            context.add_note("no document text to parse")
            return None

        parsed = self._parser.parse(doc_text.text, force_raw_fallback=doc_text.source == "ocr")

        fields: Dict[CanonicalField, float] = {}
        unmapped: List[UnmappedField] = []
        for candidate in parsed:
            if candidate.confidence <= self._raw_line_confidence:
                continue
            value = self._normalizer.parse_amount(candidate.value)
            if value is None:
                continue

            canonical = self.resolve(candidate.label)
            if canonical is None or canonical in fields:
                unmapped.append(UnmappedField(raw_label=candidate.label, raw_value=candidate.value))
                continue

            fields[canonical] = value
            logger.info(
                "MAPPED: %r → '%s' = %s [parser, %.2f]",
                candidate.label, canonical.value, value, candidate.confidence,
            )

        if not fields:
            context.add_note("generic parser mapped no canonical fields")
            return None

        return FinancialExtractionResult(
            fields=fields,
            unmapped_fields=unmapped,
            note=(
                f"Parsed {doc_text.source} text; label matching found "
                f"{len(fields)}/{CANONICAL_COUNT} fields."
            ),
            strategy=self.name,
        )


class SynonymStrategy:
    """Line scan of the document text for aliases next to an amount."""

    name = "synonym"

    def __init__(self, synonyms: SynonymMatcher) -> None:
        self._synonyms = synonyms

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        doc_text = context.document_text
        if doc_text.is_empty:
            return None

        fields = self._synonyms.match_text(doc_text.text)
        if not fields:
            context.add_note("synonym matching found no fields")
            return None

        return FinancialExtractionResult(
            fields=fields,
            note=f"Synonym matching found {len(fields)}/{CANONICAL_COUNT} fields.",
            strategy=self.name,
        )


class RawLinesStrategy:
    """Last resort: hand the distinct text lines back for manual review."""

    name = "raw-lines"

    def __init__(self, limit: int, min_length: int) -> None:
        self._limit = limit
        self._min_length = min_length

    def attempt(self, context: ExtractionContext) -> Optional[FinancialExtractionResult]:
        doc_text = context.document_text
        if doc_text.is_empty:
            return None

        lines: List[str] = []
        seen: set[str] = set()
        for raw in doc_text.text.splitlines():
            line = raw.strip()
            if len(line) < self._min_length or line.lower() in seen:
                continue
            seen.add(line.lower())
            lines.append(line)

        if not lines:
            return None
        unmapped = [
            UnmappedField(raw_label=f"Line {idx}", raw_value=line)
            for idx, line in enumerate(lines[: self._limit], start=1)
        ]
        return FinancialExtractionResult(
            unmapped_fields=unmapped,
            note=(
                f"No canonical fields found; returning {len(unmapped)} raw lines "
                f"for manual review."
            ),
            strategy=self.name,
        )


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

class FinancialExtractionPipeline:
    """Orchestrates the full extraction pipeline.

    Parameters
    ----------
    config:
        All tuneable knobs.
    extra_synonyms:
        Additional ``{alias: canonical}`` mappings merged into the table.
    client_factory:
        Optional ``api_key -> client`` hook for the AI provider.
    strategies:
        Replaces the default strategy chain.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        extra_synonyms: Optional[Dict[str, str]] = None,
        client_factory: Optional[ClientFactory] = None,
        strategies: Optional[List[ExtractionStrategy]] = None,
        text_layer: Optional[TextLayerExtractor] = None,
        ocr: Optional[OcrEngine] = None,
    ) -> None:
        self._config = config or PipelineConfig()

        # Bootstrap logging before anything else
        configure_logging(level=self._config.log_level, log_file=self._config.log_file)

        # Construct layers
        self._normalizer = LabelNormalizer()
        self._synonyms = SynonymMatcher(
            normalizer=self._normalizer,
            extra_synonyms=extra_synonyms,
        )
        if self._config.custom_synonym_path:
            self._synonyms.load_custom_synonyms(self._config.custom_synonym_path)

        self._fuzzy = FuzzyMatcher(
            config=self._config.matching,
            table=self._synonyms.table(),
            normalizer=self._normalizer,
        )
        self._text_layer = text_layer or TextLayerExtractor(self._config.text_layer)
        self._quality = QualityClassifier(self._config.quality)
        self._ocr = ocr or OcrEngine(self._config.ocr)
        self._parser = LabelValueParser(self._config.parser)
        self._ai = GeminiExtractor(
            config=self._config.ai,
            synonyms=self._synonyms,
            normalizer=self._normalizer,
            client_factory=client_factory,
        )
        self._validator = ExtractionValidator(self._config.validation)

        self._strategies: List[ExtractionStrategy] = strategies or [
            AIMultimodalStrategy(self._ai),
            AITextStrategy(self._ai),
            ParserStrategy(
                self._parser,
                self._synonyms,
                self._fuzzy,
                self._normalizer,
                self._config.parser.raw_line_confidence,
            ),
            SynonymStrategy(self._synonyms),
            RawLinesStrategy(
                self._config.parser.raw_line_limit,
                self._config.parser.raw_line_min_length,
            ),
        ]

        logger.info(
            "Pipeline initialised: synonyms=%d, strategies=%s, models=%s",
            self._synonyms.size,
            [s.name for s in self._strategies],
            list(self._config.ai.models),
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def extract(
        self,
        document: bytes,
        year_hint: str = "",
        api_key: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> FinancialExtractionResult:
        """Resolve *document* into canonical figures.

        Raises
        ------
        DocumentRejectedError
            For empty or non-PDF input.  Every other failure degrades into a
            lower-confidence result.
        """
        self.validate_document(document, filename)

        context = ExtractionContext(
            document=document,
            year_hint=(year_hint or "").strip(),
            api_key=self._ai.resolve_api_key(api_key),
            text_loader=self.load_text,
        )

        fallback: Optional[FinancialExtractionResult] = None
        for strategy in self._strategies:
            logger.info("Trying strategy '%s'", strategy.name)
            try:
                result = strategy.attempt(context)
            except DocumentRejectedError:
                raise
            except Exception as exc:
                logger.warning("Strategy '%s' failed: %s", strategy.name, exc)
                context.add_note(f"{strategy.name} failed ({exc})")
                continue

            if result is None:
                continue
            if result.populated > 0:
                return self._finish(result, context)
            if fallback is None:
                fallback = result

        if fallback is None:
            fallback = FinancialExtractionResult(
                note="No text could be extracted from the document.",
                strategy="none",
            )
        return self._finish(fallback, context)

    def extract_fields(
        self,
        document: bytes,
        filename: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> FieldExtractionResult:
        """List every label/value pair found in *document* (no canonical mapping).

        Order: a structured text layer, the AI field listing, OCR, and
        finally the raw lines of a text layer that is readable at all.
        """
        self.validate_document(document, filename)

        native = self._text_layer.extract(document).text
        verdict = self._quality.classify(native, strict=True)
        if not verdict.scanned:
            fields = self._parser.parse(native)
            if any(f.confidence >= STRUCTURED_MIN_CONFIDENCE for f in fields):
                return FieldExtractionResult(
                    fields=fields,
                    method="pdf-text",
                    note=f"Extracted {len(fields)} fields from the PDF text layer.",
                )
        else:
            logger.info("Text layer rejected: %s", verdict.reason)

        try:
            ai_fields = self._ai.extract_fields(document, api_key=api_key)
        except AIExtractionError as exc:
            logger.warning("AI field listing failed: %s", exc)
            ai_fields = []
        if ai_fields:
            return FieldExtractionResult(
                fields=ai_fields,
                method="ai",
                note=f"Extracted {len(ai_fields)} fields with AI.",
            )

        ocr_text = self._ocr.extract_text(document)
        if ocr_text.strip():
            fields = self._parser.parse(ocr_text, force_raw_fallback=True)
            if fields:
                return FieldExtractionResult(
                    fields=fields,
                    method="ocr",
                    note=f"Extracted {len(fields)} fields via OCR.",
                )

        if native.strip() and not verdict.image_only:
            fields = self._parser.parse(native, force_raw_fallback=True)
            if fields:
                return FieldExtractionResult(
                    fields=fields,
                    method="raw-lines",
                    note=(
                        "Text layer was not reliable and OCR produced nothing; "
                        "showing raw text lines for review."
                    ),
                )

        return FieldExtractionResult(
            method="none",
            note=(
                "No text could be extracted. The document may be a scanned image "
                "and the OCR toolchain may be unavailable."
            ),
        )

    # ------------------------------------------------------------------ #
    # Building blocks
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_document(document: bytes, filename: Optional[str] = None) -> None:
        """Reject input that can never be processed."""
        if not document:
            raise DocumentRejectedError("Document is empty (0 bytes).")

        if filename:
            ext = os.path.splitext(filename)[1].lower()
            if ext != ".pdf":
                raise DocumentRejectedError(
                    f"Unsupported file type '{ext or filename}'; only PDF documents are accepted."
                )

        if PDF_MAGIC not in document[:PDF_HEADER_WINDOW]:
            raise DocumentRejectedError("Document is not a PDF (no %PDF- header).")

    def load_text(self, document: bytes) -> DocumentText:
        """Text layer if trustworthy, else OCR, else whatever the layer had."""
        native = self._text_layer.extract(document).text
        verdict = self._quality.classify(native, strict=True)
        if not verdict.scanned:
            return DocumentText(
                text=native, source="pdf-text", reason=verdict.reason, verdict=verdict
            )

        logger.info("Text layer rejected (%s); trying OCR", verdict.reason)
        ocr_text = self._ocr.extract_text(document)
        if ocr_text.strip():
            ocr_verdict = self._quality.classify(ocr_text, strict=False)
            if ocr_verdict.scanned:
                logger.warning("OCR text is low quality: %s", ocr_verdict.reason)
            return DocumentText(
                text=ocr_text, source="ocr", reason=ocr_verdict.reason, verdict=ocr_verdict
            )

        if verdict.image_only:
            logger.warning("OCR produced nothing; text layer unusable (%s)", verdict.reason)
            return DocumentText(text="", source="none", reason=verdict.reason, verdict=verdict)

        logger.warning("OCR produced nothing; falling back to the untrusted text layer")
        return DocumentText(
            text=native, source="pdf-text", reason=verdict.reason, verdict=verdict
        )

    def _finish(
        self,
        result: FinancialExtractionResult,
        context: ExtractionContext,
    ) -> FinancialExtractionResult:
        self._validator.validate(result)

        if context.notes and not result.strategy.startswith("ai"):
            result.note = f"{'; '.join(context.notes)}; {result.note}"

        logger.info(
            "Extraction complete: strategy=%s, fields=%d/%d, confidence=%s, unmapped=%d",
            result.strategy,
            result.populated,
            CANONICAL_COUNT,
            result.confidence,
            len(result.unmapped_fields),
        )
        return result

    # ------------------------------------------------------------------ #
    # Utility
    # ------------------------------------------------------------------ #

    def add_synonyms(self, mapping: Dict[str, str]) -> None:
        """Hot-add synonyms after pipeline construction."""
        self._synonyms.add_synonyms(mapping)
        self._fuzzy.refresh(self._synonyms.table())

    @property
    def synonym_count(self) -> int:
        return self._synonyms.size

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self._strategies]
