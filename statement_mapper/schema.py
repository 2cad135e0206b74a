"""
Canonical financial schema and data models.

Defines the target schema (the ten figures every document is resolved
into) and the typed data structures carried through extraction and the
mapping memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from statement_mapper.normalizer import LabelNormalizer


# ---------------------------------------------------------------------------
# Canonical Schema
# ---------------------------------------------------------------------------

class CanonicalField(str, Enum):
    """
    The closed, ordered set of figures the system produces per document.

    The ``.value`` is the wire key used in JSON; ``.label`` is the
    human-readable name.  Iterating the enum yields the fixed canonical
    order every consumer relies on.
    """

    OWNERS_CAPITAL = "owners_capital"
    TOTAL_LIABILITIES = "total_liabilities"
    PBIT = "pbit"
    INTEREST = "interest"
    ACCOUNTS_PAYABLE = "accounts_payable"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    DEALER_TURNOVER = "dealer_turnover"
    PURCHASES = "purchases"
    CURRENT_ASSETS = "current_assets"
    CURRENT_LIABILITIES = "current_liabilities"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS: dict[CanonicalField, str] = {
    CanonicalField.OWNERS_CAPITAL: "Owners Capital",
    CanonicalField.TOTAL_LIABILITIES: "Total Liabilities",
    CanonicalField.PBIT: "PBIT",
    CanonicalField.INTEREST: "Interest",
    CanonicalField.ACCOUNTS_PAYABLE: "Accounts Payable",
    CanonicalField.ACCOUNTS_RECEIVABLE: "Accounts Receivable",
    CanonicalField.DEALER_TURNOVER: "Turnover",
    CanonicalField.PURCHASES: "Purchases",
    CanonicalField.CURRENT_ASSETS: "Current Assets",
    CanonicalField.CURRENT_LIABILITIES: "Current Liabilities",
}

CANONICAL_KEYS: tuple[str, ...] = tuple(f.value for f in CanonicalField)
CANONICAL_COUNT = len(CANONICAL_KEYS)


def canonical_lookup(name: str) -> Optional[CanonicalField]:
    """Case-insensitive lookup by wire key or display label."""
    _lower = name.strip().lower()
    for f in CanonicalField:
        if f.value == _lower or f.label.lower() == _lower:
            return f
    return None


def confidence_band(populated: int) -> str:
    """Grade an extraction by how many canonical keys it populated."""
    if populated >= 8:
        return "high"
    if populated >= 5:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Extraction Data Models
# ---------------------------------------------------------------------------

@dataclass
class ExtractedField:
    """One candidate label/value pair found in a document."""

    id: str
    label: str
    value: str
    confidence: float  # 0.0 – 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "value": self.value,
            "confidence": round(self.confidence, 2),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedField":
        """Build from a caller-supplied ``{id, label, value}`` object."""
        return cls(
            id=str(data.get("id") or ""),
            label=str(data.get("label") or ""),
            value="" if data.get("value") is None else str(data["value"]),
            confidence=float(data.get("confidence") or 0.0),
        )


@dataclass
class FieldExtractionResult:
    """Outcome of the generic (non-canonical) field listing."""

    fields: list[ExtractedField] = field(default_factory=list)
    method: str = "none"  # "pdf-text" | "ai" | "ocr" | "raw-lines" | "none"
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": [f.to_dict() for f in self.fields],
            "method": self.method,
            "note": self.note,
        }


@dataclass
class UnmappedField:
    """A value found in the document that no canonical field claimed."""

    raw_label: str
    raw_value: str

    def to_dict(self) -> dict[str, str]:
        return {"rawLabel": self.raw_label, "rawValue": self.raw_value}


@dataclass
class FinancialExtractionResult:
    """Externally visible contract of the extraction pipeline."""

    fields: dict[CanonicalField, float] = field(default_factory=dict)
    unmapped_fields: list[UnmappedField] = field(default_factory=list)
    note: str = ""
    strategy: str = "none"

    @property
    def populated(self) -> int:
        return sum(1 for f in CanonicalField if self.fields.get(f) is not None)

    @property
    def confidence(self) -> str:
        return confidence_band(self.populated)

    def ordered_fields(self) -> dict[str, float]:
        """Populated figures keyed by wire key, in canonical order."""
        return {
            f.value: self.fields[f]
            for f in CanonicalField
            if self.fields.get(f) is not None
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": self.ordered_fields(),
            "unmappedFields": [u.to_dict() for u in self.unmapped_fields],
            "confidence": self.confidence,
            "note": self.note,
            "strategy": self.strategy,
        }


# ---------------------------------------------------------------------------
# Mapping Memory Data Models
# ---------------------------------------------------------------------------

TARGET_TYPES = ("field", "table")


def clean_memory_labels(labels: Any) -> list[str]:
    """Normalised, de-duplicated, non-empty labels in first-seen order."""
    normalizer = LabelNormalizer()
    cleaned: list[str] = []
    for raw in labels or []:
        label = normalizer.normalize_memory_label(str(raw))
        if label and label not in cleaned:
            cleaned.append(label)
    return cleaned


@dataclass
class MappingMemoryEntry:
    """All known source-label variants for one canonical target."""

    target_key: str
    target_type: str
    source_labels: list[str] = field(default_factory=list)
    usage_count: int = 0
    last_used: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetKey": self.target_key,
            "targetType": self.target_type,
            "sourceLabels": list(self.source_labels),
            "usageCount": self.usage_count,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MappingMemoryEntry":
        return cls(
            target_key=str(data["targetKey"]),
            target_type=str(data.get("targetType", "field")),
            source_labels=clean_memory_labels(data.get("sourceLabels", [])),
            usage_count=int(data.get("usageCount", 0)),
            last_used=str(data.get("lastUsed", "")),
        )


@dataclass
class AutoApplyMatch:
    """A proposed source-field → target mapping.  Never persisted."""

    source_key: str
    source_label: str
    source_type: str
    target_key: str
    target_type: str
    confidence: float
    usage_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceKey": self.source_key,
            "sourceLabel": self.source_label,
            "sourceType": self.source_type,
            "targetKey": self.target_key,
            "targetType": self.target_type,
            "confidence": round(self.confidence, 4),
        }
