"""
Synonym Table & Deterministic Synonym Matcher.

A curated, configurable list of alias phrases for each canonical field.
The table seeds both the AI prompt and the deterministic fallback matcher;
it is read-only at extraction time and never learned automatically (that
is the job of the mapping memory).

Design decisions
----------------
* Aliases are kept in a fixed order per field; the canonical field order
  decides which field claims a line when several aliases hit.
* Lookups of a whole, already normalised label are O(1) hash-table hits.
* The line scanner is intentionally conservative: plain case-insensitive
  substring tests, no fuzzy logic.
* Users can extend at runtime via ``load_custom_synonyms`` (JSON file) or
  ``add_synonym`` / ``add_synonyms``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import CanonicalField, canonical_lookup

logger = get_logger("synonym_mapper")


# ---------------------------------------------------------------------------
# Built-in synonym table
# ---------------------------------------------------------------------------
# Convention: aliases are lowercase, ordered most-specific first.  No alias
# of a field may be a substring of another field's primary alias.

SYNONYM_TABLE: Dict[CanonicalField, List[str]] = {
    CanonicalField.OWNERS_CAPITAL: [
        "owners capital",
        "owner's capital",
        "proprietor's capital",
        "proprietors capital",
        "partners capital",
        "partners' capital",
        "capital account",
        "share capital",
        "shareholders funds",
        "shareholders' funds",
        "owners funds",
        "owners equity",
        "net worth",
        "total equity",
    ],
    CanonicalField.TOTAL_LIABILITIES: [
        "total liabilities",
        "total outside liabilities",
        "total external liabilities",
        "total debts",
    ],
    CanonicalField.PBIT: [
        "pbit",
        "profit before interest and tax",
        "profit before interest & tax",
        "profit before interest and taxes",
        "earnings before interest and tax",
        "ebit",
        "operating profit",
    ],
    CanonicalField.INTEREST: [
        "interest",
        "finance cost",
        "finance costs",
        "finance charges",
        "bank charges and interest",
    ],
    CanonicalField.ACCOUNTS_PAYABLE: [
        "accounts payable",
        "sundry creditors",
        "trade payables",
        "trade creditors",
        "creditors",
        "bills payable",
    ],
    CanonicalField.ACCOUNTS_RECEIVABLE: [
        "accounts receivable",
        "sundry debtors",
        "trade receivables",
        "trade debtors",
        "debtors",
        "bills receivable",
    ],
    CanonicalField.DEALER_TURNOVER: [
        "dealer turnover",
        "turnover",
        "revenue from operations",
        "net sales",
        "total sales",
        "sales account",
        "sales revenue",
        "gross receipts",
    ],
    CanonicalField.PURCHASES: [
        "purchases",
        "purchase of stock-in-trade",
        "purchase of stock in trade",
        "purchase of traded goods",
        "purchase account",
    ],
    CanonicalField.CURRENT_ASSETS: [
        "current assets",
        "total current assets",
        "current assets, loans and advances",
    ],
    CanonicalField.CURRENT_LIABILITIES: [
        "current liabilities",
        "total current liabilities",
        "current liabilities and provisions",
        "current liabilities & provisions",
        "short-term liabilities",
    ],
}


class SynonymMatcher:
    """Alias table with exact-label lookup and a line-scanning matcher.

    Parameters
    ----------
    normalizer:
        An instance of ``LabelNormalizer`` used to normalise incoming labels,
        user-supplied aliases, and to parse amounts found in lines.
    extra_synonyms:
        Optional ``{alias: canonical}`` dict merged in at construction time.
    """

    def __init__(
        self,
        normalizer: LabelNormalizer,
        extra_synonyms: Optional[Dict[str, str]] = None,
    ) -> None:
        self._normalizer = normalizer
        self._aliases: Dict[CanonicalField, List[str]] = {
            f: list(aliases) for f, aliases in SYNONYM_TABLE.items()
        }
        self._index: Dict[str, CanonicalField] = {}
        for canonical, aliases in self._aliases.items():
            for alias in aliases:
                self._index.setdefault(self._normalizer.normalize_label(alias), canonical)

        if extra_synonyms:
            self.add_synonyms(extra_synonyms)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def lookup(self, normalised_label: str) -> Optional[CanonicalField]:
        """Return the canonical field whose alias equals the label exactly.

        Parameters
        ----------
        normalised_label:
            A label that has **already** been through ``normalize_label``.
        """
        result = self._index.get(normalised_label)
        if result is not None:
            logger.info(
                "Synonym hit: %r → %r (confidence=100)", normalised_label, result.value
            )
        return result

    def aliases(self, canonical: CanonicalField) -> List[str]:
        """Return a copy of the ordered aliases of one field."""
        return list(self._aliases[canonical])

    def table(self) -> Dict[CanonicalField, List[str]]:
        """Return a copy of the whole table, in canonical order."""
        return {f: list(self._aliases[f]) for f in CanonicalField}

    # ------------------------------------------------------------------ #
    # Line scanning
    # ------------------------------------------------------------------ #

    def match_text(self, text: str) -> Dict[CanonicalField, float]:
        """Scan *text* line by line for alias hits next to an amount.

        Every line with a detectable amount is a candidate.  Fields are
        visited in canonical order; for each field the first unclaimed line
        containing any of its aliases (case-insensitive substring) wins, and
        that line cannot be claimed by a later field.
        """
        candidates: list[tuple[str, float]] = []
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            amount = self._normalizer.find_amount(line)
            if amount is not None:
                candidates.append((line.lower(), amount))

        result: Dict[CanonicalField, float] = {}
        claimed: set[int] = set()

        for canonical in CanonicalField:
            aliases = [a.lower() for a in self._aliases[canonical]]
            for idx, (line, amount) in enumerate(candidates):
                if idx in claimed:
                    continue
                if any(alias in line for alias in aliases):
                    result[canonical] = amount
                    claimed.add(idx)
                    logger.info(
                        "Synonym line match: %r → %s = %s", line, canonical.value, amount
                    )
                    break

        logger.info(
            "Synonym matching found %d/%d fields in %d amount lines",
            len(result),
            len(CanonicalField),
            len(candidates),
        )
        return result

    # ------------------------------------------------------------------ #
    # Extension API
    # ------------------------------------------------------------------ #

    def add_synonym(self, variant: str, canonical: Union[str, CanonicalField]) -> None:
        """Register a single new alias.

        Raises
        ------
        ValueError
            If ``canonical`` is not a recognised canonical key or label.
        """
        if isinstance(canonical, CanonicalField):
            target = canonical
        else:
            found = canonical_lookup(canonical)
            if found is None:
                raise ValueError(
                    f"Unknown canonical field {canonical!r}. "
                    f"Must be one of the CanonicalField keys."
                )
            target = found

        alias = variant.strip().lower()
        if not alias:
            return

        nk = self._normalizer.normalize_label(alias)
        if nk in self._index and self._index[nk] is not target:
            logger.warning(
                "Overwriting synonym %r: %r → %r",
                nk,
                self._index[nk].value,
                target.value,
            )
        self._index[nk] = target
        if alias not in self._aliases[target]:
            self._aliases[target].append(alias)
        logger.debug("Added synonym: %r → %r", alias, target.value)

    def add_synonyms(self, mapping: Dict[str, str]) -> None:
        """Bulk-add aliases from a ``{variant: canonical}`` dict."""
        for variant, canonical in mapping.items():
            self.add_synonym(variant, canonical)

    def load_custom_synonyms(self, path: Path) -> int:
        """Load aliases from a JSON file (``{variant: canonical}``).

        Returns the number of entries added.
        """
        with open(path, encoding="utf-8") as fh:
            data: Dict[str, str] = json.load(fh)
        self.add_synonyms(data)
        logger.info("Loaded %d custom synonyms from %s", len(data), path)
        return len(data)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return len(self._index)
