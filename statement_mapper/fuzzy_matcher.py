"""
Fuzzy Canonical Resolver.

When a parsed label is not an exact alias, this layer uses ``rapidfuzz``
to find the closest alias in the synonym table.  Results are
confidence-gated:

* Matches **below** ``fuzzy_threshold`` are rejected outright.
* If the two best candidates point at *different* canonical fields and are
  within ``fuzzy_ambiguity_delta`` of each other, the result is flagged as
  ambiguous so the caller can decline it instead of silently picking one.

This resolver works on curated aliases only.  Matching against
human-entered labels learned over time is the mapping memory's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from rapidfuzz import fuzz, process

from statement_mapper.config import MatchingConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import CanonicalField

logger = get_logger("fuzzy_matcher")


@dataclass
class FuzzyCandidate:
    """A single candidate returned by the fuzzy resolver."""

    canonical: CanonicalField
    alias: str
    score: float  # 0–100
    is_ambiguous: bool = False


class FuzzyMatcher:
    """Fuzzy-match a normalised label against every known alias.

    Parameters
    ----------
    config:
        Matching thresholds.
    table:
        ``{canonical: [alias, ...]}``, normally ``SynonymMatcher.table()``.
    normalizer:
        Used to bring aliases into the same shape as query labels.
    """

    def __init__(
        self,
        config: MatchingConfig,
        table: Dict[CanonicalField, List[str]],
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._config = config
        self._normalizer = normalizer or LabelNormalizer()
        self._targets: dict[str, CanonicalField] = {}
        self._target_keys: list[str] = []
        self.refresh(table)

    def refresh(self, table: Dict[CanonicalField, List[str]]) -> None:
        """Rebuild the alias pool, e.g. after synonyms were added at runtime."""
        # Normalised alias → canonical field.  The canonical label itself is
        # always part of the pool.
        targets: dict[str, CanonicalField] = {}
        for canonical in CanonicalField:
            for alias in [canonical.label, *table.get(canonical, [])]:
                key = self._normalizer.normalize_label(alias)
                if key:
                    targets.setdefault(key, canonical)

        self._targets = targets
        # Pre-computed list for rapidfuzz ``process.extract``
        self._target_keys = list(targets.keys())
        logger.debug("Fuzzy alias pool: %d entries", len(self._target_keys))

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def match(self, normalised_label: str) -> Optional[FuzzyCandidate]:
        """Find the best canonical field for *normalised_label*.

        Returns
        -------
        FuzzyCandidate | None
            Best match above threshold, or ``None`` if nothing qualifies.
        """
        if not normalised_label:
            return None

        # token_sort_ratio is robust against word-order differences
        # ("creditors sundry" vs "sundry creditors").
        results = process.extract(
            normalised_label,
            self._target_keys,
            scorer=fuzz.token_sort_ratio,
            limit=5,
        )

        if not results:
            logger.debug("No fuzzy candidates for %r", normalised_label)
            return None

        best_key, best_score, _ = results[0]
        best_field = self._targets[best_key]

        if best_score < self._config.fuzzy_threshold:
            logger.info(
                "Fuzzy best for %r is %r (%.1f) below threshold %.1f; rejected",
                normalised_label,
                best_key,
                best_score,
                self._config.fuzzy_threshold,
            )
            return None

        # Ambiguity check: is a different field's alias dangerously close?
        is_ambiguous = False
        for key, score, _ in results[1:]:
            if self._targets[key] is best_field:
                continue
            if best_score - score <= self._config.fuzzy_ambiguity_delta:
                is_ambiguous = True
                logger.warning(
                    "Ambiguous fuzzy match for %r: best=%r (%.1f), "
                    "runner-up=%r (%.1f), delta %.1f ≤ %.1f",
                    normalised_label,
                    best_key,
                    best_score,
                    key,
                    score,
                    best_score - score,
                    self._config.fuzzy_ambiguity_delta,
                )
            break

        logger.info(
            "Fuzzy match: %r → %r via %r (score=%.1f, ambiguous=%s)",
            normalised_label,
            best_field.value,
            best_key,
            best_score,
            is_ambiguous,
        )

        return FuzzyCandidate(
            canonical=best_field,
            alias=best_key,
            score=best_score,
            is_ambiguous=is_ambiguous,
        )
