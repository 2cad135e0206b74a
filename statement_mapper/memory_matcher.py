"""
Mapping-Memory Matcher.

Proposes ``source field -> canonical target`` assignments for a new
document from a tenant's mapping memory.

Scoring of one field label against one memory entry (best over the entry's
known labels):

* exact match after normalisation: ``exact_score`` (1.0), short-circuits
* one label contains the other: ``containment_score`` (0.85)
* word overlap ``|A ∩ B| / max(|A|, |B|)`` at or above
  ``overlap_threshold``: ``overlap_base + sim * overlap_scale``

Each field keeps its best entry; each target keeps its best field.  The
result is a pure function of its inputs.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from statement_mapper.config import MemoryMatchConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.memory_store import MappingMemoryStore
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import AutoApplyMatch, ExtractedField, MappingMemoryEntry

logger = get_logger("memory_matcher")

_WORD_SPLIT_RE = re.compile(r"[\s\-_:,./]+")
_normalizer = LabelNormalizer()


def _words(label: str) -> set[str]:
    return {w for w in _WORD_SPLIT_RE.split(_normalizer.normalize_memory_label(label)) if w}


def word_similarity(a: str, b: str) -> float:
    """Share of distinct words the two labels have in common (0..1)."""
    words_a = _words(a)
    words_b = _words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def match_score(
    label: str,
    entry: MappingMemoryEntry,
    config: Optional[MemoryMatchConfig] = None,
) -> float:
    """Best score of *label* against the known labels of *entry*."""
    config = config or MemoryMatchConfig()
    normalised = _normalizer.normalize_memory_label(label)
    if not normalised:
        return 0.0

    best = 0.0
    for known in entry.source_labels:
        if not known:
            continue
        if normalised == known:
            return config.exact_score

        if normalised in known or known in normalised:
            best = max(best, config.containment_score)
            continue

        sim = word_similarity(normalised, known)
        if sim >= config.overlap_threshold:
            best = max(best, config.overlap_base + sim * config.overlap_scale)
    return best


def auto_apply(
    store: MappingMemoryStore,
    fields: Iterable[ExtractedField],
    config: Optional[MemoryMatchConfig] = None,
) -> List[AutoApplyMatch]:
    """Propose mappings for *fields*, highest confidence first.

    Ties for a field go to the entry with the higher usage count, then to
    the entry seen first.  Each target appears at most once.
    """
    config = config or MemoryMatchConfig()
    fields = list(fields)
    if not store.entries or not fields:
        return []

    candidates: List[AutoApplyMatch] = []
    for f in fields:
        best: Optional[AutoApplyMatch] = None
        normalised = _normalizer.normalize_memory_label(f.label)

        for entry in store.entries:
            score = match_score(f.label, entry, config)
            if score < config.min_confidence:
                continue
            if (
                best is None
                or score > best.confidence
                or (score == best.confidence and entry.usage_count > best.usage_count)
            ):
                best = AutoApplyMatch(
                    source_key=f.id,
                    source_label=f.label,
                    source_type=entry.target_type if normalised in entry.source_labels else "field",
                    target_key=entry.target_key,
                    target_type=entry.target_type,
                    confidence=score,
                    usage_count=entry.usage_count,
                )

        if best is not None:
            candidates.append(best)

    by_target: dict[str, AutoApplyMatch] = {}
    for c in candidates:
        existing = by_target.get(c.target_key)
        if (
            existing is None
            or c.confidence > existing.confidence
            or (c.confidence == existing.confidence and c.usage_count > existing.usage_count)
        ):
            by_target[c.target_key] = c

    matches = sorted(by_target.values(), key=lambda m: -m.confidence)
    logger.info(
        "Auto-apply for tenant %r: %d field(s) → %d match(es)",
        store.tenant_id, len(fields), len(matches),
    )
    return matches
