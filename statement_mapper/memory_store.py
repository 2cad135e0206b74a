"""
Mapping-Memory Store.

Per-tenant record of which source-label variants a human has confirmed for
each canonical target.  Every confirmation makes the rule stronger
(``usage_count``) and may add a new label variant; the matcher in
``memory_matcher`` later proposes mappings for new documents from it.

``MappingMemoryStore`` is a plain in-memory object with pure operations.
``MappingMemoryRepository`` persists one JSON file per tenant and serialises
read-modify-write cycles per tenant.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from statement_mapper.errors import InvalidInputError
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import TARGET_TYPES, ExtractedField, MappingMemoryEntry

logger = get_logger("memory_store")

_TENANT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_normalizer = LabelNormalizer()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_target_type(target_type: str) -> str:
    if target_type not in TARGET_TYPES:
        raise InvalidInputError(
            f"targetType must be one of {list(TARGET_TYPES)}, got {target_type!r}"
        )
    return target_type


@dataclass
class ConfirmedMapping:
    """One user-confirmed ``source -> target`` assignment."""

    source_key: str
    target_key: str
    source_type: str = "field"
    target_type: str = "field"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfirmedMapping":
        if not isinstance(data, dict):
            raise InvalidInputError(f"Mapping must be an object, got {type(data).__name__}")
        return cls(
            source_key=str(data.get("sourceKey") or ""),
            target_key=str(data.get("targetKey") or ""),
            source_type=_check_target_type(str(data.get("sourceType") or "field")),
            target_type=_check_target_type(str(data.get("targetType") or "field")),
        )


@dataclass
class MappingMemoryStore:
    """All mapping-memory entries of one tenant."""

    tenant_id: str
    entries: List[MappingMemoryEntry] = field(default_factory=list)
    updated_at: str = ""
    version: int = 0

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def entry_for(self, target_key: str) -> Optional[MappingMemoryEntry]:
        for entry in self.entries:
            if entry.target_key == target_key:
                return entry
        return None

    @property
    def total_labels(self) -> int:
        return sum(len(e.source_labels) for e in self.entries)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def learn(
        self,
        mappings: Iterable[ConfirmedMapping],
        extracted_fields: Iterable[ExtractedField],
        now: Optional[str] = None,
    ) -> int:
        """Fold confirmed assignments into the store.

        Each ``source_key`` is resolved to its display label through
        ``extracted_fields`` (by id, or by label); unknown keys are used as
        the label itself.  Returns the number of assignments applied.
        """
        now = now or utc_now()
        id_to_label: Dict[str, str] = {}
        for f in extracted_fields:
            id_to_label[f.id] = f.label
            id_to_label.setdefault(f.label, f.label)

        applied = 0
        for m in mappings:
            if not m.source_key or not m.target_key:
                logger.debug("Skipping mapping with empty key: %r", m)
                continue
            raw_label = id_to_label.get(m.source_key) or m.source_key
            if self._touch(m.target_key, m.target_type, raw_label, now, retype=True):
                applied += 1

        logger.info(
            "Learned %d mapping(s) for tenant %r: %d entries, %d labels",
            applied, self.tenant_id, len(self.entries), self.total_labels,
        )
        return applied

    def add_source_label(
        self,
        target_key: str,
        target_type: str,
        label: str,
        now: Optional[str] = None,
    ) -> bool:
        """Add one label variant to a target, creating the entry if needed."""
        if not target_key:
            raise InvalidInputError("targetKey is required")
        return self._touch(target_key, _check_target_type(target_type), label, now or utc_now())

    def remove_source_label(self, target_key: str, label: str) -> bool:
        """Drop one label variant; an entry left with no labels is deleted."""
        entry = self.entry_for(target_key)
        if entry is None:
            return False

        normalised = _normalizer.normalize_memory_label(label)
        before = len(entry.source_labels)
        entry.source_labels = [s for s in entry.source_labels if s != normalised]
        if not entry.source_labels:
            self.entries.remove(entry)
            logger.info("Removed last label of %r; entry deleted", target_key)
        return len(entry.source_labels) != before

    def remove_target(self, target_key: str) -> bool:
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.target_key != target_key]
        return len(self.entries) != before

    def _touch(
        self,
        target_key: str,
        target_type: str,
        label: str,
        now: str,
        retype: bool = False,
    ) -> bool:
        normalised = _normalizer.normalize_memory_label(label)
        if not normalised:
            return False

        entry = self.entry_for(target_key)
        if entry is None:
            self.entries.append(
                MappingMemoryEntry(
                    target_key=target_key,
                    target_type=target_type,
                    source_labels=[normalised],
                    usage_count=1,
                    last_used=now,
                )
            )
            logger.info("New memory entry: %r → %r", normalised, target_key)
            return True

        if normalised not in entry.source_labels:
            entry.source_labels.append(normalised)
            logger.info("New label variant: %r → %r", normalised, target_key)
        entry.usage_count += 1
        entry.last_used = now
        if retype:
            entry.target_type = target_type
        return True

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "entries": [e.to_dict() for e in self.entries],
            "updatedAt": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingMemoryStore":
        return cls(
            tenant_id=str(data["tenantId"]),
            entries=[
                entry
                for entry in (MappingMemoryEntry.from_dict(e) for e in data.get("entries", []))
                if entry.source_labels
            ],
            updated_at=str(data.get("updatedAt", "")),
            version=int(data.get("version", 0)),
        )


class MappingMemoryRepository:
    """File-backed store: ``<directory>/<tenant>_mapping-memory.json``.

    Parameters
    ----------
    directory:
        Created on first save.
    """

    FILE_SUFFIX = "_mapping-memory.json"

    def __init__(self, directory: Union[str, Path]) -> None:
        self._directory = Path(directory)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def validate_tenant(tenant_id: str) -> str:
        if not tenant_id or not _TENANT_RE.match(tenant_id):
            raise InvalidInputError(f"Invalid tenant id: {tenant_id!r}")
        return tenant_id

    def path_for(self, tenant_id: str) -> Path:
        return self._directory / f"{self.validate_tenant(tenant_id)}{self.FILE_SUFFIX}"

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(tenant_id, threading.Lock())

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def load(self, tenant_id: str) -> MappingMemoryStore:
        """Return the tenant's store, or a fresh empty one."""
        path = self.path_for(tenant_id)
        if not path.exists():
            return MappingMemoryStore(tenant_id=tenant_id, updated_at=utc_now())

        try:
            with open(path, encoding="utf-8") as fh:
                store = MappingMemoryStore.from_dict(json.load(fh))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Unreadable mapping memory %s (%s); starting empty", path, exc)
            return MappingMemoryStore(tenant_id=tenant_id, updated_at=utc_now())

        store.tenant_id = tenant_id
        return store

    def save(self, store: MappingMemoryStore) -> MappingMemoryStore:
        """Write *store* atomically, bumping ``version`` and ``updated_at``."""
        path = self.path_for(store.tenant_id)
        self._directory.mkdir(parents=True, exist_ok=True)

        store.version += 1
        store.updated_at = utc_now()

        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(store.to_dict(), fh, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug("Saved mapping memory for %r (version %d)", store.tenant_id, store.version)
        return store

    def update(
        self,
        tenant_id: str,
        fn: Callable[[MappingMemoryStore], Any],
    ) -> MappingMemoryStore:
        """Load, apply *fn*, save; serialised per tenant."""
        self.validate_tenant(tenant_id)
        with self._lock_for(tenant_id):
            store = self.load(tenant_id)
            fn(store)
            return self.save(store)
