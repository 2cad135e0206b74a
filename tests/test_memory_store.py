"""
Unit tests for the mapping-memory store and its file repository.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from statement_mapper.errors import InvalidInputError
from statement_mapper.memory_matcher import auto_apply
from statement_mapper.memory_store import (
    ConfirmedMapping,
    MappingMemoryRepository,
    MappingMemoryStore,
)
from statement_mapper.schema import ExtractedField

NOW = "2024-04-01T00:00:00+00:00"
LATER = "2024-05-01T00:00:00+00:00"


@pytest.fixture
def store() -> MappingMemoryStore:
    return MappingMemoryStore(tenant_id="acme")


@pytest.fixture
def fields() -> list:
    return [
        ExtractedField(id="ef_1", label="Sundry  Creditors", value="1,23,456", confidence=0.9),
        ExtractedField(id="ef_2", label="Turnover", value="98,00,000", confidence=0.9),
    ]


# ======================================================================
# Learning
# ======================================================================

class TestLearn:
    def test_resolves_ids_to_labels(self, store: MappingMemoryStore, fields: list) -> None:
        applied = store.learn([ConfirmedMapping("ef_1", "accounts_payable")], fields, now=NOW)
        assert applied == 1
        entry = store.entry_for("accounts_payable")
        assert entry is not None
        assert entry.source_labels == ["sundry creditors"]
        assert entry.usage_count == 1
        assert entry.last_used == NOW

    def test_unknown_key_used_as_label(self, store: MappingMemoryStore) -> None:
        store.learn([ConfirmedMapping("Trade Payables", "accounts_payable")], [], now=NOW)
        assert store.entry_for("accounts_payable").source_labels == ["trade payables"]

    def test_learning_twice_strengthens(self, store: MappingMemoryStore, fields: list) -> None:
        mapping = [ConfirmedMapping("ef_1", "accounts_payable")]
        store.learn(mapping, fields, now=NOW)
        store.learn(mapping, fields, now=LATER)
        entry = store.entry_for("accounts_payable")
        assert entry.usage_count == 2
        assert entry.source_labels == ["sundry creditors"]
        assert entry.last_used == LATER

    def test_new_variant_appended(self, store: MappingMemoryStore, fields: list) -> None:
        store.learn([ConfirmedMapping("ef_1", "accounts_payable")], fields, now=NOW)
        store.learn([ConfirmedMapping("Trade Payables", "accounts_payable")], [], now=NOW)
        entry = store.entry_for("accounts_payable")
        assert entry.source_labels == ["sundry creditors", "trade payables"]
        assert len(store.entries) == 1
        assert store.total_labels == 2

    def test_empty_keys_skipped(self, store: MappingMemoryStore) -> None:
        applied = store.learn(
            [ConfirmedMapping("", "pbit"), ConfirmedMapping("PBIT", ""), ConfirmedMapping("   ", "pbit")],
            [],
            now=NOW,
        )
        assert applied == 0
        assert store.entries == []

    def test_target_type_follows_latest_mapping(self, store: MappingMemoryStore) -> None:
        store.learn([ConfirmedMapping("Fixed Assets", "fixed_assets")], [], now=NOW)
        store.learn(
            [ConfirmedMapping("Fixed Assets", "fixed_assets", target_type="table")], [], now=NOW
        )
        assert store.entry_for("fixed_assets").target_type == "table"


class TestConfirmedMapping:
    def test_from_dict(self) -> None:
        mapping = ConfirmedMapping.from_dict(
            {"sourceKey": "ef_1", "targetKey": "pbit", "targetType": "table"}
        )
        assert mapping == ConfirmedMapping("ef_1", "pbit", "field", "table")

    def test_bad_target_type(self) -> None:
        with pytest.raises(InvalidInputError, match="targetType"):
            ConfirmedMapping.from_dict({"sourceKey": "a", "targetKey": "b", "targetType": "chart"})

    def test_not_an_object(self) -> None:
        with pytest.raises(InvalidInputError):
            ConfirmedMapping.from_dict(["ef_1", "pbit"])  # type: ignore[arg-type]


# ======================================================================
# Label editing
# ======================================================================

class TestLabels:
    def test_add_creates_entry(self, store: MappingMemoryStore) -> None:
        assert store.add_source_label("interest", "field", "Finance Costs", now=NOW)
        entry = store.entry_for("interest")
        assert entry.source_labels == ["finance costs"]
        assert entry.usage_count == 1

    def test_add_requires_target(self, store: MappingMemoryStore) -> None:
        with pytest.raises(InvalidInputError):
            store.add_source_label("", "field", "Finance Costs")

    def test_add_rejects_bad_type(self, store: MappingMemoryStore) -> None:
        with pytest.raises(InvalidInputError):
            store.add_source_label("interest", "chart", "Finance Costs")

    def test_remove_label(self, store: MappingMemoryStore) -> None:
        store.add_source_label("interest", "field", "Finance Costs", now=NOW)
        store.add_source_label("interest", "field", "Interest Paid", now=NOW)
        assert store.remove_source_label("interest", "FINANCE   costs")
        assert store.entry_for("interest").source_labels == ["interest paid"]

    def test_removing_last_label_deletes_entry(self, store: MappingMemoryStore) -> None:
        store.add_source_label("interest", "field", "Finance Costs", now=NOW)
        store.remove_source_label("interest", "Finance Costs")
        assert store.entry_for("interest") is None
        assert store.entries == []

    def test_remove_unknown(self, store: MappingMemoryStore) -> None:
        assert not store.remove_source_label("interest", "Finance Costs")

    def test_remove_target(self, store: MappingMemoryStore) -> None:
        store.add_source_label("interest", "field", "Finance Costs", now=NOW)
        store.add_source_label("pbit", "field", "EBIT", now=NOW)
        assert store.remove_target("interest")
        assert [e.target_key for e in store.entries] == ["pbit"]
        assert not store.remove_target("interest")


# ======================================================================
# Repository
# ======================================================================

class TestRepository:
    def test_missing_file_is_empty_store(self, tmp_path: Path) -> None:
        store = MappingMemoryRepository(tmp_path / "memory").load("acme")
        assert store.tenant_id == "acme"
        assert store.entries == []
        assert store.version == 0

    def test_update_persists(self, tmp_path: Path, fields: list) -> None:
        repo = MappingMemoryRepository(tmp_path)
        saved = repo.update(
            "acme", lambda s: s.learn([ConfirmedMapping("ef_2", "dealer_turnover")], fields)
        )
        assert saved.version == 1
        assert saved.updated_at

        path = tmp_path / "acme_mapping-memory.json"
        assert path.exists()
        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert on_disk["tenantId"] == "acme"
        assert on_disk["entries"][0]["targetKey"] == "dealer_turnover"
        assert on_disk["entries"][0]["sourceLabels"] == ["turnover"]

        reloaded = repo.load("acme")
        assert reloaded.to_dict() == saved.to_dict()

    def test_version_increments(self, tmp_path: Path) -> None:
        repo = MappingMemoryRepository(tmp_path)
        repo.update("acme", lambda s: s.add_source_label("pbit", "field", "EBIT"))
        store = repo.update("acme", lambda s: s.add_source_label("pbit", "field", "PBIT"))
        assert store.version == 2
        assert store.entry_for("pbit").usage_count == 2

    def test_tenants_are_isolated(self, tmp_path: Path) -> None:
        repo = MappingMemoryRepository(tmp_path)
        repo.update("acme", lambda s: s.add_source_label("pbit", "field", "EBIT"))
        assert repo.load("globex").entries == []

    def test_hand_edited_labels_cleaned_on_load(self, tmp_path: Path) -> None:
        payload = {
            "tenantId": "acme",
            "entries": [
                {
                    "targetKey": "accounts_payable",
                    "sourceLabels": ["  Sundry  Creditors ", "sundry creditors", ""],
                    "usageCount": 3,
                },
                {"targetKey": "pbit", "sourceLabels": ["", "   "], "usageCount": 1},
            ],
        }
        (tmp_path / "acme_mapping-memory.json").write_text(json.dumps(payload), encoding="utf-8")

        store = MappingMemoryRepository(tmp_path).load("acme")
        assert [(e.target_key, e.source_labels) for e in store.entries] == [
            ("accounts_payable", ["sundry creditors"]),
        ]
        turnover = ExtractedField(id="ef_1", label="Turnover", value="1", confidence=0.9)
        assert auto_apply(store, [turnover]) == []

    def test_corrupt_file_starts_empty(self, tmp_path: Path) -> None:
        (tmp_path / "acme_mapping-memory.json").write_text("{not json", encoding="utf-8")
        store = MappingMemoryRepository(tmp_path).load("acme")
        assert store.entries == []

    @pytest.mark.parametrize("tenant", ["", "../etc", "a/b", "acme corp"])
    def test_invalid_tenant(self, tmp_path: Path, tenant: str) -> None:
        with pytest.raises(InvalidInputError):
            MappingMemoryRepository(tmp_path).load(tenant)
