"""
Statement Mapper: HTTP API.

Thin Flask surface over the extraction pipeline and the per-tenant mapping
memory.  All responses are JSON.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import Flask, request
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from statement_mapper import __version__
from statement_mapper.config import PipelineConfig
from statement_mapper.errors import DocumentRejectedError, InvalidInputError
from statement_mapper.memory_matcher import auto_apply
from statement_mapper.memory_store import ConfirmedMapping, MappingMemoryRepository
from statement_mapper.pipeline import FinancialExtractionPipeline
from statement_mapper.schema import ExtractedField

# -------------------------------------------------------
# App Setup
# -------------------------------------------------------

app = Flask(__name__)

app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024

logger = logging.getLogger("statement_mapper.app")

DEFAULT_TENANT = "default"
TENANT_HEADER = "X-Tenant-Id"

# -------------------------------------------------------
# Pipeline Setup
# -------------------------------------------------------

config = PipelineConfig.from_env()
pipeline = FinancialExtractionPipeline(config=config)
repository = MappingMemoryRepository(config.memory_directory)

# -------------------------------------------------------
# Helpers
# -------------------------------------------------------

def tenant_id() -> str:
    return (request.headers.get(TENANT_HEADER) or DEFAULT_TENANT).strip()


def json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return body


def parse_fields(raw: Any) -> List[ExtractedField]:
    if not isinstance(raw, list):
        raise InvalidInputError("extractedFields must be an array")
    return [ExtractedField.from_dict(item) for item in raw if isinstance(item, dict)]


def uploaded_document() -> tuple[bytes, str]:
    if "file" not in request.files:
        raise DocumentRejectedError("No file uploaded")

    file = request.files["file"]
    if not file.filename:
        raise DocumentRejectedError("No file selected")

    return file.read(), secure_filename(file.filename)


@app.errorhandler(DocumentRejectedError)
@app.errorhandler(InvalidInputError)
def handle_bad_request(exc: Exception):
    return {"success": False, "error": str(exc)}, 400


@app.errorhandler(Exception)
def handle_unexpected(exc: Exception):
    if isinstance(exc, HTTPException):
        return {"success": False, "error": exc.description}, exc.code
    logger.exception("API Error")
    return {"success": False, "error": str(exc)}, 500


# -------------------------------------------------------
# Extraction API
# -------------------------------------------------------

@app.route("/api/health", methods=["GET"])
def api_health():
    return {
        "status": "online",
        "version": __version__,
        "strategies": pipeline.strategy_names,
    }, 200


@app.route("/api/extract", methods=["POST"])
def api_extract():
    """Canonical figures of an uploaded PDF."""
    document, filename = uploaded_document()
    result = pipeline.extract(
        document,
        year_hint=request.form.get("financialYear", ""),
        api_key=request.form.get("geminiApiKey") or None,
        filename=filename,
    )
    return result.to_dict(), 200


@app.route("/api/fields", methods=["POST"])
def api_fields():
    """Every label/value pair of an uploaded PDF, unmapped."""
    document, filename = uploaded_document()
    result = pipeline.extract_fields(
        document,
        filename=filename,
        api_key=request.form.get("geminiApiKey") or None,
    )
    return result.to_dict(), 200


# -------------------------------------------------------
# Mapping Memory API
# -------------------------------------------------------

@app.route("/api/mapping-memory", methods=["GET"])
def memory_get():
    store = repository.load(repository.validate_tenant(tenant_id()))
    return store.to_dict(), 200


@app.route("/api/mapping-memory/learn", methods=["POST"])
def memory_learn():
    body = json_body()
    raw_mappings = body.get("mappings")
    if not isinstance(raw_mappings, list):
        raise InvalidInputError("mappings must be an array")

    mappings = [ConfirmedMapping.from_dict(m) for m in raw_mappings]
    fields = parse_fields(body.get("extractedFields", []))

    store = repository.update(tenant_id(), lambda s: s.learn(mappings, fields))
    return {
        "tenantId": store.tenant_id,
        "entryCount": len(store.entries),
        "totalLabels": store.total_labels,
        "updatedAt": store.updated_at,
    }, 200


@app.route("/api/mapping-memory/auto-apply", methods=["POST"])
def memory_auto_apply():
    body = json_body()
    fields = parse_fields(body.get("extractedFields"))

    store = repository.load(repository.validate_tenant(tenant_id()))
    matches = auto_apply(store, fields, config.memory_match)
    return {
        "tenantId": store.tenant_id,
        "matchCount": len(matches),
        "memoryEntries": len(store.entries),
        "matches": [m.to_dict() for m in matches],
    }, 200


@app.route("/api/mapping-memory/add-label", methods=["POST"])
def memory_add_label():
    body = json_body()
    target_key = str(body.get("targetKey") or "")
    target_type = str(body.get("targetType") or "field")
    label = str(body.get("sourceLabel") or "")
    if not label.strip():
        raise InvalidInputError("sourceLabel is required")

    store = repository.update(
        tenant_id(), lambda s: s.add_source_label(target_key, target_type, label)
    )
    return store.to_dict(), 200


@app.route("/api/mapping-memory/remove-label", methods=["POST"])
def memory_remove_label():
    body = json_body()
    target_key = str(body.get("targetKey") or "")
    label = str(body.get("sourceLabel") or "")
    if not target_key or not label.strip():
        raise InvalidInputError("targetKey and sourceLabel are required")

    store = repository.update(tenant_id(), lambda s: s.remove_source_label(target_key, label))
    return store.to_dict(), 200


@app.route("/api/mapping-memory/<target_key>", methods=["DELETE"])
def memory_remove_target(target_key: str):
    store = repository.update(tenant_id(), lambda s: s.remove_target(target_key))
    return store.to_dict(), 200


# -------------------------------------------------------
# Main
# -------------------------------------------------------

if __name__ == "__main__":
    print("=" * 60)
    print("Statement Mapper API")
    print("http://localhost:5000")
    print("=" * 60)

    app.run(host="0.0.0.0", port=5000, debug=True)
