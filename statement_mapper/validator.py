"""
Validation Layer.

Post-extraction validation of canonical figures *before* the result is
handed to the caller.

Checks performed
----------------
1. **Numeric sanity**: values must be finite; non-finite ones are dropped.
2. **Magnitude**: values above ``max_absolute_value`` are kept but flagged
   as a probable unit error.
3. **Unknown keys**: anything that is not a canonical field is dropped.
"""

from __future__ import annotations

import math
from typing import Any, Dict

from statement_mapper.config import ValidationConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import CanonicalField, FinancialExtractionResult

logger = get_logger("validator")


class ValidationReport:
    """Accumulates errors and warnings during a validation pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        logger.error("Validation ERROR: %s", msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.warning("Validation WARNING: %s", msg)


class ExtractionValidator:
    """Validates and cleans the figures of a ``FinancialExtractionResult``.

    Parameters
    ----------
    config:
        Validation thresholds.
    """

    def __init__(self, config: ValidationConfig) -> None:
        self._config = config

    def validate(self, result: FinancialExtractionResult) -> ValidationReport:
        """Run all checks, removing rejected figures from ``result`` in place.

        Warnings are appended to ``result.note``.
        """
        report = ValidationReport()
        result.fields = self._clean_fields(result.fields, report)

        if report.warnings:
            suffix = " ".join(report.warnings)
            result.note = f"{result.note} {suffix}".strip()
        return report

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    def _clean_fields(
        self, fields: Dict[Any, Any], report: ValidationReport
    ) -> Dict[CanonicalField, float]:
        cleaned: Dict[CanonicalField, float] = {}
        for key, value in fields.items():
            canonical = key if isinstance(key, CanonicalField) else None
            if canonical is None:
                try:
                    canonical = CanonicalField(str(key))
                except ValueError:
                    report.add_error(f"Unknown canonical key dropped: {key!r}")
                    continue

            if value is None:
                continue

            if isinstance(value, bool) or not isinstance(value, (int, float)):
                report.add_error(
                    f"'{canonical.value}' has non-numeric value: {value!r}"
                )
                continue

            if math.isnan(value) or math.isinf(value):
                report.add_error(
                    f"'{canonical.value}' has non-finite value: {value}"
                )
                continue

            if abs(value) > self._config.max_absolute_value:
                report.add_warning(
                    f"'{canonical.value}' value {value:g} exceeds "
                    f"{self._config.max_absolute_value:g}; possible unit error."
                )

            cleaned[canonical] = float(value)
        return cleaned
