from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from stocksync.errors import ParseError
from stocksync.importer.batches import BatchUnit
from stocksync.models import Report

LINE_NUMBER_KEY = "__lineNumber"
MUTATION_FIELD = "inventorySetQuantities"

logger = logging.getLogger(__name__)


@dataclass
class DeferredResults:
    applied: int = 0
    failed_units: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    parse_errors: list[ParseError] = field(default_factory=list)

    def to_report(self, job_id: str | None = None) -> Report:
        return Report(
            applied=self.applied,
            job_failures=len(self.failed_units),
            errors=tuple(self.errors),
            job_id=job_id,
        )


def scan_write_results(lines: Iterable[str], units: Sequence[BatchUnit]) -> DeferredResults:
    results = DeferredResults()
    position = 0
    for line_number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        try:
            record = json.loads(text)
            if not isinstance(record, dict):
                raise ValueError("not a JSON object")
        except ValueError as exc:
            results.parse_errors.append(ParseError(line_number, f"Malformed result line {line_number}: {exc}"))
            position += 1
            continue

        unit_index = record.get(LINE_NUMBER_KEY, position)
        position += 1
        unit = units[unit_index] if isinstance(unit_index, int) and 0 <= unit_index < len(units) else None

        user_errors = _user_errors(record)
        if user_errors:
            message = str(user_errors[0].get("message") or "unknown error")
            skus = ", ".join(unit.skus) if unit else f"unit {unit_index}"
            results.failed_units.append(unit_index if isinstance(unit_index, int) else -1)
            results.errors.append(f"Bulk update failed for SKU {skus}: {message}")
            continue

        results.applied += len(unit.diffs) if unit else 1

    if results.parse_errors:
        logger.warning("Dropped %s malformed write result lines", len(results.parse_errors))
    return results


def merge_reports(immediate: Report, deferred: Report) -> Report:
    return Report(
        total=immediate.total + deferred.total,
        accepted=immediate.accepted + deferred.accepted,
        applied=immediate.applied + deferred.applied,
        skipped=immediate.skipped + deferred.skipped,
        rejected=immediate.rejected + deferred.rejected,
        job_failures=immediate.job_failures + deferred.job_failures,
        rejected_rows=immediate.rejected_rows + deferred.rejected_rows,
        skipped_rows=immediate.skipped_rows + deferred.skipped_rows,
        errors=immediate.errors + deferred.errors,
        job_id=immediate.job_id or deferred.job_id,
    )


def _user_errors(record: dict[str, Any]) -> list[dict[str, Any]]:
    payload = record.get("data") if isinstance(record.get("data"), dict) else record
    block = payload.get(MUTATION_FIELD) or {}
    errors = list(block.get("userErrors") or [])
    if not errors and record.get("errors"):
        errors = [error for error in record["errors"] if isinstance(error, dict)]
    return errors
