from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from stocksync.models import InventoryDiff

ADJUSTMENT_REASON = "correction"
QUANTITY_NAME = "available"


@dataclass(frozen=True)
class BatchUnit:
    index: int
    diffs: tuple[InventoryDiff, ...]

    @property
    def skus(self) -> list[str]:
        return [diff.sku for diff in self.diffs]

    @property
    def row_numbers(self) -> list[int]:
        return [diff.row_number for diff in self.diffs]

    def to_variables(self) -> dict[str, Any]:
        return {
            "input": {
                "reason": ADJUSTMENT_REASON,
                "name": QUANTITY_NAME,
                "ignoreCompareQuantity": True,
                "quantities": [diff.to_payload() for diff in self.diffs],
            }
        }

    def to_line(self) -> str:
        return json.dumps(self.to_variables(), separators=(",", ":"))


class BatchPlanner:
    def __init__(self, batch_size: int = 1) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size

    def plan(self, diffs: Sequence[InventoryDiff]) -> list[BatchUnit]:
        return [
            BatchUnit(index=index, diffs=tuple(diffs[start : start + self.batch_size]))
            for index, start in enumerate(range(0, len(diffs), self.batch_size))
        ]


def serialize(units: Sequence[BatchUnit]) -> bytes:
    return "\n".join(unit.to_line() for unit in units).encode("utf-8")
