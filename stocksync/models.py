from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, TypeAlias, Union


class JobKind(str, Enum):
    READ = "READ"
    WRITE = "WRITE"


class JobStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def from_remote(cls, value: str | None) -> JobStatus:
        raw = str(value or "").strip().upper()
        if raw in cls.__members__:
            return cls[raw]
        return REMOTE_STATUS_ALIASES.get(raw, cls.RUNNING)


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED})
REMOTE_STATUS_ALIASES = {
    "CANCELING": JobStatus.RUNNING,
    "CANCELLED": JobStatus.CANCELED,
    "EXPIRED": JobStatus.FAILED,
}

# Forward-only ordering used to ignore regressing poll responses.
_STATUS_RANK = {
    JobStatus.CREATED: 0,
    JobStatus.RUNNING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
    JobStatus.CANCELED: 2,
}


@dataclass(frozen=True)
class RemoteJob:
    id: str
    kind: JobKind
    status: JobStatus = JobStatus.CREATED
    object_count: int = 0
    result_url: str | None = None
    partial_result_url: str | None = None
    error_code: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(
        self,
        status: JobStatus,
        object_count: int | None = None,
        result_url: str | None = None,
        partial_result_url: str | None = None,
        error_code: str | None = None,
    ) -> RemoteJob:
        if self.is_terminal:
            return self
        next_status = status if _STATUS_RANK[status] >= _STATUS_RANK[self.status] else self.status
        return replace(
            self,
            status=next_status,
            object_count=object_count if object_count is not None else self.object_count,
            result_url=result_url or self.result_url,
            partial_result_url=partial_result_url or self.partial_result_url,
            error_code=error_code or self.error_code,
        )


class EntityKind(str, Enum):
    PRODUCT = "Product"
    VARIANT = "ProductVariant"
    INVENTORY_ITEM = "InventoryItem"
    INVENTORY_LEVEL = "InventoryLevel"
    UNKNOWN = "Unknown"


@dataclass
class EntityNode:
    id: str
    kind: EntityKind
    parent_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    children: list[EntityNode] = field(default_factory=list)

    def children_of(self, kind: EntityKind) -> list[EntityNode]:
        return [child for child in self.children if child.kind == kind]


@dataclass(frozen=True)
class Location:
    id: str
    name: str


@dataclass(frozen=True)
class InventoryIndexEntry:
    sku: str
    inventory_item_id: str
    levels: Mapping[str, int]


@dataclass(frozen=True)
class DesiredRow:
    row_number: int
    sku: str
    quantity: Any
    location_label: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InventoryDiff:
    inventory_item_id: str
    location_id: str
    quantity: int
    sku: str
    row_number: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "inventoryItemId": self.inventory_item_id,
            "locationId": self.location_id,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class Accepted:
    row: DesiredRow
    diff: InventoryDiff


@dataclass(frozen=True)
class Skipped:
    row: DesiredRow
    reason: str


@dataclass(frozen=True)
class Rejected:
    row: DesiredRow
    reason: str
    detail: str | None = None


ReconciliationOutcome: TypeAlias = Union[Accepted, Skipped, Rejected]


@dataclass(frozen=True)
class RowNote:
    row: DesiredRow
    reason: str
    detail: str | None = None

    def to_dict(self, reason_column: str = "Error Reason") -> dict[str, Any]:
        record = dict(self.row.raw)
        record[reason_column] = self.detail or self.reason
        return record


@dataclass(frozen=True)
class Report:
    total: int = 0
    accepted: int = 0
    applied: int = 0
    skipped: int = 0
    rejected: int = 0
    job_failures: int = 0
    rejected_rows: tuple[RowNote, ...] = ()
    skipped_rows: tuple[RowNote, ...] = ()
    errors: tuple[str, ...] = ()
    job_id: str | None = None

    def summary(self) -> str:
        return (
            f"total={self.total} applied={self.applied} skipped={self.skipped} "
            f"rejected={self.rejected} job_failures={self.job_failures}"
        )


class ReportBuilder:
    def __init__(self) -> None:
        self.outcomes: list[ReconciliationOutcome] = []
        self.errors: list[str] = []
        self._finalized: Report | None = None

    def add(self, outcome: ReconciliationOutcome) -> None:
        if self._finalized is not None:
            raise RuntimeError("Report already finalized")
        self.outcomes.append(outcome)

    def add_error(self, message: str) -> None:
        if self._finalized is not None:
            raise RuntimeError("Report already finalized")
        self.errors.append(message)

    @property
    def accepted(self) -> list[Accepted]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Accepted)]

    def finalize(self, job_id: str | None = None, total: int | None = None) -> Report:
        if self._finalized is not None:
            return self._finalized

        rejected = [outcome for outcome in self.outcomes if isinstance(outcome, Rejected)]
        skipped = [outcome for outcome in self.outcomes if isinstance(outcome, Skipped)]
        errors = [f"Skipped SKU {outcome.row.sku}: {outcome.detail or outcome.reason}" for outcome in rejected]
        errors.extend(self.errors)

        self._finalized = Report(
            total=total if total is not None else len(self.outcomes),
            accepted=len(self.accepted),
            skipped=len(skipped),
            rejected=len(rejected),
            rejected_rows=tuple(RowNote(row=o.row, reason=o.reason, detail=o.detail) for o in rejected),
            skipped_rows=tuple(RowNote(row=o.row, reason=o.reason) for o in skipped),
            errors=tuple(errors),
            job_id=job_id,
        )
        return self._finalized
