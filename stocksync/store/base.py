from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from stocksync.models import JobKind, Location

IN_PROGRESS_MARKER = "in progress"


@dataclass
class JobSnapshot:
    id: str
    status: str
    kind: JobKind | None = None
    object_count: int = 0
    url: str | None = None
    partial_data_url: str | None = None
    error_code: str | None = None


@dataclass
class SubmitResult:
    job: JobSnapshot | None
    user_errors: list[str] = field(default_factory=list)

    @property
    def in_progress(self) -> bool:
        return any(IN_PROGRESS_MARKER in message.lower() for message in self.user_errors)


@dataclass
class VariantRecord:
    sku: str | None
    inventory_item_id: str
    levels: dict[str, int]


@dataclass
class VariantPage:
    variants: list[VariantRecord]
    has_next_page: bool
    end_cursor: str | None


@dataclass
class StagedTarget:
    url: str
    resource_url: str | None
    parameters: list[tuple[str, str]]

    @property
    def key(self) -> str | None:
        for name, value in self.parameters:
            if name == "key":
                return value
        return None


class InventoryStore(ABC):
    name: str = "base"

    @abstractmethod
    def list_locations(self) -> list[Location]:
        raise NotImplementedError

    @abstractmethod
    def list_variants(self, cursor: str | None = None) -> VariantPage:
        raise NotImplementedError

    @abstractmethod
    def current_job(self, kind: JobKind) -> JobSnapshot | None:
        raise NotImplementedError

    @abstractmethod
    def run_query(self, query: str) -> SubmitResult:
        raise NotImplementedError

    @abstractmethod
    def run_mutation(self, mutation: str, staged_upload_path: str) -> SubmitResult:
        raise NotImplementedError

    @abstractmethod
    def get_job(self, job_id: str) -> JobSnapshot | None:
        raise NotImplementedError

    @abstractmethod
    def cancel_job(self, job_id: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def create_staged_upload(self, filename: str, mime_type: str, http_method: str, resource: str) -> StagedTarget:
        raise NotImplementedError

    @abstractmethod
    def upload(self, target: StagedTarget, payload: bytes, filename: str, mime_type: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def fetch_artifact(self, url: str) -> list[str]:
        raise NotImplementedError
