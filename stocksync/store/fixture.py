from __future__ import annotations

import copy
import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from stocksync.errors import RemoteError
from stocksync.models import JobKind, Location
from stocksync.store.base import InventoryStore, JobSnapshot, StagedTarget, SubmitResult, VariantPage, VariantRecord

DEFAULT_FIXTURE = "sample_store.json"
TERMINAL = {"COMPLETED", "FAILED", "CANCELED"}


@dataclass
class _FixtureJob:
    id: str
    kind: JobKind
    script: list[str]
    status: str = "CREATED"
    position: int = 0
    cancel_requested: bool = False
    upload_key: str | None = None
    object_count: int = 0
    url: str | None = None
    error_code: str | None = None

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            status=self.status,
            kind=self.kind,
            object_count=self.object_count,
            url=self.url,
            error_code=self.error_code,
        )


@dataclass
class _FixtureVariant:
    id: str
    product_id: str
    sku: str | None
    selected_options: list[dict[str, Any]]
    inventory_item_id: str
    levels: dict[str, int] = field(default_factory=dict)


class FixtureStore(InventoryStore):
    name = "fixture"

    def __init__(
        self,
        payload: dict[str, Any],
        page_size: int = 2,
        status_script: Sequence[str] = ("RUNNING", "COMPLETED"),
    ) -> None:
        self.page_size = max(1, page_size)
        self.status_script = list(status_script)
        self.calls: Counter[str] = Counter()
        self.locations = [
            Location(id=str(loc["id"]), name=str(loc["name"]))
            for loc in payload.get("locations", [])
        ]
        self.products: list[dict[str, Any]] = []
        self.variants: list[_FixtureVariant] = []
        for product in payload.get("products", []):
            self.products.append({"id": str(product["id"]), "title": product.get("title", "")})
            for variant in product.get("variants", []):
                item = variant.get("inventoryItem") or {}
                self.variants.append(
                    _FixtureVariant(
                        id=str(variant["id"]),
                        product_id=str(product["id"]),
                        sku=variant.get("sku"),
                        selected_options=copy.deepcopy(variant.get("selectedOptions", [])),
                        inventory_item_id=str(item["id"]),
                        levels={str(k): int(v) for k, v in (item.get("levels") or {}).items()},
                    )
                )
        self._jobs: dict[str, _FixtureJob] = {}
        self._uploads: dict[str, bytes] = {}
        self._artifacts: dict[str, list[str]] = {}
        self._sequence = 0

    @classmethod
    def from_file(cls, path: str | Path | None = None, **kwargs: Any) -> FixtureStore:
        fixture_path = Path(path) if path else Path(__file__).resolve().parents[1] / "fixtures" / DEFAULT_FIXTURE
        return cls(json.loads(fixture_path.read_text(encoding="utf-8")), **kwargs)

    def list_locations(self) -> list[Location]:
        self.calls["list_locations"] += 1
        return list(self.locations)

    def list_variants(self, cursor: str | None = None) -> VariantPage:
        self.calls["list_variants"] += 1
        start = int(cursor) if cursor else 0
        end = start + self.page_size
        chunk = self.variants[start:end]
        return VariantPage(
            variants=[
                VariantRecord(sku=v.sku, inventory_item_id=v.inventory_item_id, levels=dict(v.levels)) for v in chunk
            ],
            has_next_page=end < len(self.variants),
            end_cursor=str(end) if end < len(self.variants) else None,
        )

    def current_job(self, kind: JobKind) -> JobSnapshot | None:
        self.calls["current_job"] += 1
        active = self._active_job(kind)
        return active.snapshot() if active else None

    def run_query(self, query: str) -> SubmitResult:
        self.calls["run_query"] += 1
        return self._start(JobKind.READ)

    def run_mutation(self, mutation: str, staged_upload_path: str) -> SubmitResult:
        self.calls["run_mutation"] += 1
        if staged_upload_path not in self._uploads:
            return SubmitResult(job=None, user_errors=[f"Staged upload {staged_upload_path} not found"])
        return self._start(JobKind.WRITE, upload_key=staged_upload_path)

    def get_job(self, job_id: str) -> JobSnapshot | None:
        self.calls["get_job"] += 1
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.status in TERMINAL:
            return job.snapshot()

        if job.cancel_requested:
            job.status = "CANCELED"
            return job.snapshot()

        job.status = job.script[min(job.position, len(job.script) - 1)]
        job.position += 1
        if job.status == "COMPLETED":
            self._complete(job)
        elif job.status == "FAILED":
            job.error_code = job.error_code or "INTERNAL_SERVER_ERROR"
        return job.snapshot()

    def cancel_job(self, job_id: str) -> str | None:
        self.calls["cancel_job"] += 1
        job = self._jobs.get(job_id)
        if job is None:
            raise RemoteError(f"Bulk operation {job_id} does not exist")
        if job.status in TERMINAL:
            return job.status
        job.cancel_requested = True
        job.status = "CANCELING"
        return job.status

    def create_staged_upload(self, filename: str, mime_type: str, http_method: str, resource: str) -> StagedTarget:
        self.calls["create_staged_upload"] += 1
        self._sequence += 1
        key = f"tmp/stocksync/{self._sequence}/{filename}"
        return StagedTarget(
            url="fixture://uploads",
            resource_url=f"fixture://uploads/{key}",
            parameters=[("Content-Type", mime_type), ("key", key)],
        )

    def upload(self, target: StagedTarget, payload: bytes, filename: str, mime_type: str) -> None:
        self.calls["upload"] += 1
        if target.key is None:
            raise RemoteError("Upload target has no key parameter")
        self._uploads[target.key] = payload

    def fetch_artifact(self, url: str) -> list[str]:
        self.calls["fetch_artifact"] += 1
        if url not in self._artifacts:
            raise RemoteError(f"Unknown result artifact {url}")
        return list(self._artifacts[url])

    def quantity(self, sku: str, location_id: str) -> int | None:
        for variant in self.variants:
            if variant.sku and variant.sku.lower() == sku.lower():
                return variant.levels.get(location_id)
        return None

    def _active_job(self, kind: JobKind) -> _FixtureJob | None:
        for job in reversed(list(self._jobs.values())):
            if job.kind == kind and job.status not in TERMINAL and not job.cancel_requested:
                return job
        return None

    def _start(self, kind: JobKind, upload_key: str | None = None) -> SubmitResult:
        active = self._active_job(kind)
        if active is not None:
            label = "query" if kind == JobKind.READ else "mutation"
            return SubmitResult(
                job=None,
                user_errors=[f"A bulk {label} operation for this app and shop is already in progress: {active.id}."],
            )
        self._sequence += 1
        job = _FixtureJob(
            id=f"gid://shopify/BulkOperation/{self._sequence}",
            kind=kind,
            script=list(self.status_script),
            upload_key=upload_key,
        )
        self._jobs[job.id] = job
        return SubmitResult(job=job.snapshot())

    def _complete(self, job: _FixtureJob) -> None:
        lines = self._export_lines() if job.kind == JobKind.READ else self._apply_mutation(job)
        job.object_count = len(lines)
        if lines:
            job.url = f"fixture://results/{job.id.rsplit('/', 1)[-1]}.jsonl"
            self._artifacts[job.url] = lines

    def _export_lines(self) -> list[str]:
        names = {loc.id: loc.name for loc in self.locations}
        lines: list[str] = []
        level_sequence = 0
        for product in self.products:
            lines.append(json.dumps(product))
            for variant in self.variants:
                if variant.product_id != product["id"]:
                    continue
                lines.append(
                    json.dumps(
                        {
                            "id": variant.id,
                            "sku": variant.sku,
                            "selectedOptions": variant.selected_options,
                            "inventoryItem": {"id": variant.inventory_item_id},
                            "__parentId": product["id"],
                        }
                    )
                )
                item_number = variant.inventory_item_id.rsplit("/", 1)[-1]
                for location_id, quantity in variant.levels.items():
                    level_sequence += 1
                    lines.append(
                        json.dumps(
                            {
                                "id": f"gid://shopify/InventoryLevel/{level_sequence}?inventory_item_id={item_number}",
                                "location": {"id": location_id, "name": names.get(location_id, "Unknown")},
                                "quantities": [{"quantity": quantity}],
                                "__parentId": variant.id,
                            }
                        )
                    )
        return lines

    def _apply_mutation(self, job: _FixtureJob) -> list[str]:
        payload = self._uploads.get(job.upload_key or "", b"").decode("utf-8")
        by_item = {variant.inventory_item_id: variant for variant in self.variants}
        results: list[str] = []
        for line_number, line in enumerate(l for l in payload.splitlines() if l.strip()):
            quantities = json.loads(line).get("input", {}).get("quantities", [])
            user_errors: list[dict[str, Any]] = []
            for entry in quantities:
                variant = by_item.get(entry.get("inventoryItemId"))
                if variant is None or entry.get("locationId") not in variant.levels:
                    user_errors.append(
                        {
                            "field": ["input", "quantities", "0", "locationId"],
                            "message": "The specified inventory item is not stocked at the location.",
                        }
                    )
            if not user_errors:
                for entry in quantities:
                    by_item[entry["inventoryItemId"]].levels[entry["locationId"]] = int(entry["quantity"])
            results.append(
                json.dumps(
                    {
                        "data": {
                            "inventorySetQuantities": {
                                "inventoryAdjustmentGroup": None if user_errors else {"id": f"adj-{line_number}"},
                                "userErrors": user_errors,
                            }
                        },
                        "__lineNumber": line_number,
                    }
                )
            )
        return results
