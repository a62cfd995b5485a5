from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from stocksync.config import SyncSettings, get_settings
from stocksync.errors import JobFailure, StockSyncError
from stocksync.export.projection import ExportRow, project_rows
from stocksync.export.tree import build_tree
from stocksync.jobs.client import BulkJobClient, JobSpec
from stocksync.jobs.clock import Clock
from stocksync.jobs.poller import JobPoller
from stocksync.models import JobStatus, RemoteJob
from stocksync.store.base import InventoryStore

REPORTED_FAILURE_STATUSES = {"FAILED", "CANCELED", "NONE"}

logger = logging.getLogger(__name__)

PRODUCTS_BULK_QUERY = """
{
  products {
    edges {
      node {
        id
        title
        variants {
          edges {
            node {
              id
              sku
              selectedOptions { name value }
              inventoryItem {
                id
                inventoryLevels {
                  edges {
                    node {
                      id
                      location { id name }
                      quantities(names: ["available"]) { quantity }
                    }
                  }
                }
              }
            }
          }
        }
      }
    }
  }
}
"""


@dataclass
class ExportResult:
    status: str
    rows: list[ExportRow] = field(default_factory=list)
    job: RemoteJob | None = None
    dropped: int = 0
    parse_errors: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == JobStatus.COMPLETED.value


class ExportPipeline:
    def __init__(
        self,
        store: InventoryStore,
        settings: SyncSettings | None = None,
        client: BulkJobClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.client = client or BulkJobClient(store, clock=clock, cancel_settle_seconds=self.settings.cancel_settle_seconds)
        self.poller = JobPoller(
            self.client,
            clock=clock or self.client.clock,
            interval_seconds=self.settings.poll_interval_seconds,
            timeout_seconds=self.settings.poll_timeout_seconds,
        )

    def run(self, location_id: str | None = None) -> ExportResult:
        job: RemoteJob | None = None
        try:
            job = self.client.submit(JobSpec.read(PRODUCTS_BULK_QUERY), cancel_active=True)
            job = self.poller.run(job.id)
            if job.status != JobStatus.COMPLETED:
                raise JobFailure(
                    f"Bulk export {job.id} ended as {job.status.value}",
                    status=job.status.value,
                    error_code=job.error_code,
                )

            if not job.result_url:
                if job.object_count:
                    raise JobFailure("No URL in completed bulk operation", status=job.status.value)
                logger.info("Bulk export %s completed with no objects", job.id)
                return ExportResult(status=JobStatus.COMPLETED.value, job=job)

            tree = build_tree(self.store.fetch_artifact(job.result_url))
            rows = project_rows(tree.products, location_id)
        except JobFailure as exc:
            logger.warning("Export failed: %s", exc.message)
            status = exc.status if exc.status in REPORTED_FAILURE_STATUSES else JobStatus.FAILED.value
            return ExportResult(status=status, job=job, error=exc.message)
        except (StockSyncError, httpx.HTTPError) as exc:
            logger.warning("Export failed: %s", exc)
            return ExportResult(status=JobStatus.FAILED.value, job=job, error=str(exc))

        logger.info("Exported %s rows from %s products", len(rows), len(tree.products))
        return ExportResult(
            status=JobStatus.COMPLETED.value,
            rows=rows,
            job=job,
            dropped=tree.dropped + tree.unknown,
            parse_errors=len(tree.parse_errors),
        )
