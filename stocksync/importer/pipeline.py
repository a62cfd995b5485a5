from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import httpx

from stocksync.config import SyncSettings, get_settings
from stocksync.errors import StockSyncError, UploadError
from stocksync.export.projection import ALL_LOCATIONS
from stocksync.importer.batches import BatchPlanner, BatchUnit
from stocksync.importer.merger import merge_reports, scan_write_results
from stocksync.importer.staged_upload import StagedUploadPipeline
from stocksync.jobs.client import BulkJobClient
from stocksync.jobs.clock import Clock
from stocksync.jobs.poller import JobPoller
from stocksync.models import DesiredRow, JobStatus, ReconciliationOutcome, RemoteJob, Report, ReportBuilder
from stocksync.reconcile.differ import LocationScope, RowDifferencer
from stocksync.reconcile.index import RemoteIndexBuilder
from stocksync.store.base import InventoryStore

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    status: str
    report: Report
    outcomes: list[ReconciliationOutcome] = field(default_factory=list)
    units: list[BatchUnit] = field(default_factory=list)
    job: RemoteJob | None = None

    @property
    def pending(self) -> bool:
        return self.status == "PENDING"


class ImportPipeline:
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
        self.planner = BatchPlanner(self.settings.batch_size)
        self.uploader = StagedUploadPipeline(store, self.client)

    def run(self, rows: Sequence[DesiredRow], location_id: str, wait: bool = True) -> ImportResult:
        builder = ReportBuilder()

        try:
            scope = self._scope(location_id)
            index = RemoteIndexBuilder(self.store).build()
        except (StockSyncError, httpx.HTTPError) as exc:
            logger.warning("Import aborted before validation: %s", exc)
            builder.add_error(str(exc))
            return ImportResult(status=JobStatus.FAILED.value, report=builder.finalize(total=len(rows)))

        differ = RowDifferencer(index, scope)
        for row in rows:
            builder.add(differ.classify(row))

        accepted = builder.accepted
        logger.info("Validation complete: %s rows, %s queued for update", len(rows), len(accepted))
        if not accepted:
            return ImportResult(
                status=JobStatus.COMPLETED.value,
                report=builder.finalize(),
                outcomes=list(builder.outcomes),
            )

        units = self.planner.plan([outcome.diff for outcome in accepted])
        try:
            job = self.uploader.execute(units)
        except UploadError as exc:
            logger.warning("Bulk update not started (%s stage): %s", exc.stage, exc.message)
            builder.add_error(exc.message)
            return ImportResult(
                status=JobStatus.FAILED.value,
                report=builder.finalize(),
                outcomes=list(builder.outcomes),
                units=units,
            )

        result = ImportResult(
            status="PENDING",
            report=builder.finalize(job_id=job.id),
            outcomes=list(builder.outcomes),
            units=units,
            job=job,
        )
        if not wait:
            return result
        return self.collect(result)

    def collect(self, result: ImportResult) -> ImportResult:
        if result.job is None or not result.pending:
            return result

        try:
            job = self.poller.run(result.job.id)
        except (StockSyncError, httpx.HTTPError) as exc:
            return self._finish(result, result.job, Report(errors=(f"Background update failed: {exc}",)), JobStatus.FAILED)

        if job.status != JobStatus.COMPLETED:
            message = f"Background update {job.id} ended as {job.status.value}"
            if job.error_code:
                message = f"{message} ({job.error_code})"
            return self._finish(result, job, self._partial_report(job, result.units, message), job.status)

        if not job.result_url:
            deferred = Report(applied=job.object_count, job_id=job.id)
            return self._finish(result, job, deferred, JobStatus.COMPLETED)

        try:
            lines = self.store.fetch_artifact(job.result_url)
        except (StockSyncError, httpx.HTTPError) as exc:
            return self._finish(result, job, Report(errors=(f"Could not read bulk results: {exc}",)), JobStatus.FAILED)

        deferred = scan_write_results(lines, result.units).to_report(job_id=job.id)
        return self._finish(result, job, deferred, JobStatus.COMPLETED)

    def _partial_report(self, job: RemoteJob, units: Sequence[BatchUnit], message: str) -> Report:
        failure = Report(errors=(message,), job_id=job.id)
        if not job.partial_result_url:
            return failure
        try:
            lines = self.store.fetch_artifact(job.partial_result_url)
        except (StockSyncError, httpx.HTTPError) as exc:
            logger.warning("Could not read partial results of %s: %s", job.id, exc)
            return failure
        partial = scan_write_results(lines, units).to_report(job_id=job.id)
        logger.info("Bulk job %s applied %s updates before it stopped", job.id, partial.applied)
        return merge_reports(partial, failure)

    def _finish(self, result: ImportResult, job: RemoteJob, deferred: Report, status: JobStatus) -> ImportResult:
        report = merge_reports(result.report, deferred)
        logger.info("Import %s: %s", status.value.lower(), report.summary())
        return ImportResult(
            status=status.value,
            report=report,
            outcomes=result.outcomes,
            units=result.units,
            job=job,
        )

    def _scope(self, location_id: str) -> LocationScope:
        locations = self.store.list_locations()
        if location_id == ALL_LOCATIONS:
            return LocationScope.all_locations(locations)
        for location in locations:
            if location.id == location_id:
                return LocationScope.single(location)
        raise StockSyncError(f"Location {location_id} not found in store", details={"location_id": location_id})
