from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from stocksync.errors import ConflictError, JobFailure, StockSyncError
from stocksync.jobs.clock import Clock, SystemClock
from stocksync.models import JobKind, JobStatus, RemoteJob
from stocksync.store.base import InventoryStore, SubmitResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSpec:
    kind: JobKind
    query: str | None = None
    mutation: str | None = None
    staged_upload_path: str | None = None

    @classmethod
    def read(cls, query: str) -> JobSpec:
        return cls(kind=JobKind.READ, query=query)

    @classmethod
    def write(cls, mutation: str, staged_upload_path: str) -> JobSpec:
        return cls(kind=JobKind.WRITE, mutation=mutation, staged_upload_path=staged_upload_path)


@dataclass
class JobHandle:
    job: RemoteJob | None = None

    @property
    def is_busy(self) -> bool:
        return self.job is not None and not self.job.is_terminal

    def holds(self, job_id: str) -> bool:
        return self.job is not None and self.job.id == job_id

    def hold(self, job: RemoteJob) -> None:
        self.job = job

    def release(self) -> None:
        self.job = None


class BulkJobClient:
    def __init__(self, store: InventoryStore, clock: Clock | None = None, cancel_settle_seconds: float = 3.0) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.cancel_settle_seconds = cancel_settle_seconds
        self.handle = JobHandle()
        self._jobs: dict[str, RemoteJob] = {}
        self._cancelled: set[str] = set()

    @property
    def active_job(self) -> RemoteJob | None:
        return self.handle.job if self.handle.is_busy else None

    def submit(self, spec: JobSpec, cancel_active: bool = False) -> RemoteJob:
        if self.handle.is_busy:
            active = self.handle.job
            if not cancel_active:
                raise ConflictError(
                    f"Bulk job {active.id} is still {active.status.value}",
                    details={"job_id": active.id},
                )
            self.cancel(active.id)

        if cancel_active:
            self._cancel_remote_current(spec.kind)

        result = self._dispatch(spec)
        if result.in_progress:
            logger.info("Remote store reports a %s job in progress; cancelling and retrying once", spec.kind.value)
            current = self.store.current_job(spec.kind)
            if current is not None:
                self.cancel(current.id)
            result = self._dispatch(spec)

        if result.user_errors:
            if result.in_progress:
                raise ConflictError(result.user_errors[0], details={"user_errors": result.user_errors})
            raise JobFailure(f"Bulk job submission rejected: {result.user_errors[0]}")
        if result.job is None:
            raise JobFailure("Bulk job submission returned no job id")

        job = RemoteJob(
            id=result.job.id,
            kind=spec.kind,
            status=JobStatus.from_remote(result.job.status),
            object_count=result.job.object_count,
        )
        self._jobs[job.id] = job
        self.handle.hold(job)
        logger.info("Submitted %s bulk job %s (%s)", job.kind.value, job.id, job.status.value)
        return job

    def poll(self, job_id: str) -> RemoteJob:
        known = self._jobs.get(job_id)
        if known is not None and known.is_terminal:
            return known

        snapshot = self.store.get_job(job_id)
        if snapshot is None:
            if self.handle.holds(job_id):
                self.handle.release()
            raise JobFailure(f"Bulk job {job_id} not found", status="NONE")

        current = known or RemoteJob(id=job_id, kind=snapshot.kind or JobKind.READ)
        updated = current.advance(
            JobStatus.from_remote(snapshot.status),
            object_count=snapshot.object_count,
            result_url=snapshot.url,
            partial_result_url=snapshot.partial_data_url,
            error_code=snapshot.error_code,
        )
        self._jobs[job_id] = updated
        if self.handle.holds(job_id):
            if updated.is_terminal:
                self.handle.release()
            else:
                self.handle.hold(updated)

        if updated.status != current.status:
            logger.info("Bulk job %s: %s -> %s", job_id, current.status.value, updated.status.value)
        else:
            logger.debug("Bulk job %s still %s (%s objects)", job_id, updated.status.value, updated.object_count)
        return updated

    def cancel(self, job_id: str) -> None:
        try:
            status = self.store.cancel_job(job_id)
            logger.info("Requested cancellation of bulk job %s (remote status %s)", job_id, status)
        except (StockSyncError, httpx.HTTPError) as exc:
            logger.warning("Cancelling bulk job %s failed: %s", job_id, exc)

        self._cancelled.add(job_id)
        self.clock.sleep(self.cancel_settle_seconds)
        if self.handle.holds(job_id):
            self.handle.release()

    def _cancel_remote_current(self, kind: JobKind) -> None:
        current = self.store.current_job(kind)
        if current is None or current.id in self._cancelled:
            return
        if JobStatus.from_remote(current.status).is_terminal:
            return
        logger.info("Cancelling stale remote %s job %s before submitting", kind.value, current.id)
        self.cancel(current.id)

    def _dispatch(self, spec: JobSpec) -> SubmitResult:
        if spec.kind == JobKind.READ:
            if not spec.query:
                raise ValueError("Read jobs need a query")
            return self.store.run_query(spec.query)
        if not spec.mutation or not spec.staged_upload_path:
            raise ValueError("Write jobs need a mutation and a staged upload path")
        return self.store.run_mutation(spec.mutation, spec.staged_upload_path)
