from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from stocksync.errors import JobFailure, RemoteError
from stocksync.jobs.client import BulkJobClient
from stocksync.jobs.clock import Clock, SystemClock
from stocksync.models import RemoteJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollStep:
    job: RemoteJob | None
    reschedule: bool
    error: Exception | None = None


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response is not None and (exc.response.status_code == 429 or exc.response.status_code >= 500)
    if isinstance(exc, RemoteError):
        return exc.retryable
    return False


class JobPoller:
    def __init__(
        self,
        client: BulkJobClient,
        clock: Clock | None = None,
        interval_seconds: float = 2.0,
        timeout_seconds: float = 1800.0,
    ) -> None:
        self.client = client
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds

    def step(self, job_id: str) -> PollStep:
        try:
            job = self.client.poll(job_id)
        except (httpx.HTTPError, RemoteError) as exc:
            if not is_transient(exc):
                raise
            logger.debug("Transient error polling bulk job %s: %s", job_id, exc)
            return PollStep(job=None, reschedule=True, error=exc)
        return PollStep(job=job, reschedule=not job.is_terminal)

    def run(self, job_id: str, on_progress: Callable[[RemoteJob], None] | None = None) -> RemoteJob:
        deadline = self.clock.monotonic() + self.timeout_seconds
        while True:
            step = self.step(job_id)
            if step.job is not None and on_progress is not None:
                on_progress(step.job)
            if not step.reschedule:
                return step.job

            if self.clock.monotonic() + self.interval_seconds > deadline:
                raise JobFailure(
                    f"Bulk job {job_id} did not finish within {self.timeout_seconds:.0f}s",
                    status=step.job.status.value if step.job else None,
                )
            self.clock.sleep(self.interval_seconds)
