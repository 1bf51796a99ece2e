"""Bounded-concurrency acquisition scheduling with priority retry."""

from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from time import perf_counter
from typing import Callable, Deque, List, Optional, Sequence

from map_timelapse.acquisition import AcquisitionSession
from map_timelapse.errors import AggregateAcquisitionFailure
from map_timelapse.models import CheckpointArtifact
from map_timelapse.progress import eta_string, should_report


class JobState(enum.Enum):
    PENDING = "pending"
    RETRYING = "retrying"


@dataclass
class Job:
    """One artifact's acquisition plus its retry bookkeeping."""

    artifact: CheckpointArtifact
    retries: int = 0
    state: JobState = JobState.PENDING

    @property
    def label(self) -> str:
        if self.state is JobState.RETRYING:
            return f"{self.artifact.image_name} (retry {self.retries})"
        return self.artifact.image_name


class JobQueue:
    """Mutex-guarded deque; every claim hands a job to exactly one worker."""

    def __init__(self, jobs: Sequence[Job] = ()) -> None:
        self._jobs: Deque[Job] = deque(jobs)
        self._lock = threading.Lock()

    def claim(self) -> Optional[Job]:
        with self._lock:
            return self._jobs.popleft() if self._jobs else None

    def retry_first(self, job: Job) -> None:
        """Put a failed job back at the front so it runs before pending work."""
        with self._lock:
            self._jobs.appendleft(job)

    def drain(self) -> List[Job]:
        with self._lock:
            remaining = list(self._jobs)
            self._jobs.clear()
        return remaining

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


@dataclass
class AcquisitionReport:
    """Terminal outcome of every submitted job."""

    total: int
    succeeded: List[CheckpointArtifact] = field(default_factory=list)
    failed: List[CheckpointArtifact] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def raise_for_failures(self) -> None:
        if self.failed:
            raise AggregateAcquisitionFailure(
                [artifact.image_name for artifact in self.failed]
            )


SessionFactory = Callable[[], AcquisitionSession]


class AcquisitionScheduler:
    """Run acquisition jobs on ``workers`` threads, each with its own session."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        logger: logging.Logger,
        workers: int = 2,
        max_retries: int = 3,
        job_timeout: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory
        self.logger = logger
        self.workers = max(1, workers)
        self.max_retries = max(0, max_retries)
        self.job_timeout = job_timeout

    def run(self, artifacts: Sequence[CheckpointArtifact]) -> AcquisitionReport:
        report = AcquisitionReport(total=len(artifacts))
        if not artifacts:
            return report

        queue = JobQueue([Job(artifact) for artifact in artifacts])
        report_lock = threading.Lock()
        progress_start = perf_counter()

        def record(job: Job, success: bool) -> None:
            with report_lock:
                target = report.succeeded if success else report.failed
                target.append(job.artifact)
                completed = len(report.succeeded) + len(report.failed)
            if should_report(completed, report.total):
                self.logger.info(
                    "Acquisition progress: %s/%s checkpoints (%s failed, %s)",
                    completed,
                    report.total,
                    len(report.failed),
                    eta_string(perf_counter() - progress_start, completed, report.total),
                )

        threads = [
            threading.Thread(
                target=self._worker,
                args=(queue, record),
                name=f"acquire-{index + 1}",
            )
            for index in range(min(self.workers, len(artifacts)))
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for job in queue.drain():
            self.logger.error("No worker available for %s; marking as failed", job.label)
            record(job, False)

        if report.failed:
            self.logger.warning(
                "%s of %s checkpoints failed acquisition",
                len(report.failed),
                report.total,
            )
        return report

    def _worker(self, queue: JobQueue, record: Callable[[Job, bool], None]) -> None:
        try:
            session = self.session_factory()
        except Exception:
            self.logger.exception("Failed to open acquisition session; worker exiting")
            return

        try:
            while True:
                job = queue.claim()
                if job is None:
                    break
                if self._execute(session, job):
                    job.artifact.mark_acquired()
                    record(job, True)
                elif job.retries < self.max_retries:
                    job.retries += 1
                    job.state = JobState.RETRYING
                    queue.retry_first(job)
                else:
                    self.logger.error(
                        "Giving up on %s after %s attempts",
                        job.artifact.image_name,
                        job.retries + 1,
                    )
                    record(job, False)
        finally:
            session.close()

    def _execute(self, session: AcquisitionSession, job: Job) -> bool:
        try:
            session.acquire(job.artifact, timeout=self.job_timeout)
        except Exception as exc:
            self.logger.warning("Acquisition failed for %s: %s", job.label, exc)
            self.logger.debug("Acquisition failure details", exc_info=True)
            return False
        return True


__all__ = [
    "AcquisitionReport",
    "AcquisitionScheduler",
    "Job",
    "JobQueue",
    "JobState",
]
