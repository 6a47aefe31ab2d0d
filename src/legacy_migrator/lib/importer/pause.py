"""Cooperative pause signals checked between batches."""

from typing import Protocol

from loguru import logger

from legacy_migrator.models.import_job import ImportJob


class PauseSignal(Protocol):
    """Decides whether a running job should stop after its current batch."""

    def should_pause(self, job: ImportJob) -> bool: ...


class PauseController:
    """Pause requests for individual jobs plus a global maintenance switch.

    A per-job request is consumed when the job observes it, so a later
    restart runs to completion unless paused again.
    """

    def __init__(self) -> None:
        self._requested: set[str] = set()
        self.maintenance = False

    def request(self, job_id: str) -> None:
        self._requested.add(job_id)
        logger.info(f"Pause requested for import job {job_id}")

    def cancel(self, job_id: str) -> None:
        self._requested.discard(job_id)

    def is_requested(self, job_id: str) -> bool:
        return job_id in self._requested

    def should_pause(self, job: ImportJob) -> bool:
        if self.maintenance:
            return True
        if job.job_id in self._requested:
            self._requested.discard(job.job_id)
            return True
        return False
