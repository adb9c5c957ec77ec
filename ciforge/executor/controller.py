from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Protocol

from ciforge.config import STAGE_ORDER
from ciforge.matrix import JobMatrix, JobSpec

from .types import JobOutcome, RunOutcome

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    def run(
        self, job: JobSpec, cancel_event: threading.Event | None = None
    ) -> JobOutcome: ...


class FanoutController:
    """Runs every job of a matrix concurrently; failures never stop siblings."""

    def __init__(self, executor: JobRunner, max_parallel: int | None = None):
        if max_parallel is not None and max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")

        self.executor = executor
        self.max_parallel = max_parallel
        self._cancel = threading.Event()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            logger.warning("Cancelling run")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, matrix: JobMatrix) -> RunOutcome:
        jobs = list(matrix)
        workers = min(self.max_parallel or os.cpu_count() or 1, len(jobs)) or 1
        outcomes: dict[int, JobOutcome] = {}

        logger.info("Dispatching %d job(s) on %d worker(s)", len(jobs), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ciforge") as pool:
            pending: dict[Future[JobOutcome], JobSpec] = {
                pool.submit(self.executor.run, job, self._cancel): job for job in jobs
            }

            while pending:
                try:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.cancel()
                    continue

                for future in done:
                    job = pending.pop(future)
                    if future.cancelled():
                        outcome = JobOutcome.cancelled(job, (), STAGE_ORDER[0])
                    elif (exc := future.exception()) is not None:
                        logger.error("%s: crashed: %s", job.name, exc, exc_info=exc)
                        outcome = JobOutcome.failure(
                            job, (), STAGE_ORDER[0], None, f"internal error: {exc}"
                        )
                    else:
                        outcome = future.result()
                    outcomes[job.index] = outcome
                    logger.info("%s: %s", job.name, outcome.status.value)

                if self.cancelled:
                    for future in pending:
                        future.cancel()

        ordered = tuple(outcomes[job.index] for job in jobs)
        result = RunOutcome(ordered, cancelled=self.cancelled)
        logger.info(
            "Run finished: %d job(s), %d failed%s",
            len(ordered),
            len(result.failures),
            ", cancelled" if result.cancelled else "",
        )
        return result
