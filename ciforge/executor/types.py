from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ciforge.config.types import PlatformSpec, Stage
from ciforge.matrix.types import JobSpec
from ciforge.versions.types import VersionSpec


class JobStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageResult:
    stage: Stage
    returncode: int | None
    stdout: str
    stderr: str
    duration_s: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None


@dataclass(frozen=True)
class JobOutcome:
    job: JobSpec
    status: JobStatus
    stages: tuple[StageResult, ...]
    failed_stage: Stage | None = None
    returncode: int | None = None
    error: str | None = None

    @classmethod
    def success(cls, job: JobSpec, stages: tuple[StageResult, ...]) -> "JobOutcome":
        return cls(job, JobStatus.SUCCESS, stages)

    @classmethod
    def failure(
        cls,
        job: JobSpec,
        stages: tuple[StageResult, ...],
        stage: Stage,
        returncode: int | None,
        error: str | None = None,
    ) -> "JobOutcome":
        return cls(job, JobStatus.FAILURE, stages, stage, returncode, error)

    @classmethod
    def cancelled(
        cls, job: JobSpec, stages: tuple[StageResult, ...], stage: Stage
    ) -> "JobOutcome":
        return cls(job, JobStatus.CANCELLED, stages, stage, None, "cancelled")

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @property
    def duration_s(self) -> float:
        return sum(s.duration_s for s in self.stages)

    def ran(self, stage: Stage) -> bool:
        return any(s.stage is stage for s in self.stages)


@dataclass(frozen=True)
class Failure:
    version: VersionSpec
    platform: PlatformSpec
    stage: Stage
    returncode: int | None
    error: str | None


@dataclass(frozen=True)
class RunOutcome:
    outcomes: tuple[JobOutcome, ...]
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> list[Failure]:
        failed = []
        for outcome in self.outcomes:
            if outcome.status is not JobStatus.FAILURE or outcome.failed_stage is None:
                continue
            failed.append(
                Failure(
                    outcome.job.version,
                    outcome.job.platform,
                    outcome.failed_stage,
                    outcome.returncode,
                    outcome.error,
                )
            )
        return failed

    def get(self, job: JobSpec) -> JobOutcome:
        for outcome in self.outcomes:
            if outcome.job == job:
                return outcome
        raise KeyError(job.name)


@dataclass(frozen=True)
class ExecutionContext:
    job: JobSpec
    base_dir: Path
    work_dir: Path
    env: dict[str, str]


class ExecutionContextError(Exception):
    def __init__(self, job: JobSpec, reason: str):
        super().__init__(f"{job.name}: cannot provision execution context: {reason}")
        self.job = job
        self.reason = reason
