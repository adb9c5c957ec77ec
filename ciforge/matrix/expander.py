from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ciforge.config.types import MatrixOrder, PlatformSpec
from ciforge.versions.types import VersionSpec

from .types import EmptyMatrixError, JobSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobMatrix:
    jobs: tuple[JobSpec, ...]
    order: MatrixOrder

    @classmethod
    def expand(
        cls,
        versions: Sequence[VersionSpec],
        platforms: Sequence[PlatformSpec],
        order: MatrixOrder = MatrixOrder.VERSION_MAJOR,
    ) -> JobMatrix:
        if len(versions) == 0 or len(platforms) == 0:
            raise EmptyMatrixError(len(versions), len(platforms))

        match order:
            case MatrixOrder.VERSION_MAJOR:
                pairs = [(v, p) for v in versions for p in platforms]
            case MatrixOrder.PLATFORM_MAJOR:
                pairs = [(v, p) for p in platforms for v in versions]
            case _:
                raise AssertionError("Unreachable")

        jobs = tuple(
            JobSpec(index, version, platform)
            for index, (version, platform) in enumerate(pairs)
        )
        logger.info(
            "Expanded %d version(s) x %d platform(s) into %d job(s), %s",
            len(versions),
            len(platforms),
            len(jobs),
            order.value,
        )
        return cls(jobs, order)

    def __iter__(self):
        return iter(self.jobs)

    def __len__(self):
        return len(self.jobs)

    def names(self) -> list[str]:
        return [job.name for job in self.jobs]
