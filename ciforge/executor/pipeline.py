from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Mapping

from ciforge.config import STAGE_ORDER, CIConfig, Stage, StageConfig, WorkspaceConfig
from ciforge.matrix import JobSpec

from .types import (
    ExecutionContext,
    ExecutionContextError,
    JobOutcome,
    StageResult,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(version|role|os|triple|toolchain|job)\}")


def expand_placeholders(text: str, job: JobSpec) -> str:
    """Substitute job placeholders, leaving any other braces for the shell."""
    values = {
        "version": job.version.value,
        "role": job.version.role.value,
        "os": job.platform.os,
        "triple": job.platform.triple,
        "toolchain": job.toolchain,
        "job": job.key,
    }
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], text)


def job_environment(job: JobSpec, project_dir: Path, work_dir: Path) -> dict[str, str]:
    return {
        "CI_TOOLCHAIN_VERSION": job.version.value,
        "CI_VERSION_ROLE": job.version.role.value,
        "CI_TARGET_OS": job.platform.os,
        "CI_TARGET_TRIPLE": job.platform.triple,
        "CI_TOOLCHAIN": job.toolchain,
        "CI_JOB_NAME": job.name,
        "CI_JOB_KEY": job.key,
        "CI_PROJECT_DIR": str(project_dir),
        "CI_WORK_DIR": str(work_dir),
    }


class PipelineExecutor:
    def __init__(
        self,
        stages: Mapping[Stage, StageConfig],
        *,
        project_dir: str | Path,
        workspace: WorkspaceConfig | None = None,
        env: Mapping[str, str] | None = None,
    ):
        missing = [s.value for s in STAGE_ORDER if s not in stages]
        if missing:
            raise ValueError(f"missing stage command(s): {', '.join(missing)}")

        self.stages = [stages[stage] for stage in STAGE_ORDER]
        self.project_dir = Path(project_dir).resolve()
        self.workspace = workspace or WorkspaceConfig()
        self.env = dict(env or {})

    @classmethod
    def from_config(cls, config: CIConfig) -> PipelineExecutor:
        return cls(
            config.stages,
            project_dir=config.project_dir,
            workspace=config.workspace,
            env=config.env,
        )

    def run(
        self, job: JobSpec, cancel_event: threading.Event | None = None
    ) -> JobOutcome:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("%s: cancelled before start", job.name)
            return JobOutcome.cancelled(job, (), STAGE_ORDER[0])

        try:
            ctx = self.provision(job)
        except ExecutionContextError as exc:
            logger.error("%s", exc)
            return JobOutcome.failure(job, (), Stage.SETUP, None, str(exc))

        try:
            return self._run_stages(ctx, cancel_event)
        finally:
            self.release(ctx)

    def provision(self, job: JobSpec) -> ExecutionContext:
        root = self._workspace_root()

        try:
            if root is not None:
                root.mkdir(parents=True, exist_ok=True)
            base_dir = Path(tempfile.mkdtemp(prefix=f"ciforge-{job.key}-", dir=root))
        except OSError as exc:
            raise ExecutionContextError(job, str(exc)) from exc

        work_dir = base_dir
        if self.workspace.copy_source:
            work_dir = base_dir / "src"
            try:
                shutil.copytree(
                    self.project_dir,
                    work_dir,
                    symlinks=True,
                    ignore=self._copy_filter(root),
                )
            except OSError as exc:
                shutil.rmtree(base_dir, ignore_errors=True)
                raise ExecutionContextError(job, f"copying sources failed: {exc}") from exc

        env = {
            **os.environ,
            **{key: expand_placeholders(value, job) for key, value in self.env.items()},
            **job_environment(job, self.project_dir, work_dir),
        }
        logger.debug("%s: provisioned %s", job.name, work_dir)
        return ExecutionContext(job, base_dir, work_dir, env)

    def release(self, ctx: ExecutionContext) -> None:
        if self.workspace.keep:
            logger.info("%s: keeping %s", ctx.job.name, ctx.base_dir)
            return
        shutil.rmtree(ctx.base_dir, ignore_errors=True)

    def _run_stages(
        self, ctx: ExecutionContext, cancel_event: threading.Event | None
    ) -> JobOutcome:
        job = ctx.job
        results: list[StageResult] = []

        for stage_config in self.stages:
            stage = stage_config.stage
            if cancel_event is not None and cancel_event.is_set():
                logger.info("%s: cancelled before %s", job.name, stage.value)
                return JobOutcome.cancelled(job, tuple(results), stage)

            try:
                result = self._run_stage(ctx, stage_config)
            except Exception as exc:
                logger.exception("%s: %s crashed", job.name, stage.value)
                result = StageResult(stage, None, "", "", 0.0, f"internal error: {exc}")
            results.append(result)

            if not result.ok:
                logger.warning(
                    "%s: %s failed (exit %s)%s",
                    job.name,
                    stage.value,
                    result.returncode,
                    f": {result.error}" if result.error else "",
                )
                return JobOutcome.failure(
                    job, tuple(results), stage, result.returncode, result.error
                )

        logger.info("%s: all stages passed", job.name)
        return JobOutcome.success(job, tuple(results))

    def _run_stage(self, ctx: ExecutionContext, stage_config: StageConfig) -> StageResult:
        job = ctx.job
        stage = stage_config.stage
        command = expand_placeholders(stage_config.command, job)
        env = {
            **ctx.env,
            **{k: expand_placeholders(v, job) for k, v in stage_config.env.items()},
        }
        logger.info("%s: %s: %s", job.name, stage.value, command)

        start = time.monotonic()
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=ctx.work_dir,
                env=env,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=stage_config.timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.monotonic() - start
            return StageResult(
                stage,
                None,
                _as_text(exc.stdout),
                _as_text(exc.stderr),
                duration,
                f"timed out after {stage_config.timeout_s:g}s",
            )
        except OSError as exc:
            duration = time.monotonic() - start
            return StageResult(stage, None, "", "", duration, f"cannot start: {exc}")

        duration = time.monotonic() - start
        return StageResult(
            stage, result.returncode, result.stdout, result.stderr, duration
        )

    def _workspace_root(self) -> Path | None:
        if self.workspace.root is None:
            return None
        root = Path(self.workspace.root).expanduser()
        if not root.is_absolute():
            root = self.project_dir / root
        return root.resolve()

    def _copy_filter(self, root: Path | None):
        by_pattern = shutil.ignore_patterns(*self.workspace.ignore)

        def ignore(directory: str, names: list[str]) -> set[str]:
            ignored = set(by_pattern(directory, names))
            # A workspace root inside the project must not copy itself.
            if root is not None and Path(directory).resolve() == root.parent:
                ignored.update(name for name in names if name == root.name)
            return ignored

        return ignore


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
