from __future__ import annotations

import argparse
import logging
import sys

from ciforge.config import CIConfig, ConfigError, load_config, parse_order
from ciforge.executor import FanoutController, JobStatus, PipelineExecutor, RunOutcome
from ciforge.matrix import JobMatrix, MatrixError
from ciforge.report import write_report
from ciforge.versions import ResolutionError, resolve_versions

from .args import build_parser


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        _configure_logging(args.verbose)

        match args.command:
            case "run":
                return cmd_run(args)
            case "versions":
                return cmd_versions(args)
            case "matrix":
                return cmd_matrix(args)
            case _:
                return 2

    except (ConfigError, ResolutionError, MatrixError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        return 130


def main() -> None:
    sys.exit(run_cli())


def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.project_dir)

    if not config.accepts_branch(args.branch):
        print(f"SKIP run: branch '{args.branch}' is not one of {', '.join(config.branches)}")
        return 0

    if args.keep_workdirs:
        config.workspace.keep = True

    max_parallel = config.max_parallel
    if args.max_parallel is not None:
        if args.max_parallel < 1:
            raise ConfigError("--max-parallel must be at least 1")
        max_parallel = args.max_parallel

    matrix = _build_matrix(config, args)
    controller = FanoutController(PipelineExecutor.from_config(config), max_parallel)
    rr = controller.run(matrix)

    _print_result(rr, show_output=args.show_output)

    if args.report:
        path = write_report(args.report, rr)
        print(f"Report written to {path}")

    if rr.cancelled:
        return 130
    return 0 if rr.ok else 1


def cmd_versions(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.project_dir)
    for version in resolve_versions(config.versions, config.project_dir):
        print(f"{version.role.value} {version.value}")
    return 0


def cmd_matrix(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.project_dir)
    for name in _build_matrix(config, args).names():
        print(name)
    return 0


def _build_matrix(config: CIConfig, args: argparse.Namespace) -> JobMatrix:
    order = config.order
    if getattr(args, "order", None):
        order = parse_order(args.order)

    versions = resolve_versions(config.versions, config.project_dir)
    return JobMatrix.expand(versions, config.platforms, order)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _print_result(rr: RunOutcome, *, show_output: bool = False) -> None:
    for outcome in rr.outcomes:
        name = outcome.job.name
        match outcome.status:
            case JobStatus.SUCCESS:
                print(f"OK {name}, {outcome.duration_s:.3f}s")
            case JobStatus.FAILURE:
                stage = outcome.failed_stage.value if outcome.failed_stage else "-"
                print(
                    f"FAIL {name}, {stage}, {outcome.duration_s:.3f}s, "
                    f"exit code = {outcome.returncode}"
                )
                if show_output and outcome.stages:
                    last = outcome.stages[-1]
                    for label, text in (("stdout", last.stdout), ("stderr", last.stderr)):
                        if text.strip():
                            print(f"--- {name} {last.stage.value} {label}")
                            print(text.rstrip())
            case JobStatus.CANCELLED:
                print(f"CANCELLED {name}")

    for failure in rr.failures:
        status = failure.returncode if failure.returncode is not None else failure.error
        print(
            f"FAILED {failure.version.value} {failure.platform.triple} "
            f"{failure.stage.value} exit={status}"
        )
