from __future__ import annotations

import argparse

from ciforge.config import MatrixOrder


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ciforge")

    parser.add_argument(
        "--config",
        default="ciforge.yml",
        help="Path to config file",
    )
    parser.add_argument(
        "--project-dir",
        default=None,
        help="Project checkout (defaults to the config file's directory)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress to stderr (-vv for debug)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run
    run = subparsers.add_parser("run", help="Run the job matrix")
    run.add_argument(
        "--branch",
        default=None,
        help="Target branch of the change; skips the run if not configured",
    )
    run.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum number of jobs running at once",
    )
    run.add_argument(
        "--order",
        choices=[o.value for o in MatrixOrder],
        default=None,
        help="Job ordering used for reporting",
    )
    run.add_argument(
        "--keep-workdirs",
        action="store_true",
        help="Do not delete per-job working directories",
    )
    run.add_argument(
        "--show-output",
        action="store_true",
        help="Print output of failing stages",
    )
    run.add_argument(
        "--report",
        default=None,
        help="Write a JSON report to this path",
    )

    # versions
    subparsers.add_parser("versions", help="Show resolved toolchain versions")

    # matrix
    subparsers.add_parser("matrix", help="Show the expanded job matrix")

    return parser
