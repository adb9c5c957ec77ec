"""JSON report of a finished run, keyed by job identity."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ciforge.executor import JobOutcome, RunOutcome


def job_to_dict(outcome: JobOutcome) -> dict[str, Any]:
    job = outcome.job
    return {
        "key": job.key,
        "name": job.name,
        "version": job.version.value,
        "role": job.version.role.value,
        "os": job.platform.os,
        "triple": job.platform.triple,
        "status": outcome.status.value,
        "failed_stage": outcome.failed_stage.value if outcome.failed_stage else None,
        "returncode": outcome.returncode,
        "error": outcome.error,
        "stages": [
            {
                "stage": s.stage.value,
                "returncode": s.returncode,
                "duration_s": round(s.duration_s, 3),
                "error": s.error,
            }
            for s in outcome.stages
        ],
    }


def run_to_dict(run: RunOutcome) -> dict[str, Any]:
    return {
        "ok": run.ok,
        "cancelled": run.cancelled,
        "jobs": [job_to_dict(o) for o in run.outcomes],
    }


def write_report(path: str | Path, run: RunOutcome) -> Path:
    """Write the report atomically (temp file + os.replace)."""
    p = Path(path).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f"{p.name}.", suffix=".tmp", dir=str(p.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(run_to_dict(run), f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp_path, p)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    return p
