# tests/test_cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from ciforge.cli import run_cli


def _py(code: str) -> str:
    exe = str(Path(sys.executable))
    # This returns a shell command string. JSON will escape it safely.
    return f'"{exe}" -c "{code}"'


def _stage(log: Path, name: str, fail_for: tuple[str, str] | None = None) -> str:
    code = (
        "import os; e = os.environ; "
        f"open(r'{log}','a').write('{name} ' + e['CI_TOOLCHAIN_VERSION'] + ' ' + e['CI_TARGET_TRIPLE'] + chr(10)); "
        f"print('output of {name}'); "
    )
    if fail_for is None:
        code += "raise SystemExit(0)"
    else:
        code += (
            "raise SystemExit(3 if (e['CI_TOOLCHAIN_VERSION'], e['CI_TARGET_TRIPLE']) == "
            f"{fail_for!r} else 0)"
        )
    return _py(code)


def _write_config(project: Path, log: Path, **overrides: object) -> Path:
    project.mkdir(exist_ok=True)
    cfg = {
        "versions": {
            "minimum": {"file": "Cargo.toml", "field": "package.rust-version"},
            "current": {"file": "rust-toolchain"},
        },
        "platforms": [
            {"os": "linux", "triple": "x86_64"},
            {"os": "linux", "triple": "i686"},
        ],
        "stages": {
            name: _stage(log, name) for name in ("setup", "build", "test", "style", "doc")
        },
        "workspace": {"root": str(project.parent / "work")},
    }
    cfg.update(overrides)
    path = project / "ciforge.json"
    path.write_text(json.dumps(cfg), encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    p = tmp_path / "project"
    p.mkdir()
    (p / "Cargo.toml").write_text(
        '[package]\nname = "demo"\nrust-version = "1.41.0"\n', encoding="utf-8"
    )
    (p / "rust-toolchain").write_text("1.60.0\n", encoding="utf-8")
    return p


def _log_lines(log: Path) -> list[str]:
    if not log.exists():
        return []
    return log.read_text(encoding="utf-8").splitlines()


def test_versions_prints_minimum_then_current(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_config(project, tmp_path / "log.txt")

    code = run_cli(["--config", str(cfg), "versions"])
    out = capsys.readouterr().out.splitlines()

    assert code == 0
    assert out == ["minimum 1.41.0", "current 1.60.0"]


def test_matrix_prints_jobs_in_version_major_order(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_config(project, tmp_path / "log.txt")

    code = run_cli(["--config", str(cfg), "matrix"])
    out = capsys.readouterr().out.splitlines()

    assert code == 0
    assert out == [
        "x86_64 / 1.41.0",
        "i686 / 1.41.0",
        "x86_64 / 1.60.0",
        "i686 / 1.60.0",
    ]


def test_matrix_honours_configured_order(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_config(project, tmp_path / "log.txt", order="platform-major")

    code = run_cli(["--config", str(cfg), "matrix"])
    out = capsys.readouterr().out.splitlines()

    assert code == 0
    assert out == [
        "x86_64 / 1.41.0",
        "x86_64 / 1.60.0",
        "i686 / 1.41.0",
        "i686 / 1.60.0",
    ]


def test_run_all_success_returns_0(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    cfg = _write_config(project, log)

    code = run_cli(["--config", str(cfg), "run", "--max-parallel", "2"])
    out = capsys.readouterr().out

    assert code == 0
    assert out.count("OK ") == 4
    assert "FAIL" not in out
    assert len(_log_lines(log)) == 4 * 5


def test_style_failure_on_one_cell_is_reported_alone(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    report = tmp_path / "report.json"
    stages = {
        name: _stage(log, name) for name in ("setup", "build", "test", "doc")
    }
    stages["style"] = _stage(log, "style", fail_for=("1.41.0", "i686"))
    cfg = _write_config(project, log, stages=stages)

    code = run_cli(["--config", str(cfg), "run", "--report", str(report)])
    out = capsys.readouterr().out.splitlines()

    assert code == 1
    assert [line for line in out if line.startswith("FAILED")] == [
        "FAILED 1.41.0 i686 style exit=3"
    ]
    assert sum(line.startswith("OK ") for line in out) == 3
    assert any(line.startswith("FAIL i686 / 1.41.0, style") for line in out)

    lines = _log_lines(log)
    assert "style 1.41.0 i686" in lines
    assert "doc 1.41.0 i686" not in lines
    for version, triple in [("1.41.0", "x86_64"), ("1.60.0", "x86_64"), ("1.60.0", "i686")]:
        assert f"doc {version} {triple}" in lines

    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["ok"] is False
    assert data["cancelled"] is False
    assert [(j["version"], j["triple"], j["status"]) for j in data["jobs"]] == [
        ("1.41.0", "x86_64", "success"),
        ("1.41.0", "i686", "failure"),
        ("1.60.0", "x86_64", "success"),
        ("1.60.0", "i686", "success"),
    ]
    failed = data["jobs"][1]
    assert failed["failed_stage"] == "style"
    assert failed["returncode"] == 3
    assert [s["stage"] for s in failed["stages"]] == ["setup", "build", "test", "style"]


def test_show_output_prints_failing_stage_output(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    stages = {name: _stage(log, name) for name in ("setup", "build", "style", "doc")}
    stages["test"] = _stage(log, "test", fail_for=("1.60.0", "x86_64"))
    cfg = _write_config(project, log, stages=stages)

    code = run_cli(["--config", str(cfg), "run", "--show-output"])
    out = capsys.readouterr().out

    assert code == 1
    assert "--- x86_64 / 1.60.0 test stdout" in out
    assert "output of test" in out


def test_branch_not_configured_skips_run(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    cfg = _write_config(project, log, branches=["master"])

    code = run_cli(["--config", str(cfg), "run", "--branch", "feature"])
    out = capsys.readouterr().out

    assert code == 0
    assert out.startswith("SKIP")
    assert _log_lines(log) == []


def test_branch_configured_runs(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    cfg = _write_config(project, log, branches=["master"])

    code = run_cli(["--config", str(cfg), "run", "--branch", "master"])
    _ = capsys.readouterr()

    assert code == 0
    assert len(_log_lines(log)) == 20


def test_resolution_failure_returns_2_before_any_job(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    (project / "rust-toolchain").unlink()
    cfg = _write_config(project, log)

    code = run_cli(["--config", str(cfg), "run"])
    captured = capsys.readouterr()

    assert code == 2
    assert "current" in captured.err
    assert _log_lines(log) == []


def test_empty_platforms_returns_2_before_any_job(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    cfg = _write_config(project, log, platforms=[])

    code = run_cli(["--config", str(cfg), "run"])
    captured = capsys.readouterr()

    assert code == 2
    assert captured.err != ""
    assert _log_lines(log) == []


def test_invalid_config_path_returns_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "missing.json"

    code = run_cli(["--config", str(missing), "matrix"])
    captured = capsys.readouterr()

    assert code == 2
    assert captured.err != ""


def test_invalid_max_parallel_returns_2(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_config(project, tmp_path / "log.txt")

    code = run_cli(["--config", str(cfg), "run", "--max-parallel", "0"])
    captured = capsys.readouterr()

    assert code == 2
    assert captured.err != ""


def test_undecodable_stage_output_does_not_abort_run(
    tmp_path: Path, project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    log = tmp_path / "log.txt"
    stages = {name: _stage(log, name) for name in ("setup", "test", "style", "doc")}
    stages["build"] = (
        'if [ "$CI_TARGET_TRIPLE" = i686 ]; then printf \'\\377\\n\'; fi; '
        + _stage(log, "build")
    )
    cfg = _write_config(project, log, stages=stages)

    code = run_cli(["--config", str(cfg), "run"])
    out = capsys.readouterr().out

    assert code == 0
    assert out.count("OK ") == 4
    assert len(_log_lines(log)) == 4 * 5


def test_keyboard_interrupt_during_run_returns_130(
    tmp_path: Path,
    project: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    import concurrent.futures

    from ciforge.executor import controller as controller_module

    real_wait = concurrent.futures.wait
    calls = {"n": 0}

    def interrupted_wait(fs, timeout=None, return_when=concurrent.futures.ALL_COMPLETED):
        calls["n"] += 1
        if calls["n"] == 1:
            raise KeyboardInterrupt
        return real_wait(fs, timeout=timeout, return_when=return_when)

    monkeypatch.setattr(controller_module, "wait", interrupted_wait)
    log = tmp_path / "log.txt"
    report = tmp_path / "report.json"
    cfg = _write_config(project, log)

    code = run_cli(
        ["--config", str(cfg), "run", "--max-parallel", "1", "--report", str(report)]
    )
    out = capsys.readouterr().out

    assert code == 130
    assert "CANCELLED i686 / 1.60.0" in out
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["cancelled"] is True
    assert len(data["jobs"]) == 4


def test_failure_without_stage_is_printed(capsys: pytest.CaptureFixture[str]) -> None:
    from ciforge.cli.commands import _print_result
    from ciforge.config.types import PlatformSpec
    from ciforge.executor.types import JobOutcome, JobStatus, RunOutcome
    from ciforge.matrix import JobSpec
    from ciforge.versions import VersionRole, VersionSpec

    job = JobSpec(0, VersionSpec("1.41.0", VersionRole.MINIMUM), PlatformSpec("linux", "i686"))
    _print_result(RunOutcome((JobOutcome(job, JobStatus.FAILURE, ()),)))
    out = capsys.readouterr().out.splitlines()

    assert out == ["FAIL i686 / 1.41.0, -, 0.000s, exit code = None"]
