"""Resolve the minimum and current toolchain versions, in that order."""

from __future__ import annotations

import json
import logging
import subprocess
import tomllib
from pathlib import Path
from typing import Any, Mapping

from ciforge.config import ConfigError, SourceConfig, VersionSources, read_mapping
from ciforge.config.loader import STRUCTURED_SUFFIXES

from .types import ResolutionError, VersionRole, VersionSpec

logger = logging.getLogger(__name__)


def resolve_versions(sources: VersionSources, project_dir: str | Path) -> list[VersionSpec]:
    root = Path(project_dir)
    versions = [
        _resolve_one(VersionRole.MINIMUM, sources.minimum, root),
        _resolve_one(VersionRole.CURRENT, sources.current, root),
    ]

    for spec in versions:
        logger.info("Resolved %s version: %s", spec.role.value, spec.value)

    return versions


def _resolve_one(role: VersionRole, source: SourceConfig, root: Path) -> VersionSpec:
    if source.value is not None:
        raw: Any = source.value
    elif source.file is not None:
        raw = _from_file(role, source.file, source.field, root)
    elif source.command is not None:
        raw = _from_command(role, source.command, source.field, root)
    else:
        raise ResolutionError(role, "no source configured")

    return VersionSpec(_normalize(role, raw), role)


def _from_file(role: VersionRole, file: str, field: str | None, root: Path) -> Any:
    path = Path(file).expanduser()
    if not path.is_absolute():
        path = root / path

    if not path.is_file():
        raise ResolutionError(role, f"file not found: {path}")

    if path.suffix in STRUCTURED_SUFFIXES:
        if field is None:
            raise ResolutionError(role, f"{path.name}: 'field' is required for {path.suffix} files")
        try:
            data = read_mapping(path)
        except ConfigError as exc:
            raise ResolutionError(role, str(exc)) from exc
        return _lookup_field(role, data, field)

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ResolutionError(role, f"cannot read {path}") from exc

    # Extension-less descriptors such as rust-toolchain may be TOML.
    if field is not None:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ResolutionError(role, f"{path.name}: invalid TOML") from exc
        return _lookup_field(role, data, field)

    return _first_line(role, path, text)


def _from_command(role: VersionRole, command: str, field: str | None, root: Path) -> Any:
    if field is None:
        raise ResolutionError(role, "'command' needs a 'field' to read")

    logger.debug("Reading %s version from: %s", role.value, command)

    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=root,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise ResolutionError(role, f"cannot run '{command}': {exc}") from exc

    if result.returncode != 0:
        detail = result.stderr.strip().splitlines()[-1:] or [""]
        raise ResolutionError(
            role,
            f"'{command}' exited with {result.returncode} {detail[0]}".rstrip(),
        )

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise ResolutionError(role, f"'{command}' did not print JSON") from exc

    if not isinstance(data, Mapping):
        raise ResolutionError(role, f"'{command}' output is not a JSON object")

    return _lookup_field(role, data, field)


def _lookup_field(role: VersionRole, data: Mapping[str, Any], dotted: str) -> Any:
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            raise ResolutionError(role, f"missing field '{dotted}'")
        current = current[part]
    return current


def _first_line(role: VersionRole, path: Path, text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    raise ResolutionError(role, f"{path.name} is empty")


def _normalize(role: VersionRole, raw: Any) -> str:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        raise ResolutionError(role, f"expected a version string, got {type(raw).__name__}")

    value = str(raw).strip()
    if len(value) < 1:
        raise ResolutionError(role, "version is empty")

    return value
