import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import (
    STAGE_ORDER,
    CIConfig,
    ConfigError,
    MatrixOrder,
    PlatformSpec,
    SourceConfig,
    Stage,
    StageConfig,
    UnsupportedConfigFormatError,
    VersionSources,
    WorkspaceConfig,
)

logger = logging.getLogger(__name__)

STRUCTURED_SUFFIXES = {".yaml", ".yml", ".toml", ".json"}


def load_config(path: str | Path, project_dir: str | Path | None = None) -> CIConfig:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"Config file not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Config path is not a file: {pure_path}")

    raw_file = read_mapping(pure_path)

    if project_dir is None:
        root = pure_path.parent
    else:
        root = Path(project_dir).expanduser().resolve()
        if not root.is_dir():
            raise ConfigError(f"Project directory not found: {root}")

    config = _build_ci_config(raw_file, root)
    logger.debug(
        "Loaded %s: %d platform(s), project dir %s",
        pure_path,
        len(config.platforms),
        root,
    )
    return config


def read_mapping(path: Path) -> Mapping[str, Any]:
    """Parse a YAML, TOML or JSON file whose top-level value must be a mapping."""
    fmt = _detect_format(path)
    return _parse_file(path, fmt)


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    match fmt:
        case "yaml":
            return _parse_yaml(path)
        case "toml":
            return _parse_toml(path)
        case "json":
            return _parse_json(path)
        case _:
            raise AssertionError("Unreachable")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"{path}: cannot read file") from exc


def _parse_yaml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = yaml.safe_load(_read_text(path))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML") from exc

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: YAML parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _parse_toml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = tomllib.loads(_read_text(path))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML") from exc

    return raw_file


def _parse_json(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON") from exc

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: JSON parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _build_ci_config(raw: Mapping[str, Any], project_dir: Path) -> CIConfig:
    keys = {
        "versions",
        "platforms",
        "stages",
        "env",
        "max_parallel",
        "order",
        "branches",
        "workspace",
    }

    for key in raw.keys():
        if key not in keys:
            raise ConfigError(f"Can't process top-level field: {key}")

    for required in ("versions", "platforms", "stages"):
        if required not in raw:
            raise ConfigError(f"Missing '{required}' field")

    versions = _build_version_sources(raw["versions"])
    platforms = _build_platforms(raw["platforms"])
    stages = _build_stages(raw["stages"])
    env = _build_env("env", raw.get("env", {}))

    max_parallel = None
    if "max_parallel" in raw:
        max_parallel = _build_max_parallel(raw["max_parallel"])

    order = MatrixOrder.VERSION_MAJOR
    if "order" in raw:
        order = parse_order(raw["order"])

    branches = []
    if "branches" in raw:
        branches = _build_string_list("branches", raw["branches"])

    workspace = WorkspaceConfig()
    if "workspace" in raw:
        workspace = _build_workspace(raw["workspace"])

    return CIConfig(
        project_dir=project_dir,
        versions=versions,
        platforms=platforms,
        stages=stages,
        env=env,
        max_parallel=max_parallel,
        order=order,
        branches=branches,
        workspace=workspace,
    )


def parse_order(value: Any) -> MatrixOrder:
    if not isinstance(value, str):
        raise ConfigError(f"'order' must be a string, got {type(value)}")

    try:
        return MatrixOrder(value.strip())
    except ValueError:
        allowed = ", ".join(o.value for o in MatrixOrder)
        raise ConfigError(f"Unknown order '{value}', expected one of: {allowed}") from None


def _build_version_sources(raw: Any) -> VersionSources:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'versions' must be a mapping, got {type(raw)}")

    for key in raw.keys():
        if key not in ("minimum", "current"):
            raise ConfigError(f"versions: Can't process: {key}")

    for role in ("minimum", "current"):
        if role not in raw:
            raise ConfigError(f"versions: missing '{role}'")

    return VersionSources(
        minimum=_build_source("minimum", raw["minimum"]),
        current=_build_source("current", raw["current"]),
    )


def _build_source(role: str, fields: Any) -> SourceConfig:
    # A bare string is shorthand for a literal value.
    if isinstance(fields, str):
        fields = {"value": fields}

    if not isinstance(fields, Mapping):
        raise ConfigError(f"versions.{role} must be a mapping or a string")

    keys = {"value", "file", "command", "field"}
    for key in fields.keys():
        if key not in keys:
            raise ConfigError(f"versions.{role}: Can't process: {key}")

    values: dict[str, str] = {}
    for key in keys:
        if key not in fields:
            continue
        item = fields[key]
        if not isinstance(item, str):
            raise ConfigError(f"versions.{role}: '{key}' should be a string")
        if len(item.strip()) < 1:
            raise ConfigError(f"versions.{role}: '{key}' can't be empty")
        values[key] = item.strip()

    kinds = [k for k in ("value", "file", "command") if k in values]
    if len(kinds) != 1:
        raise ConfigError(
            f"versions.{role}: exactly one of 'value', 'file' or 'command' is required"
        )

    if "command" in values and "field" not in values:
        raise ConfigError(f"versions.{role}: 'command' needs a 'field' to read")

    if "value" in values and "field" in values:
        raise ConfigError(f"versions.{role}: 'field' makes no sense with 'value'")

    return SourceConfig(
        value=values.get("value"),
        file=values.get("file"),
        command=values.get("command"),
        field=values.get("field"),
    )


def _build_platforms(raw: Any) -> list[PlatformSpec]:
    if not isinstance(raw, list):
        raise ConfigError(f"'platforms' must be a list, got {type(raw)}")

    platforms = []
    seen = set()

    for item in raw:
        if not isinstance(item, Mapping):
            raise ConfigError(f"platforms: {item} must be a mapping")

        for key in item.keys():
            if key not in ("os", "triple"):
                raise ConfigError(f"platforms: Can't process: {key}")

        for key in ("os", "triple"):
            if key not in item:
                raise ConfigError(f"platforms: missing '{key}' in {dict(item)}")
            if not isinstance(item[key], str) or len(item[key].strip()) < 1:
                raise ConfigError(f"platforms: '{key}' should be a non-empty string")

        platform = PlatformSpec(os=item["os"].strip(), triple=item["triple"].strip())

        if platform in seen:
            raise ConfigError(
                f"platforms: duplicate entry {platform.os}/{platform.triple}"
            )

        platforms.append(platform)
        seen.add(platform)

    # An empty list is left for the matrix expander to reject.
    return platforms


def _build_stages(raw: Any) -> dict[Stage, StageConfig]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'stages' must be a mapping, got {type(raw)}")

    names = [s.value for s in STAGE_ORDER]
    stages = {}

    for name in raw.keys():
        if name not in names:
            raise ConfigError(
                f"stages: unknown stage '{name}', expected: {', '.join(names)}"
            )

    for stage in STAGE_ORDER:
        if stage.value not in raw:
            raise ConfigError(f"stages: missing '{stage.value}'")
        stages[stage] = _build_stage_config(stage, raw[stage.value])

    return stages


def _build_stage_config(stage: Stage, fields: Any) -> StageConfig:
    name = stage.value

    if isinstance(fields, str):
        fields = {"command": fields}

    if not isinstance(fields, Mapping):
        raise ConfigError(f"{name}: stage must be a command string or a mapping")

    keys = {"command", "env", "timeout_s"}
    env = {}
    timeout_s = None

    for field in fields.keys():
        if field not in keys:
            raise ConfigError(f"{name}: Can't process: {field}")

    if not "command" in fields:
        raise ConfigError(f"{name}: missing 'command'")

    if not isinstance(fields["command"], str):
        raise ConfigError(f"{name}: The command should be a string")

    if len(fields["command"].strip()) < 1:
        raise ConfigError(f"{name}: Command missing")

    command = fields["command"].strip()

    if "env" in fields:
        env = _build_env(name, fields["env"])

    if "timeout_s" in fields:
        value = fields["timeout_s"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{name}: timeout_s should be a number")
        if value <= 0:
            raise ConfigError(f"{name}: timeout_s must be positive")
        timeout_s = float(value)

    return StageConfig(stage, command, env, timeout_s)


def _build_env(owner: str, raw: Any) -> dict[str, str]:
    env = {}

    if not isinstance(raw, Mapping):
        raise ConfigError(f"{owner}: Env should be a mapping")

    for key, item in raw.items():
        if not isinstance(key, str):
            raise ConfigError(f"{owner}: {key} should be a string")

        if len(key.strip()) < 1:
            raise ConfigError(f"{owner}: A key can't be empty")

        if not isinstance(item, str):
            raise ConfigError(f"{owner}: {item} should be a string")

        env[key.strip()] = item

    return env


def _build_max_parallel(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'max_parallel' must be an integer, got {type(value)}")

    if value < 1:
        raise ConfigError("'max_parallel' must be at least 1")

    return value


def _build_string_list(owner: str, raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise ConfigError(f"'{owner}' should be a list")

    items = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            raise ConfigError(f"{owner}: {item} should be a string")

        value = item.strip()
        if len(value) < 1:
            raise ConfigError(f"{owner}: an entry is empty")

        if value in seen:
            continue

        items.append(value)
        seen.add(value)

    return items


def _build_workspace(raw: Any) -> WorkspaceConfig:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'workspace' must be a mapping, got {type(raw)}")

    keys = {"root", "copy_source", "keep", "ignore"}
    for key in raw.keys():
        if key not in keys:
            raise ConfigError(f"workspace: Can't process: {key}")

    workspace = WorkspaceConfig()

    if raw.get("root") is not None:
        if not isinstance(raw["root"], str) or len(raw["root"].strip()) < 1:
            raise ConfigError("workspace: 'root' should be a non-empty string")
        workspace.root = raw["root"].strip()

    for flag in ("copy_source", "keep"):
        if flag in raw:
            if not isinstance(raw[flag], bool):
                raise ConfigError(f"workspace: '{flag}' should be a boolean")
            setattr(workspace, flag, raw[flag])

    if "ignore" in raw:
        workspace.ignore = _build_string_list("workspace.ignore", raw["ignore"])

    return workspace
