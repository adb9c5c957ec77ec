from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Stage(Enum):
    SETUP = "setup"
    BUILD = "build"
    TEST = "test"
    STYLE = "style"
    DOC = "doc"


# Fixed for every job.
STAGE_ORDER: tuple[Stage, ...] = (
    Stage.SETUP,
    Stage.BUILD,
    Stage.TEST,
    Stage.STYLE,
    Stage.DOC,
)


class MatrixOrder(Enum):
    VERSION_MAJOR = "version-major"
    PLATFORM_MAJOR = "platform-major"


@dataclass(frozen=True)
class PlatformSpec:
    os: str
    triple: str


@dataclass(frozen=True)
class SourceConfig:
    """Where one version string comes from. Exactly one of value/file/command is set."""

    value: str | None = None
    file: str | None = None
    command: str | None = None
    field: str | None = None


@dataclass(frozen=True)
class VersionSources:
    minimum: SourceConfig
    current: SourceConfig


@dataclass
class StageConfig:
    stage: Stage
    command: str
    env: dict[str, str] = field(default_factory=dict)
    timeout_s: float | None = None


@dataclass
class WorkspaceConfig:
    root: str | None = None
    copy_source: bool = True
    keep: bool = False
    ignore: list[str] = field(default_factory=lambda: [".git"])


@dataclass
class CIConfig:
    project_dir: Path
    versions: VersionSources
    platforms: list[PlatformSpec]
    stages: dict[Stage, StageConfig]
    env: dict[str, str] = field(default_factory=dict)
    max_parallel: int | None = None
    order: MatrixOrder = MatrixOrder.VERSION_MAJOR
    branches: list[str] = field(default_factory=list)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)

    def __iter__(self):
        for stage in STAGE_ORDER:
            yield self.stages[stage]

    def __len__(self):
        return len(self.stages)

    def get_stage(self, stage: Stage) -> StageConfig:
        if stage not in self.stages:
            raise KeyError(stage.value)

        return self.stages[stage]

    def accepts_branch(self, branch: str | None) -> bool:
        if branch is None or not self.branches:
            return True
        return branch in self.branches


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
