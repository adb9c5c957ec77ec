from .loader import load_config, parse_order, read_mapping
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

__all__ = [
    "load_config",
    "parse_order",
    "read_mapping",
    "CIConfig",
    "ConfigError",
    "UnsupportedConfigFormatError",
    "MatrixOrder",
    "PlatformSpec",
    "SourceConfig",
    "Stage",
    "STAGE_ORDER",
    "StageConfig",
    "VersionSources",
    "WorkspaceConfig",
]
