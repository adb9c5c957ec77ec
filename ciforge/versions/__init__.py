from .resolver import resolve_versions
from .types import ResolutionError, VersionRole, VersionSpec

__all__ = ["resolve_versions", "ResolutionError", "VersionRole", "VersionSpec"]
