from dataclasses import dataclass
from enum import Enum


class VersionRole(Enum):
    MINIMUM = "minimum"
    CURRENT = "current"


@dataclass(frozen=True)
class VersionSpec:
    value: str
    role: VersionRole

    def __str__(self) -> str:
        return self.value


class ResolutionError(Exception):
    def __init__(self, role: VersionRole, reason: str):
        super().__init__(f"Cannot resolve {role.value} version: {reason}")
        self.role = role
        self.reason = reason
