import re
from dataclasses import dataclass

from ciforge.config.types import PlatformSpec
from ciforge.versions.types import VersionSpec

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class JobSpec:
    index: int
    version: VersionSpec
    platform: PlatformSpec

    @property
    def name(self) -> str:
        return f"{self.platform.triple} / {self.version.value}"

    @property
    def toolchain(self) -> str:
        return f"{self.version.value}-{self.platform.triple}"

    @property
    def key(self) -> str:
        raw = f"{self.index}-{self.version.role.value}-{self.version.value}-{self.platform.triple}"
        return _UNSAFE.sub("_", raw)


class MatrixError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class EmptyMatrixError(MatrixError):
    def __init__(self, versions: int, platforms: int):
        super().__init__(
            f"Empty job matrix: {versions} version(s) x {platforms} platform(s)"
        )
        self.versions = versions
        self.platforms = platforms
