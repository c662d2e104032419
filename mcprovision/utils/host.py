"""Host platform detection in the vocabulary of version descriptors."""

import platform
import struct
from typing import NamedTuple

OS_NAMES = {
    "windows": "windows",
    "linux": "linux",
    "darwin": "osx",
}

ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "arm64": "arm64",
    "aarch64": "arm64",
    "armv7l": "arm32",
    "arm": "arm32",
    "arm32": "arm32",
}


def normalize_arch(arch: str) -> str:
    arch = arch.lower()
    return ARCH_ALIASES.get(arch, arch)


class HostPlatform(NamedTuple):
    os_name: str
    os_arch: str
    os_version: str = ""

    @classmethod
    def current(cls) -> "HostPlatform":
        system = platform.system().lower()
        arch = normalize_arch(platform.machine())
        # 32-bit interpreter on a 64-bit kernel
        if arch == "x86_64" and struct.calcsize("P") == 4:
            arch = "x86"
        return cls(OS_NAMES.get(system, system), arch, platform.release())

    @property
    def pointer_bits(self) -> str:
        """Value of ${arch} in native classifiers."""
        return "32" if self.os_arch in ("x86", "arm32") else "64"

    @property
    def triple(self) -> str:
        return f"{self.os_name}-{self.os_arch}"

    @property
    def executable_suffix(self) -> str:
        return ".exe" if self.os_name == "windows" else ""
