"""Errors raised across the provisioning core.

Everything raised out of this package derives from ``ProvisionError``; aiohttp,
OS and JSON errors are wrapped with the URL, path or stage they happened at.
"""

from pathlib import Path
from typing import List, Optional


class ProvisionError(Exception):
    """Base class for provisioning failures."""


# Catalog

class ManifestUnavailable(ProvisionError):
    def __init__(self, url: str, cause: Exception):
        super().__init__(f"Version manifest unavailable from {url} and no cached copy exists: {cause}")
        self.url = url
        self.cause = cause


class VersionNotFound(ProvisionError):
    def __init__(self, version_id: str):
        super().__init__(f"Version {version_id!r} is not listed in the version manifest")
        self.version_id = version_id


class MalformedDescriptor(ProvisionError):
    def __init__(self, version_id: str, detail: str, source: Optional[Path] = None):
        where = f" ({source})" if source else ""
        super().__init__(f"Malformed descriptor for {version_id!r}{where}: {detail}")
        self.version_id = version_id
        self.detail = detail
        self.source = source


class RequestFailed(ProvisionError):
    def __init__(self, url: str, detail: str, status: Optional[int] = None):
        super().__init__(f"GET {url} failed: {detail}")
        self.url = url
        self.detail = detail
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status in (404, 410)


# Downloads

class ArtifactUnavailable(ProvisionError):
    def __init__(self, url: str, destination: Path, last_error: str):
        super().__init__(f"{url} -> {destination}: {last_error}")
        self.url = url
        self.destination = destination
        self.last_error = last_error


class DownloadError(ProvisionError):
    """One or more artifacts could not be downloaded after all retries."""

    def __init__(self, failures: List[ArtifactUnavailable]):
        lines = "\n".join(f"  - {failure}" for failure in failures)
        super().__init__(f"{len(failures)} artifact(s) unavailable:\n{lines}")
        self.failures = failures

    @property
    def urls(self) -> List[str]:
        return [failure.url for failure in self.failures]


class DownloadCancelled(ProvisionError):
    def __init__(self, completed: int, total: int):
        super().__init__(f"Download cancelled after {completed}/{total} artifacts")
        self.completed = completed
        self.total = total


# Runtime

class JavaRuntimeError(ProvisionError):
    pass


class NoCompatibleRuntime(JavaRuntimeError):
    def __init__(self, major_version: int, platform_triple: str, detail: str = ""):
        message = f"No Java {major_version} runtime available for {platform_triple}"
        super().__init__(f"{message}: {detail}" if detail else message)
        self.major_version = major_version
        self.platform_triple = platform_triple


class RuntimeProbeFailed(JavaRuntimeError):
    def __init__(self, java_binary: Path, captured_output: str):
        super().__init__(f"Java runtime at {java_binary} failed to start:\n{captured_output}")
        self.java_binary = java_binary
        self.captured_output = captured_output


# Loaders

class LoaderInstallError(ProvisionError):
    pass


class LoaderVersionNotFound(LoaderInstallError):
    def __init__(self, loader: str, game_version: str):
        super().__init__(f"No {loader} version available for Minecraft {game_version}")
        self.loader = loader
        self.game_version = game_version


class LoaderAlreadyInstalled(LoaderInstallError):
    def __init__(self, instance_name: str, current: str):
        super().__init__(f"Instance {instance_name!r} already has {current} installed, uninstall it first")
        self.instance_name = instance_name
        self.current = current


class _ProcessFailed(LoaderInstallError):
    stage = ""

    def __init__(self, exit_code: int, captured_output: str, command: Optional[List[str]] = None):
        super().__init__(f"{self.stage} exited with code {exit_code}:\n{captured_output}")
        self.exit_code = exit_code
        self.captured_output = captured_output
        self.command = command or []


class CompileFailed(_ProcessFailed):
    stage = "Installer bridge compilation"


class InstallFailed(_ProcessFailed):
    stage = "Loader installer"


class InstallerOutputMissing(LoaderInstallError):
    def __init__(self, loader: str, detail: str):
        super().__init__(f"{loader} installer did not produce the expected output: {detail}")
        self.loader = loader
        self.detail = detail


# Launch

class LaunchError(ProvisionError):
    pass


class UnknownPlaceholder(LaunchError):
    def __init__(self, name: str, token: str):
        super().__init__(f"Unknown placeholder ${{{name}}} in launch argument {token!r}")
        self.name = name
        self.token = token


class InvalidClasspathEntry(LaunchError):
    def __init__(self, path: Path, separator: str):
        super().__init__(f"Classpath entry {path} contains the path separator {separator!r}")
        self.path = path
        self.separator = separator


# Instances

class InstanceError(ProvisionError):
    pass


class InstanceNotFound(InstanceError):
    def __init__(self, name: str, root: Path):
        super().__init__(f"Instance {name!r} not found in {root}")
        self.name = name
        self.root = root


class InstanceExists(InstanceError):
    def __init__(self, name: str, root: Path):
        super().__init__(f"Instance {name!r} already exists at {root}")
        self.name = name
        self.root = root
