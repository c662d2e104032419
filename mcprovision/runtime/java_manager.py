"""Java runtime manager for Minecraft."""

import asyncio
import logging
import os
import shutil
import stat
import tarfile
import uuid
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel

from ..config import ProvisionConfig
from ..errors import NoCompatibleRuntime, RequestFailed, RuntimeProbeFailed
from ..progress import ProgressSink, emit, emit_terminal
from ..utils.async_http import AsyncHTTPClient
from ..utils.host import HostPlatform
from ..versions.download_manager import DownloadManager, DownloadTask

logger = logging.getLogger(__name__)

# Map to Adoptium identifiers
ADOPTIUM_OS = {
    "windows": "windows",
    "linux": "linux",
    "osx": "mac",
}
ADOPTIUM_ARCH = {
    "x86_64": "x64",
    "x86": "x32",
    "arm64": "aarch64",
    "arm32": "arm",
}

# Relative locations of bin/ inside an extracted JDK, by layout
BIN_DIRS = ("bin", "Contents/Home/bin", "jre.bundle/Contents/Home/bin")


class ManagedRuntime(BaseModel):
    major_version: int
    platform_triple: str
    install_path: Path
    java_binary: Path

    def binary(self, name: str = "java") -> Path:
        """Sibling executable of java, e.g. javac."""
        return self.java_binary.with_name(name + self.java_binary.suffix)


class JavaManager:
    """Installs Adoptium JDKs once per major version and platform into the shared runtime store."""

    def __init__(self, config: ProvisionConfig, http: AsyncHTTPClient, downloads: DownloadManager):
        self.config = config
        self.http = http
        self.downloads = downloads
        self.runtime_dir = config.runtimes_dir
        self._locks: Dict[str, asyncio.Lock] = {}

    def install_path(self, major_version: int, host: HostPlatform) -> Path:
        return self.runtime_dir / f"{major_version}-{host.triple}"

    @staticmethod
    def find_binary(install_path: Path, host: HostPlatform, name: str = "java") -> Optional[Path]:
        """Locate an executable inside an installed runtime."""
        for bin_dir in BIN_DIRS:
            candidate = install_path / bin_dir / (name + host.executable_suffix)
            if candidate.is_file():
                return candidate
        return None

    @staticmethod
    async def probe(java_path: Path) -> Tuple[bool, str]:
        """Run ``java -version`` and report whether it exited cleanly, with its output."""
        try:
            proc = await asyncio.create_subprocess_exec(
                str(java_path), "-version",
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.STDOUT,
            )
            output, _ = await proc.communicate()
        except OSError as e:
            return False, f"{type(e).__name__}: {e}"
        return proc.returncode == 0, output.decode("utf-8", errors="replace")

    @staticmethod
    def parse_java_version(probe_output: str) -> Optional[str]:
        """Get Java version from ``-version`` output, e.g. 17.0.9."""
        for line in probe_output.splitlines():
            if "version" in line and '"' in line:
                return line.split('"')[1]
        return None

    def catalog_url(self, major_version: int, host: HostPlatform) -> Optional[str]:
        """Adoptium v3 asset lookup for a JDK of the given major version on the host."""
        os_id = ADOPTIUM_OS.get(host.os_name)
        arch_id = ADOPTIUM_ARCH.get(host.os_arch)
        if os_id is None or arch_id is None:
            return None
        query = urlencode({
            "architecture": arch_id,
            "image_type": "jdk",
            "os": os_id,
            "vendor": "eclipse",
        })
        return f"{self.config.runtime_catalog_url}/assets/latest/{major_version}/hotspot?{query}"

    async def resolve_archive(self, major_version: int, host: HostPlatform) -> DownloadTask:
        """Look up the platform archive in the runtime catalog."""
        url = self.catalog_url(major_version, host)
        if url is None:
            raise NoCompatibleRuntime(major_version, host.triple, "platform not covered by the runtime catalog")
        try:
            releases = await self.http.get_json(url)
        except RequestFailed as e:
            if e.is_not_found:
                raise NoCompatibleRuntime(major_version, host.triple, str(e)) from e
            raise

        if not isinstance(releases, list):
            raise NoCompatibleRuntime(major_version, host.triple, "unexpected runtime catalog response")
        for release in releases:
            package = (release.get("binary") or {}).get("package") or {}
            if package.get("link"):
                return DownloadTask(
                    url=package["link"],
                    destination=self.runtime_dir / ".archives" / package.get("name", f"java-{major_version}.archive"),
                    expected_hash=package.get("checksum"),
                    expected_size=package.get("size"),
                    hash_algorithm="sha256",
                    kind="runtime",
                    label=release.get("release_name") or f"Java {major_version}",
                )
        raise NoCompatibleRuntime(major_version, host.triple, "runtime catalog has no matching archive")

    async def ensure_runtime(self, major_version: int, host: Optional[HostPlatform] = None,
                             progress_sink: Optional[ProgressSink] = None,
                             cancel_event: Optional[asyncio.Event] = None) -> ManagedRuntime:
        """Ensure a Java runtime of the major version is installed and starts, installing it if needed."""
        host = host or HostPlatform.current()
        install_path = self.install_path(major_version, host)
        lock = self._locks.setdefault(str(install_path), asyncio.Lock())

        async with lock:
            java_path = self.find_binary(install_path, host)
            if java_path is not None:
                ok, output = await self.probe(java_path)
                if ok:
                    logger.debug("Using Java %s at %s", self.parse_java_version(output), java_path)
                    return ManagedRuntime(major_version=major_version, platform_triple=host.triple,
                                          install_path=install_path, java_binary=java_path)
                logger.warning("Installed Java %d at %s failed its probe, reinstalling:\n%s",
                               major_version, java_path, output)

            await emit(progress_sink, "runtime", 0, 1, f"Java {major_version}")
            try:
                runtime = await self.download_java(major_version, host, progress_sink, cancel_event)
            except Exception as e:
                await emit_terminal(progress_sink, "runtime", False, str(e))
                raise
            await emit_terminal(progress_sink, "runtime", True, f"Java {major_version}", 1, 1)
            return runtime

    async def download_java(self, major_version: int, host: HostPlatform,
                            progress_sink: Optional[ProgressSink] = None,
                            cancel_event: Optional[asyncio.Event] = None) -> ManagedRuntime:
        """Download and extract an Adoptium JDK, replacing any previous install wholesale."""
        install_path = self.install_path(major_version, host)
        task = await self.resolve_archive(major_version, host)
        logger.info("Installing Java %d for %s from %s", major_version, host.triple, task.url)
        await self.downloads.run([task], progress_sink=progress_sink, cancel_event=cancel_event)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _install_archive, task.destination, install_path)
        finally:
            if task.destination.exists():
                task.destination.unlink()

        java_path = self.find_binary(install_path, host)
        if java_path is None:
            raise NoCompatibleRuntime(major_version, host.triple, f"no java executable in {install_path}")
        ok, output = await self.probe(java_path)
        if not ok:
            raise RuntimeProbeFailed(java_path, output)
        logger.info("Installed Java %s at %s", self.parse_java_version(output), java_path)
        return ManagedRuntime(major_version=major_version, platform_triple=host.triple,
                              install_path=install_path, java_binary=java_path)


def _install_archive(archive_path: Path, install_path: Path):
    """Extract next to the install path, then swap it in."""
    staging = install_path.with_name(f".{install_path.name}.{uuid.uuid4().hex[:8]}")
    trash = install_path.with_name(f".{install_path.name}.old.{uuid.uuid4().hex[:8]}")
    try:
        if archive_path.name.endswith(".zip"):
            _extract_zip(archive_path, staging)
        else:
            with tarfile.open(archive_path, "r:*") as archive:
                if hasattr(tarfile, "data_filter"):
                    archive.extractall(staging, filter="data")
                else:
                    archive.extractall(staging)

        # Archives wrap the JDK in a single jdk-<version> directory
        entries: List[Path] = list(staging.iterdir())
        root = entries[0] if len(entries) == 1 and entries[0].is_dir() else staging

        if install_path.exists():
            os.replace(install_path, trash)
        os.replace(root, install_path)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
        shutil.rmtree(trash, ignore_errors=True)


def _extract_zip(archive_path: Path, target: Path):
    """Extract a zip archive keeping the unix permission bits zipfile drops."""
    target.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(archive_path) as archive:
        for info in archive.infolist():
            extracted = Path(archive.extract(info, target))
            mode = info.external_attr >> 16
            if mode and not info.is_dir():
                os.chmod(extracted, stat.S_IMODE(mode))
