"""Download manager for assets and libraries."""

import asyncio
import hashlib
import logging
import os
import shutil
import stat
import zipfile
from contextlib import suppress
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import aiofiles
import aiofiles.os
from pydantic import BaseModel

from ..config import ProvisionConfig
from ..errors import ArtifactUnavailable, DownloadCancelled, DownloadError, RequestFailed
from ..progress import ProgressSink, emit, emit_terminal
from ..utils.async_http import AsyncHTTPClient
from ..utils.files import temp_sibling
from ..utils.host import HostPlatform
from .models import AssetIndex, LibraryEntry, VersionDescriptor
from .rules import filter_libraries

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DownloadTask(BaseModel):
    url: str
    destination: Path
    expected_hash: Optional[str] = None
    expected_size: Optional[int] = None
    hash_algorithm: str = "sha1"
    kind: str = "file"
    label: str = ""
    executable: bool = False

    @property
    def display_name(self) -> str:
        return self.label or self.destination.name


class VerificationFailed(Exception):
    """Downloaded bytes do not match the expected size or digest."""


async def file_digest(file_path: Path, algorithm: str = "sha1") -> str:
    """Hash a file in chunks."""
    digest = hashlib.new(algorithm)
    async with aiofiles.open(file_path, 'rb') as f:
        while chunk := await f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def logging_config_path(config: ProvisionConfig, descriptor: VersionDescriptor) -> Optional[Path]:
    if descriptor.logging is None:
        return None
    file = descriptor.logging.file
    return config.assets_dir / "log_configs" / (file.id or f"{descriptor.id}-logging.xml")


class DownloadManager:
    """Runs batches of download tasks with bounded concurrency, verification and atomic publish."""

    def __init__(self, config: ProvisionConfig, http: AsyncHTTPClient):
        self.config = config
        self.http = http

    async def run(self, tasks: Iterable[DownloadTask], max_parallel: Optional[int] = None,
                  progress_sink: Optional[ProgressSink] = None,
                  cancel_event: Optional[asyncio.Event] = None) -> None:
        """Download every task, raising DownloadError listing all permanent failures.

        At most ``max_parallel`` tasks are in flight; the others wait their turn in
        submission order. Setting ``cancel_event`` or cancelling the awaiting task
        abandons in-flight downloads and never starts pending ones.
        """
        tasks = list(tasks)
        total = len(tasks)
        limit = max_parallel or self.config.max_parallel_downloads
        if limit < 1:
            raise ValueError(f"max_parallel must be at least 1, got {limit}")

        semaphore = asyncio.Semaphore(limit)
        failures: List[ArtifactUnavailable] = []
        completed = 0

        async def worker(task: DownloadTask):
            nonlocal completed
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                try:
                    await self.fetch(task)
                except ArtifactUnavailable as e:
                    logger.error("Download failed permanently: %s", e)
                    failures.append(e)
                    return
                except Exception as e:
                    logger.error("Download of %s failed: %s", task.url, e, exc_info=True)
                    failures.append(ArtifactUnavailable(task.url, task.destination, f"{type(e).__name__}: {e}"))
                    return
            completed += 1
            await emit(progress_sink, "download", completed, total, task.display_name)

        await emit(progress_sink, "download", 0, total)
        jobs = [asyncio.ensure_future(worker(task)) for task in tasks]
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        cancelled = False
        try:
            if jobs:
                pending = set(jobs)
                if cancel_waiter is not None:
                    pending.add(cancel_waiter)
                while pending:
                    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                    if cancel_waiter is not None and cancel_waiter in done:
                        cancelled = True
                        break
                    if cancel_waiter is not None and pending == {cancel_waiter}:
                        break
        finally:
            for job in jobs:
                job.cancel()
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            await asyncio.gather(*jobs, return_exceptions=True)

        if cancelled and completed + len(failures) < total:
            await emit_terminal(progress_sink, "download", False, "cancelled", completed, total)
            raise DownloadCancelled(completed, total)
        if failures:
            await emit_terminal(progress_sink, "download", False, f"{len(failures)} failed", completed, total)
            raise DownloadError(failures)
        await emit_terminal(progress_sink, "download", True, "", completed, total)

    async def is_satisfied(self, task: DownloadTask) -> bool:
        """Check whether the destination already holds the expected content."""
        dest = task.destination
        if not dest.is_file():
            return False
        if task.expected_size is not None and dest.stat().st_size != task.expected_size:
            return False
        if task.expected_hash:
            return await file_digest(dest, task.hash_algorithm) == task.expected_hash.lower()
        return True

    async def fetch(self, task: DownloadTask) -> bool:
        """Download one task with retries. Returns False when the destination was already valid."""
        if await self.is_satisfied(task):
            logger.debug("Already present, skipping %s", task.destination)
            return False

        attempts = max(1, self.config.download_attempts)
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                await self.download_file(task)
                return True
            except RequestFailed as e:
                last_error = str(e)
                if e.is_not_found:
                    break
            except VerificationFailed as e:
                last_error = str(e)
            except OSError as e:
                last_error = f"{type(e).__name__}: {e}"
            logger.debug("Attempt %d/%d for %s failed: %s", attempt, attempts, task.url, last_error)
        raise ArtifactUnavailable(task.url, task.destination, last_error)

    async def download_file(self, task: DownloadTask):
        """Single attempt: stream to a temp file beside the destination, verify, then rename."""
        dest = task.destination
        await aiofiles.os.makedirs(dest.parent, exist_ok=True)
        tmp_path = temp_sibling(dest, ".part")
        digest = hashlib.new(task.hash_algorithm)
        size = 0
        try:
            async with self.http.stream(task.url) as resp:
                async with aiofiles.open(tmp_path, 'wb') as f:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        digest.update(chunk)
                        size += len(chunk)

            if task.expected_size is not None and size != task.expected_size:
                raise VerificationFailed(f"expected {task.expected_size} bytes, got {size}")
            if task.expected_hash and digest.hexdigest() != task.expected_hash.lower():
                raise VerificationFailed(
                    f"{task.hash_algorithm} mismatch, expected {task.expected_hash.lower()}, got {digest.hexdigest()}")

            if task.executable:
                mode = os.stat(tmp_path).st_mode
                os.chmod(tmp_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            await aiofiles.os.replace(tmp_path, dest)
        finally:
            # Never leave partial data behind, including on cancellation.
            with suppress(FileNotFoundError):
                os.remove(tmp_path)

    # Task builders

    def library_tasks(self, libraries: Sequence[LibraryEntry], host: HostPlatform,
                      local_dir: Optional[Path] = None) -> List[DownloadTask]:
        """Tasks for the host's libraries and natives, into the shared libraries store.

        Libraries already present in ``local_dir`` are instance-local overrides and
        are not scheduled.
        """
        tasks: Dict[Path, DownloadTask] = {}
        for library in filter_libraries(libraries, host):
            if library.has_artifact:
                if local_dir is not None and (local_dir / library.path).is_file():
                    continue
                if not library.url:
                    logger.warning("Library %s has no download URL and is not present locally", library.name)
                    continue
                dest = self.config.libraries_dir / library.path
                tasks[dest] = DownloadTask(url=library.url, destination=dest, expected_hash=library.sha1,
                                           expected_size=library.size, kind="library", label=library.name)

            native = library.native_artifact(host.os_name, host.pointer_bits)
            if native is not None and native.url:
                dest = self.config.libraries_dir / native.path
                tasks[dest] = DownloadTask(url=native.url, destination=dest, expected_hash=native.sha1,
                                           expected_size=native.size, kind="native",
                                           label=f"{library.name} (natives)")
        return list(tasks.values())

    def client_task(self, descriptor: VersionDescriptor, version_id: str) -> DownloadTask:
        client = descriptor.client
        return DownloadTask(url=client.url, destination=self.client_jar_path(version_id),
                            expected_hash=client.sha1, expected_size=client.size, kind="client",
                            label=f"{version_id}.jar")

    def client_jar_path(self, version_id: str) -> Path:
        return self.config.versions_dir / version_id / f"{version_id}.jar"

    def logging_tasks(self, descriptor: VersionDescriptor) -> List[DownloadTask]:
        if descriptor.logging is None or not descriptor.logging.file.url:
            return []
        file = descriptor.logging.file
        return [DownloadTask(url=file.url, destination=self.logging_config_path(descriptor),
                             expected_hash=file.sha1, expected_size=file.size, kind="logging_config",
                             label=file.id or "logging config")]

    def logging_config_path(self, descriptor: VersionDescriptor) -> Optional[Path]:
        return logging_config_path(self.config, descriptor)

    def asset_tasks(self, asset_index: AssetIndex) -> List[DownloadTask]:
        """One task per distinct object hash in the content-addressed store."""
        tasks: Dict[str, DownloadTask] = {}
        for asset_path, obj in asset_index.objects.items():
            if obj.hash in tasks:
                continue
            tasks[obj.hash] = DownloadTask(url=f"{self.config.resources_url}/{obj.storage_path}",
                                           destination=self.config.asset_objects_dir / obj.storage_path,
                                           expected_hash=obj.hash, expected_size=obj.size, kind="asset",
                                           label=asset_path)
        return list(tasks.values())

    # Post-download materialization

    async def extract_natives(self, libraries: Sequence[LibraryEntry], host: HostPlatform, natives_dir: Path):
        """Unpack the host's native jars into an instance natives directory."""
        jobs = []
        for library in filter_libraries(libraries, host):
            native = library.native_artifact(host.os_name, host.pointer_bits)
            if native is None:
                continue
            jar_path = self.config.libraries_dir / native.path
            if not jar_path.is_file():
                logger.warning("Native library %s is missing, not extracting it", jar_path)
                continue
            jobs.append((jar_path, library.extract_exclude))
        if not jobs:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _extract_native_jars, jobs, natives_dir)

    async def materialize_virtual_assets(self, asset_index: AssetIndex, target_dir: Path):
        """Copy objects to their logical paths for legacy virtual or resource-mapped indexes."""
        if not (asset_index.virtual or asset_index.map_to_resources):
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _copy_virtual_assets, asset_index, self.config.asset_objects_dir,
                                   target_dir)


def _extract_native_jars(jobs, natives_dir: Path):
    natives_dir.mkdir(parents=True, exist_ok=True)
    for jar_path, exclude in jobs:
        with zipfile.ZipFile(jar_path) as archive:
            for info in archive.infolist():
                name = info.filename
                if info.is_dir() or any(name.startswith(prefix) for prefix in exclude) or "META-INF" in name:
                    continue
                target = (natives_dir / name).resolve()
                if natives_dir.resolve() not in target.parents:
                    logger.warning("Skipping native entry outside target directory: %s", name)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)


def _copy_virtual_assets(asset_index: AssetIndex, objects_dir: Path, target_dir: Path):
    for asset_path, obj in asset_index.objects.items():
        target = target_dir / asset_path
        if target.is_file() and target.stat().st_size == obj.size:
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(objects_dir / obj.storage_path, target)
