"""End-to-end provisioning: catalog, downloads, natives, runtime, loader, launch command."""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from ..auth.offline import UserContext
from ..config import ProvisionConfig
from ..errors import ProvisionError
from ..modloaders.modloader_manager import ModLoaderManager
from ..progress import ProgressSink, emit, emit_terminal
from ..runtime.java_manager import JavaManager, ManagedRuntime
from ..utils.async_http import AsyncHTTPClient
from ..utils.host import HostPlatform
from ..versions.download_manager import DownloadManager
from ..versions.manager import VersionManager
from ..versions.models import VersionDescriptor, parse_descriptor
from .game_launcher import GameLauncher, LaunchSpec
from .instance import Instance, InstanceConfig, InstanceStore, LoaderKind

logger = logging.getLogger(__name__)


class ProvisionResult(BaseModel):
    instance: Instance
    descriptor: VersionDescriptor
    runtime: Optional[ManagedRuntime] = None
    java_binary: Path
    manifest_stale: bool = False


class Provisioner:
    """Owns the HTTP session and every manager; use as an async context manager."""

    def __init__(self, config: Optional[ProvisionConfig] = None, host: Optional[HostPlatform] = None):
        self.config = config or ProvisionConfig.from_env()
        self.host = host or HostPlatform.current()
        self.http = AsyncHTTPClient(headers={"User-Agent": self.config.user_agent},
                                    timeout=self.config.request_timeout)
        self.versions = VersionManager(self.config, self.http)
        self.downloads = DownloadManager(self.config, self.http)
        self.java = JavaManager(self.config, self.http, self.downloads)
        self.store = InstanceStore(self.config)
        self.loaders = ModLoaderManager(self.config, self.http, self.downloads, self.java, self.store, self.host)
        self.launcher = GameLauncher(self.config, self.host)

    async def __aenter__(self):
        await self.http.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.http.close()

    @property
    def manifest_stale(self) -> bool:
        manifest = self.versions.manifest
        return manifest is not None and manifest.stale

    async def create_instance(self, name: str, version_id: str, config: Optional[InstanceConfig] = None,
                              progress_sink: Optional[ProgressSink] = None) -> Instance:
        """Resolve a catalog version and record its descriptor in a new instance directory."""
        manifest = await self.versions.fetch_manifest(progress_sink)
        info = await self.versions.get_version_info(version_id, manifest)
        data = await self.versions.fetch_descriptor_data(info)
        parse_descriptor(data, self.store.default_maven)
        return await self.store.create(name, version_id, data, config)

    async def load_instance(self, name: str) -> Instance:
        return await self.store.load(name)

    def list_instances(self) -> List[str]:
        return self.store.list_names()

    async def delete_instance(self, name: str):
        await self.store.delete(name)

    async def provision(self, instance: Instance, progress_sink: Optional[ProgressSink] = None,
                        cancel_event: Optional[asyncio.Event] = None) -> ProvisionResult:
        """Bring every artifact the instance needs to disk and make sure its Java runtime works.

        Everything already present and verified is skipped, so provisioning a
        complete instance again needs no network access.
        """
        for kind in instance.pending_loader_installs():
            logger.warning("%s install into %s was interrupted, reinstall it", kind.value, instance.name)

        await emit(progress_sink, "provision", 0, 1, instance.name)
        try:
            descriptor = await self.store.load_descriptor(instance)
            asset_index = await self.versions.fetch_asset_index(
                descriptor, self.downloads, progress_sink, cancel_event)

            tasks = [self.downloads.client_task(descriptor, instance.version_id)]
            tasks += self.downloads.library_tasks(descriptor.libraries, self.host, instance.libraries_dir)
            tasks += self.downloads.logging_tasks(descriptor)
            tasks += self.downloads.asset_tasks(asset_index)
            logger.info("Provisioning %s (%s): %d artifacts", instance.name, descriptor.id, len(tasks))
            await self.downloads.run(tasks, progress_sink=progress_sink, cancel_event=cancel_event)

            await self.downloads.extract_natives(descriptor.libraries, self.host, instance.natives_dir)
            if asset_index.map_to_resources:
                await self.downloads.materialize_virtual_assets(asset_index, instance.game_dir / "resources")
            elif asset_index.virtual:
                await self.downloads.materialize_virtual_assets(
                    asset_index, self.config.assets_dir / "virtual" / descriptor.asset_index.id)

            runtime = None
            if instance.config.java_override is not None:
                java_binary = instance.config.java_override
                logger.info("Using configured Java %s", java_binary)
            else:
                runtime = await self.java.ensure_runtime(
                    descriptor.java_major_version, self.host, progress_sink, cancel_event)
                java_binary = runtime.java_binary
        except (ProvisionError, asyncio.CancelledError) as e:
            await emit_terminal(progress_sink, "provision", False, str(e) or type(e).__name__)
            raise

        await emit_terminal(progress_sink, "provision", True, instance.name, 1, 1)
        return ProvisionResult(instance=instance, descriptor=descriptor, runtime=runtime,
                               java_binary=java_binary, manifest_stale=self.manifest_stale)

    async def install_loader(self, instance: Instance, kind: LoaderKind, loader_version: Optional[str] = None,
                             progress_sink: Optional[ProgressSink] = None,
                             installer_path: Optional[Path] = None) -> Instance:
        return await self.loaders.install_loader(instance, kind, loader_version, progress_sink, installer_path)

    async def uninstall_loader(self, instance: Instance) -> Instance:
        return await self.loaders.uninstall_loader(instance)

    async def launch_spec(self, instance: Instance, user_context: Optional[UserContext] = None,
                          progress_sink: Optional[ProgressSink] = None) -> LaunchSpec:
        """Provision the instance and build the command that starts it."""
        result = await self.provision(instance, progress_sink)
        return self.launcher.build_launch_command(instance, result.descriptor, result.java_binary, user_context)
