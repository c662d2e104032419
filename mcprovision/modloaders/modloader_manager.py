"""Mod loader manager."""

import asyncio
import copy
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles.os

from ..config import ProvisionConfig
from ..core.instance import Instance, InstanceStore, LoaderKind, LoaderState
from ..errors import LoaderAlreadyInstalled, LoaderVersionNotFound, RequestFailed
from ..progress import ProgressSink, emit, emit_terminal
from ..runtime.java_manager import JavaManager
from ..utils.async_http import AsyncHTTPClient
from ..utils.files import read_json, write_json_atomic
from ..utils.host import HostPlatform
from ..versions.download_manager import DownloadManager, DownloadTask
from ..versions.models import LEGACY_JVM_ARGUMENTS, group_artifact, parse_descriptor
from ..versions.rules import filter_libraries
from . import fabric, forge, optifine
from .base import InstallContext, LoaderSteps, move_tree

logger = logging.getLogger(__name__)

LOADERS: Dict[LoaderKind, LoaderSteps] = {
    LoaderKind.FABRIC: fabric.FABRIC,
    LoaderKind.QUILT: fabric.QUILT,
    LoaderKind.FORGE: forge.FORGE,
    LoaderKind.NEOFORGE: forge.NEOFORGE,
    LoaderKind.OPTIFINE: optifine.OPTIFINE,
}

STAGES = ("Start", "Compiling", "Running", "Finalizing")


def merge_descriptor(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Layer a loader's version patch over a vanilla descriptor.

    The main class is replaced, patch libraries come first and push out base
    libraries with the same group:artifact, and arguments are appended.
    """
    merged = copy.deepcopy(base)
    merged["id"] = patch.get("id", base.get("id"))
    if patch.get("mainClass"):
        merged["mainClass"] = patch["mainClass"]

    patch_libraries = list(patch.get("libraries") or [])
    overridden = {group_artifact(library["name"]) for library in patch_libraries}
    merged["libraries"] = patch_libraries + [
        library for library in base.get("libraries") or []
        if group_artifact(library["name"]) not in overridden
    ]

    if patch.get("minecraftArguments"):
        # Legacy patches carry the complete argument string
        merged["minecraftArguments"] = patch["minecraftArguments"]

    patch_arguments = patch.get("arguments") or {}
    if patch_arguments:
        arguments = merged.get("arguments")
        if not arguments:
            arguments = {
                "game": (merged.pop("minecraftArguments", "") or "").split(),
                "jvm": list(LEGACY_JVM_ARGUMENTS),
            }
            merged["arguments"] = arguments
        for key in ("game", "jvm"):
            if patch_arguments.get(key):
                arguments[key] = list(arguments.get(key) or []) + patch_arguments[key]

    merged.pop("inheritsFrom", None)
    return merged


class ModLoaderManager:
    """Installs and removes mod loaders in instances by orchestrating their installers."""

    def __init__(self, config: ProvisionConfig, http: AsyncHTTPClient, downloads: DownloadManager,
                 java_manager: JavaManager, store: InstanceStore, host: Optional[HostPlatform] = None):
        self.config = config
        self.http = http
        self.downloads = downloads
        self.java_manager = java_manager
        self.store = store
        self.host = host or HostPlatform.current()

    @staticmethod
    def steps_for(kind: LoaderKind) -> LoaderSteps:
        if kind not in LOADERS:
            raise ValueError(f"{kind.value} is not an installable loader")
        return LOADERS[kind]

    async def list_loader_versions(self, kind: LoaderKind, game_version: str) -> List[str]:
        """Available loader versions for a game version, newest or recommended first."""
        try:
            return await self.steps_for(kind).versions(self, game_version)
        except RequestFailed as e:
            if e.is_not_found:
                return []
            raise

    async def resolve_version(self, kind: LoaderKind, game_version: str,
                              installer_path: Optional[Path] = None) -> str:
        steps = self.steps_for(kind)
        version = None
        if steps.resolve_version is not None:
            version = await steps.resolve_version(self, game_version, installer_path)
        if version is None:
            versions = await self.list_loader_versions(kind, game_version)
            version = versions[0] if versions else None
        if version is None:
            raise LoaderVersionNotFound(kind.value, game_version)
        return version

    async def java_for(self, instance: Instance, progress_sink: Optional[ProgressSink] = None) -> Path:
        if instance.config.java_override is not None:
            return instance.config.java_override
        descriptor = await self.store.load_descriptor(instance)
        runtime = await self.java_manager.ensure_runtime(descriptor.java_major_version, self.host, progress_sink)
        return runtime.java_binary

    async def install_loader(self, instance: Instance, kind: LoaderKind, loader_version: Optional[str] = None,
                             progress_sink: Optional[ProgressSink] = None,
                             installer_path: Optional[Path] = None) -> Instance:
        """Install a loader, returning the instance with its new loader state.

        A failure leaves the instance Vanilla with its lock file in place; the
        next install starts over from a clean private directory.
        """
        if not instance.loader_state.is_vanilla:
            raise LoaderAlreadyInstalled(instance.name, str(instance.loader_state))
        steps = self.steps_for(kind)
        lock_path = instance.loader_lock_path(kind)
        work_dir = instance.loader_dir(kind)

        await emit(progress_sink, "loader", 0, len(STAGES), STAGES[0])
        try:
            lock_path.write_text(f"{kind.value} install in progress\n", encoding="utf-8")
            if work_dir.exists():
                logger.info("Removing leftovers of an interrupted %s install in %s", kind.value, work_dir)
                await asyncio.get_running_loop().run_in_executor(None, shutil.rmtree, work_dir)
            work_dir.mkdir(parents=True)

            if loader_version is None:
                loader_version = await self.resolve_version(kind, instance.version_id, installer_path)
            logger.info("Installing %s %s into %s", kind.value, loader_version, instance.name)

            ctx = InstallContext(
                instance=instance, kind=kind, game_version=instance.version_id, loader_version=loader_version,
                work_dir=work_dir, java=await self.java_for(instance, progress_sink),
                installer_path=installer_path, progress_sink=progress_sink,
            )
            await steps.prepare(self, ctx)
            if steps.compile is not None:
                await emit(progress_sink, "loader", 1, len(STAGES), STAGES[1])
                await steps.compile(self, ctx)
            await emit(progress_sink, "loader", 2, len(STAGES), STAGES[2])
            await steps.execute(self, ctx)
            await emit(progress_sink, "loader", 3, len(STAGES), STAGES[3])
            patch = await steps.finalize(self, ctx)
            instance = await self.apply_patch(ctx, patch)
        except (Exception, asyncio.CancelledError) as e:
            logger.error("%s install into %s failed: %s", kind.value, instance.name, e)
            await emit_terminal(progress_sink, "loader", False, str(e), 0, len(STAGES))
            raise

        lock_path.unlink()
        logger.info("Installed %s into %s", instance.loader_state, instance.name)
        await emit_terminal(progress_sink, "loader", True, str(instance.loader_state), len(STAGES), len(STAGES))
        return instance

    async def apply_patch(self, ctx: InstallContext, patch: Dict[str, Any]) -> Instance:
        """Move produced libraries into the instance, fetch missing ones and merge the patch."""
        instance = ctx.instance
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, move_tree, ctx.work_dir / "libraries", instance.libraries_dir)

        base = await self.store.read_descriptor_data(instance)
        merged = merge_descriptor(base, patch)
        descriptor = parse_descriptor(merged, self.store.default_maven)

        patch_names = {library.get("name") for library in patch.get("libraries") or []}
        tasks = []
        for library in filter_libraries(descriptor.libraries, self.host):
            if library.name not in patch_names or not library.has_artifact:
                continue
            local = instance.libraries_dir / library.path
            if local.is_file() or (self.config.libraries_dir / library.path).is_file():
                continue
            if not library.url:
                logger.warning("Loader library %s was not produced and has no download URL", library.name)
                continue
            tasks.append(DownloadTask(url=library.url, destination=local, expected_hash=library.sha1,
                                      expected_size=library.size, kind="library", label=library.name))
        await self.downloads.run(tasks, progress_sink=ctx.progress_sink)

        if not instance.vanilla_descriptor_path.exists():
            await write_json_atomic(instance.vanilla_descriptor_path, base)
        await self.store.write_descriptor_data(instance, merged)
        return await self.store.set_loader_state(instance, LoaderState(kind=ctx.kind, version=ctx.loader_version))

    async def uninstall_loader(self, instance: Instance) -> Instance:
        """Best-effort removal of the installed loader, restoring the vanilla descriptor."""
        kind = instance.loader_state.kind
        loop = asyncio.get_running_loop()
        kinds = set(instance.pending_loader_installs())
        if kind is not LoaderKind.VANILLA:
            kinds.add(kind)

        paths = [instance.loader_dir(k) for k in kinds]
        if kinds:
            paths.append(instance.libraries_dir)
        for path in paths:
            if path.exists():
                try:
                    await loop.run_in_executor(None, shutil.rmtree, path)
                except OSError as e:
                    logger.warning("Could not remove %s: %s", path, e)
        instance.libraries_dir.mkdir(parents=True, exist_ok=True)

        for leftover in kinds:
            try:
                await aiofiles.os.remove(instance.loader_lock_path(leftover))
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove the %s lock file: %s", leftover.value, e)

        if instance.vanilla_descriptor_path.is_file():
            try:
                data = await read_json(instance.vanilla_descriptor_path)
                await self.store.write_descriptor_data(instance, data)
                await aiofiles.os.remove(instance.vanilla_descriptor_path)
            except (OSError, ValueError) as e:
                logger.warning("Could not restore the vanilla descriptor of %s: %s", instance.name, e)

        instance = await self.store.set_loader_state(instance, LoaderState())
        logger.info("Removed %s from %s", kind.value, instance.name)
        return instance
