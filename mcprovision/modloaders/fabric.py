"""Fabric and Quilt: run the official installer jar in client mode."""

from typing import TYPE_CHECKING, Any, Dict, List

from ..core.instance import LoaderKind
from ..errors import InstallerOutputMissing, InstallFailed, LoaderVersionNotFound
from .base import InstallContext, LoaderSteps, fetch_installer, find_version_patch, run_checked

if TYPE_CHECKING:
    from .modloader_manager import ModLoaderManager


def _meta_url(manager: "ModLoaderManager", kind: LoaderKind) -> str:
    if kind is LoaderKind.QUILT:
        return manager.config.quilt_meta_url
    return manager.config.fabric_meta_url


async def _loader_versions(manager: "ModLoaderManager", meta_url: str, game_version: str) -> List[str]:
    entries = await manager.http.get_json(f"{meta_url}/versions/loader/{game_version}")
    return [entry["loader"]["version"] for entry in entries]


async def fabric_versions(manager: "ModLoaderManager", game_version: str) -> List[str]:
    return await _loader_versions(manager, manager.config.fabric_meta_url, game_version)


async def quilt_versions(manager: "ModLoaderManager", game_version: str) -> List[str]:
    return await _loader_versions(manager, manager.config.quilt_meta_url, game_version)


async def prepare(manager: "ModLoaderManager", ctx: InstallContext):
    meta_url = _meta_url(manager, ctx.kind)
    urls = []
    if ctx.installer_path is None:
        installers = await manager.http.get_json(f"{meta_url}/versions/installer")
        stable = [entry for entry in installers if entry.get("stable", True)]
        chosen = (stable or installers)[:1]
        if not chosen:
            raise LoaderVersionNotFound(f"{ctx.kind.value} installer", ctx.game_version)
        urls.append(chosen[0]["url"])
    await fetch_installer(manager, ctx, urls)


async def execute_fabric(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.java, [
        "-jar", str(ctx.installer), "client",
        "-dir", str(ctx.work_dir),
        "-mcversion", ctx.game_version,
        "-loader", ctx.loader_version,
        "-noprofile",
    ], ctx.work_dir, InstallFailed)


async def execute_quilt(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.java, [
        "-jar", str(ctx.installer), "install", "client",
        ctx.game_version, ctx.loader_version,
        f"--install-dir={ctx.work_dir}",
        "--no-profile",
    ], ctx.work_dir, InstallFailed)


async def finalize(manager: "ModLoaderManager", ctx: InstallContext) -> Dict[str, Any]:
    patch = await find_version_patch(ctx)
    if patch is None:
        raise InstallerOutputMissing(ctx.kind.value, f"no version profile under {ctx.work_dir / 'versions'}")
    return patch


FABRIC = LoaderSteps(versions=fabric_versions, prepare=prepare, execute=execute_fabric, finalize=finalize)
QUILT = LoaderSteps(versions=quilt_versions, prepare=prepare, execute=execute_quilt, finalize=finalize)
