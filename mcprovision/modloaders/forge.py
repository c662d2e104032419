"""Forge and NeoForge: drive the installer's client action through a compiled bridge class."""

import asyncio
import json
import logging
import os
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.instance import LoaderKind
from ..errors import CompileFailed, InstallerOutputMissing, InstallFailed
from .base import (InstallContext, LoaderSteps, fetch_installer, find_version_patch, run_checked, stage_vanilla,
                   write_bridge, write_launcher_profiles)

if TYPE_CHECKING:
    from .modloader_manager import ModLoaderManager

logger = logging.getLogger(__name__)

BRIDGE_CLASS = "ForgeInstaller"


async def forge_versions(manager: "ModLoaderManager", game_version: str) -> List[str]:
    """Recommended then latest build from the promotions list."""
    promotions = (await manager.http.get_json(manager.config.forge_promotions_url)).get("promos", {})
    versions = []
    for channel in ("recommended", "latest"):
        version = promotions.get(f"{game_version}-{channel}")
        if version and version not in versions:
            versions.append(version)
    return versions


def neoforge_prefix(game_version: str) -> str:
    """NeoForge numbers builds after the game version without its leading 1: 1.20.4 -> 20.4."""
    parts = game_version.split(".")[1:]
    if len(parts) == 1:
        parts.append("0")
    return ".".join(parts) + "."


async def neoforge_versions(manager: "ModLoaderManager", game_version: str) -> List[str]:
    url = f"{manager.config.neoforge_maven_url}/api/maven/versions/releases/net/neoforged/neoforge"
    listing = await manager.http.get_json(url)
    prefix = neoforge_prefix(game_version)
    # Listing is oldest first
    return [version for version in reversed(listing.get("versions", [])) if version.startswith(prefix)]


def installer_urls(manager: "ModLoaderManager", ctx: InstallContext) -> List[str]:
    if ctx.kind is LoaderKind.NEOFORGE:
        version = ctx.loader_version
        return [f"{manager.config.neoforge_maven_url}/releases/net/neoforged/neoforge/{version}/"
                f"neoforge-{version}-installer.jar"]
    base = f"{manager.config.forge_maven_url}/net/minecraftforge/forge"
    mc, version = ctx.game_version, ctx.loader_version
    # Builds for older game versions carry the game version twice
    return [f"{base}/{full}/forge-{full}-installer.jar"
            for full in (f"{mc}-{version}", f"{mc}-{version}-{mc}")]


async def prepare(manager: "ModLoaderManager", ctx: InstallContext):
    await fetch_installer(manager, ctx, installer_urls(manager, ctx))
    await write_launcher_profiles(ctx.work_dir)
    stage_vanilla(manager, ctx)
    write_bridge(ctx, BRIDGE_CLASS)


async def compile_bridge(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.javac, ["-cp", str(ctx.installer), f"{BRIDGE_CLASS}.java", "-d", "."],
                      ctx.work_dir, CompileFailed)


async def execute(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.java, ["-cp", f"{ctx.installer}{os.pathsep}.", BRIDGE_CLASS, "."],
                      ctx.work_dir, InstallFailed)


def read_embedded_profile(installer: Path) -> Optional[Dict[str, Any]]:
    """The version profile shipped inside the installer jar, for installers that only extract libraries."""
    with zipfile.ZipFile(installer) as archive:
        names = set(archive.namelist())
        if "version.json" in names:
            return json.loads(archive.read("version.json"))
        if "install_profile.json" in names:
            # Legacy installers nest it
            return json.loads(archive.read("install_profile.json")).get("versionInfo")
    return None


async def finalize(manager: "ModLoaderManager", ctx: InstallContext) -> Dict[str, Any]:
    patch = await find_version_patch(ctx)
    if patch is not None:
        return patch
    logger.debug("No version profile written by the installer, reading it from %s", ctx.installer)
    loop = asyncio.get_running_loop()
    try:
        patch = await loop.run_in_executor(None, read_embedded_profile, ctx.installer)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise InstallerOutputMissing(ctx.kind.value, f"unreadable installer {ctx.installer}: {e}") from e
    if patch is None:
        raise InstallerOutputMissing(ctx.kind.value, "no version profile written or bundled")
    return patch


FORGE = LoaderSteps(versions=forge_versions, prepare=prepare, compile=compile_bridge, execute=execute,
                    finalize=finalize)
NEOFORGE = LoaderSteps(versions=neoforge_versions, prepare=prepare, compile=compile_bridge, execute=execute,
                       finalize=finalize)
