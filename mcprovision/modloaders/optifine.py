"""OptiFine: hook the installer's headless entry point against a staged launcher directory.

OptiFine has no download service; the user supplies the installer jar.
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import CompileFailed, InstallerOutputMissing, InstallFailed, LoaderInstallError
from .base import (InstallContext, LoaderSteps, fetch_installer, find_version_patch, run_checked, stage_vanilla,
                   write_bridge, write_launcher_profiles)

if TYPE_CHECKING:
    from .modloader_manager import ModLoaderManager

BRIDGE_CLASS = "OptifineInstaller"


async def versions(manager: "ModLoaderManager", game_version: str) -> List[str]:
    return []


async def resolve_version(manager: "ModLoaderManager", game_version: str,
                          installer_path: Optional[Path]) -> Optional[str]:
    """OptiFine_1.20.1_HD_U_I6.jar -> OptiFine_1.20.1_HD_U_I6"""
    if installer_path is None:
        return None
    return installer_path.stem


async def prepare(manager: "ModLoaderManager", ctx: InstallContext):
    if ctx.installer_path is None:
        raise LoaderInstallError("OptiFine cannot be downloaded automatically, pass the installer jar")
    await fetch_installer(manager, ctx, [])
    await write_launcher_profiles(ctx.work_dir)
    stage_vanilla(manager, ctx)
    write_bridge(ctx, BRIDGE_CLASS)


async def compile_bridge(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.javac, ["-cp", str(ctx.installer), f"{BRIDGE_CLASS}.java", "-d", "."],
                      ctx.work_dir, CompileFailed)


async def execute(manager: "ModLoaderManager", ctx: InstallContext):
    await run_checked(ctx.java, ["-cp", f"{ctx.installer}{os.pathsep}.", BRIDGE_CLASS, str(ctx.work_dir)],
                      ctx.work_dir, InstallFailed)


async def finalize(manager: "ModLoaderManager", ctx: InstallContext) -> Dict[str, Any]:
    patch = await find_version_patch(ctx)
    if patch is None:
        raise InstallerOutputMissing("OptiFine", f"no version profile under {ctx.work_dir / 'versions'}")
    return patch


OPTIFINE = LoaderSteps(versions=versions, prepare=prepare, compile=compile_bridge, execute=execute,
                       finalize=finalize, resolve_version=resolve_version)
