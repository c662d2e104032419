"""Building blocks shared by the per-loader install steps."""

import asyncio
import json
import logging
import os
import shutil
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple, Type

import aiofiles
from pydantic import BaseModel, ConfigDict

from ..core.instance import Instance, LoaderKind
from ..errors import ArtifactUnavailable, DownloadError, LoaderInstallError, _ProcessFailed
from ..progress import ProgressSink
from ..utils.files import read_json
from ..versions.download_manager import DownloadTask

if TYPE_CHECKING:
    from .modloader_manager import ModLoaderManager

logger = logging.getLogger(__name__)

BRIDGES_DIR = Path(__file__).parent / "bridges"
INSTALLER_NAME = "installer.jar"


class InstallContext(BaseModel):
    """State handed from one install step to the next."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    instance: Instance
    kind: LoaderKind
    game_version: str
    loader_version: str
    work_dir: Path
    java: Path
    installer_path: Optional[Path] = None
    progress_sink: Optional[Any] = None

    @property
    def javac(self) -> Path:
        return self.java.with_name("javac" + self.java.suffix)

    @property
    def installer(self) -> Path:
        return self.work_dir / INSTALLER_NAME


StepFn = Callable[["ModLoaderManager", InstallContext], Awaitable[Any]]


class LoaderSteps(NamedTuple):
    """The coroutines making up one loader's install.

    ``finalize`` returns the version patch the installer produced; merging it
    into the instance is common to every loader.
    """
    versions: Callable[["ModLoaderManager", str], Awaitable[List[str]]]
    prepare: StepFn
    execute: StepFn
    finalize: Callable[["ModLoaderManager", InstallContext], Awaitable[Dict[str, Any]]]
    compile: Optional[StepFn] = None
    # Default version when the caller gives none; first listed version otherwise
    resolve_version: Optional[Callable[["ModLoaderManager", str, Optional[Path]], Awaitable[Optional[str]]]] = None


async def run_process(executable: Path, args: List[str], cwd: Path) -> Tuple[int, str]:
    """Run a program without a shell, returning its exit code and combined output.

    Cancelling the awaiting task kills the process.
    """
    logger.debug("Running %s %s in %s", executable, " ".join(args), cwd)
    proc = await asyncio.create_subprocess_exec(
        str(executable), *args, cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.STDOUT,
    )
    try:
        output, _ = await proc.communicate()
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    return proc.returncode, output.decode("utf-8", errors="replace")


async def run_checked(executable: Path, args: List[str], cwd: Path, error: Type[_ProcessFailed]) -> str:
    command = [str(executable)] + args
    try:
        exit_code, output = await run_process(executable, args, cwd)
    except OSError as e:
        raise error(-1, f"{type(e).__name__}: {e}", command) from e
    if exit_code != 0:
        logger.error("%s exited with %d", command[0], exit_code)
        raise error(exit_code, output, command)
    logger.debug("%s output:\n%s", command[0], output)
    return output


def write_bridge(ctx: InstallContext, class_name: str) -> Path:
    source = BRIDGES_DIR / f"{class_name}.java"
    target = ctx.work_dir / source.name
    shutil.copyfile(source, target)
    return target


async def write_launcher_profiles(work_dir: Path):
    """Client installers refuse to run without a launcher profile store."""
    for name in ("launcher_profiles.json", "launcher_profiles_microsoft_store.json"):
        async with aiofiles.open(work_dir / name, "w", encoding="utf-8") as f:
            await f.write(json.dumps({"profiles": {}}))


async def fetch_installer(manager: "ModLoaderManager", ctx: InstallContext, urls: List[str]):
    """Place the installer jar in the work directory, from a local copy or the first URL that works."""
    if ctx.installer_path is not None:
        if not ctx.installer_path.is_file():
            raise LoaderInstallError(f"Installer {ctx.installer_path} does not exist")
        shutil.copyfile(ctx.installer_path, ctx.installer)
        return

    errors: List[ArtifactUnavailable] = []
    for url in urls:
        task = DownloadTask(url=url, destination=ctx.installer, kind="installer",
                            label=f"{ctx.kind.value} {ctx.loader_version} installer")
        try:
            await manager.downloads.run([task], progress_sink=ctx.progress_sink)
            return
        except DownloadError as e:
            logger.debug("Installer not available from %s", url)
            errors.extend(e.failures)
    raise DownloadError(errors)


def stage_vanilla(manager: "ModLoaderManager", ctx: InstallContext):
    """Lay out versions/<mc>/ in the work directory the way installers expect a launcher directory."""
    version_dir = ctx.work_dir / "versions" / ctx.game_version
    version_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(ctx.instance.descriptor_path, version_dir / f"{ctx.game_version}.json")
    client_jar = manager.config.versions_dir / ctx.game_version / f"{ctx.game_version}.jar"
    if client_jar.is_file():
        shutil.copyfile(client_jar, version_dir / f"{ctx.game_version}.jar")
    else:
        logger.warning("Client jar %s missing, installer will fetch it itself", client_jar)


async def find_version_patch(ctx: InstallContext) -> Optional[Dict[str, Any]]:
    """The versions/<id>/<id>.json an installer wrote, other than the staged vanilla one."""
    versions_dir = ctx.work_dir / "versions"
    if not versions_dir.is_dir():
        return None
    for path in sorted(versions_dir.glob("*/*.json")):
        if path.parent.name == ctx.game_version or path.stem != path.parent.name:
            continue
        logger.debug("Found version patch %s", path)
        return await read_json(path)
    return None


def move_tree(source: Path, target: Path):
    """Move every file below source to the same relative path below target."""
    if not source.is_dir():
        return
    for root, _, files in os.walk(source):
        for name in files:
            src = Path(root) / name
            dest = target / src.relative_to(source)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dest)
    shutil.rmtree(source, ignore_errors=True)
