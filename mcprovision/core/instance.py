"""Instances and their on-disk layout.

An instance directory is the only record of an instance::

    <instances_root>/<name>/
        instance.json          name, version id, instance config
        version.json           the version descriptor launches are built from
        version.vanilla.json   the unpatched descriptor while a loader is installed
        loader.json            loader state marker
        .minecraft/            game data (saves, mods, options)
        libraries/             instance-local libraries, shadowing the shared store
        natives/               extracted native libraries
        <loader>/              private working directory of a loader installer
"""

import asyncio
import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import ProvisionConfig
from ..errors import InstanceExists, InstanceNotFound, MalformedDescriptor
from ..utils.files import read_json, write_json_atomic
from ..versions.models import VersionDescriptor, parse_descriptor

logger = logging.getLogger(__name__)


class LoaderKind(str, Enum):
    VANILLA = "Vanilla"
    FABRIC = "Fabric"
    FORGE = "Forge"
    QUILT = "Quilt"
    NEOFORGE = "NeoForge"
    OPTIFINE = "OptiFine"

    @classmethod
    def parse(cls, value: str) -> "LoaderKind":
        for kind in cls:
            if kind.value.lower() == value.lower():
                return kind
        raise ValueError(f"unknown loader {value!r}, expected one of {', '.join(k.value for k in cls)}")


class LoaderState(BaseModel):
    kind: LoaderKind = LoaderKind.VANILLA
    version: Optional[str] = None

    @property
    def is_vanilla(self) -> bool:
        return self.kind is LoaderKind.VANILLA

    def __str__(self) -> str:
        return self.kind.value if self.version is None else f"{self.kind.value} {self.version}"


class InstanceConfig(BaseModel):
    ram_mb: int = 2048
    java_args: List[str] = Field(default_factory=list)
    game_args: List[str] = Field(default_factory=list)
    # Use this java executable instead of the managed runtime
    java_override: Optional[Path] = None


class Instance(BaseModel):
    name: str
    version_id: str
    root: Path
    loader_state: LoaderState = Field(default_factory=LoaderState)
    config: InstanceConfig = Field(default_factory=InstanceConfig)

    @property
    def meta_path(self) -> Path:
        return self.root / "instance.json"

    @property
    def descriptor_path(self) -> Path:
        return self.root / "version.json"

    @property
    def vanilla_descriptor_path(self) -> Path:
        return self.root / "version.vanilla.json"

    @property
    def loader_marker_path(self) -> Path:
        return self.root / "loader.json"

    @property
    def game_dir(self) -> Path:
        return self.root / ".minecraft"

    @property
    def libraries_dir(self) -> Path:
        return self.root / "libraries"

    @property
    def natives_dir(self) -> Path:
        return self.root / "natives"

    def loader_dir(self, kind: LoaderKind) -> Path:
        return self.root / kind.value.lower()

    def loader_lock_path(self, kind: LoaderKind) -> Path:
        return self.root / f"{kind.value.lower()}.lock"

    def pending_loader_installs(self) -> List[LoaderKind]:
        """Loaders whose install was interrupted and must be redone from the start."""
        return [kind for kind in LoaderKind
                if kind is not LoaderKind.VANILLA and self.loader_lock_path(kind).is_file()]


class InstanceStore:
    """Creates, loads and deletes instance directories under the instances root."""

    def __init__(self, config: ProvisionConfig):
        self.root = config.instances_root
        self.default_maven = config.libraries_url + "/"

    def path(self, name: str) -> Path:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"invalid instance name {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path(name).joinpath("instance.json").is_file()

    def list_names(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if (entry / "instance.json").is_file())

    async def create(self, name: str, version_id: str, descriptor_data: Dict[str, Any],
                     config: Optional[InstanceConfig] = None) -> Instance:
        root = self.path(name)
        if root.exists():
            raise InstanceExists(name, root)
        instance = Instance(name=name, version_id=version_id, root=root, config=config or InstanceConfig())
        for directory in (instance.game_dir, instance.libraries_dir, instance.natives_dir):
            directory.mkdir(parents=True, exist_ok=True)
        await write_json_atomic(instance.descriptor_path, descriptor_data)
        await write_json_atomic(instance.loader_marker_path, instance.loader_state.model_dump(mode="json"))
        # Written last, marks the instance as complete
        await self.save_config(instance)
        logger.info("Created instance %s (%s) at %s", name, version_id, root)
        return instance

    async def load(self, name: str) -> Instance:
        root = self.path(name)
        meta_path = root / "instance.json"
        if not meta_path.is_file():
            raise InstanceNotFound(name, self.root)
        meta = await read_json(meta_path)
        loader_state = LoaderState()
        marker_path = root / "loader.json"
        if marker_path.is_file():
            try:
                loader_state = LoaderState(**await read_json(marker_path))
            except (ValueError, ValidationError) as e:
                logger.warning("Unreadable loader marker %s (%s), treating instance as Vanilla", marker_path, e)
        return Instance(name=name, version_id=meta["version_id"], root=root, loader_state=loader_state,
                        config=InstanceConfig(**meta.get("config", {})))

    async def save_config(self, instance: Instance):
        await write_json_atomic(instance.meta_path, {
            "name": instance.name,
            "version_id": instance.version_id,
            "config": instance.config.model_dump(mode="json"),
        })

    async def set_loader_state(self, instance: Instance, state: LoaderState) -> Instance:
        await write_json_atomic(instance.loader_marker_path, state.model_dump(mode="json"))
        return instance.model_copy(update={"loader_state": state})

    async def read_descriptor_data(self, instance: Instance) -> Dict[str, Any]:
        try:
            return await read_json(instance.descriptor_path)
        except (OSError, ValueError) as e:
            raise MalformedDescriptor(instance.version_id, str(e), instance.descriptor_path) from e

    async def write_descriptor_data(self, instance: Instance, data: Dict[str, Any]):
        await write_json_atomic(instance.descriptor_path, data)

    async def load_descriptor(self, instance: Instance) -> VersionDescriptor:
        return parse_descriptor(await self.read_descriptor_data(instance), self.default_maven)

    async def delete(self, name: str):
        root = self.path(name)
        if not root.exists():
            raise InstanceNotFound(name, self.root)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.rmtree, root)
        logger.info("Deleted instance %s", name)
