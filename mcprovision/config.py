"""Provisioning configuration."""

from os import environ
from pathlib import Path
from pydantic import BaseModel

from . import __version__

ENV_PREFIX = "MCPROVISION_"
DEFAULT_ROOT = Path.home() / ".mcprovision"


class ProvisionConfig(BaseModel):
    """Roots, remote endpoints and download tuning, passed explicitly to every component."""
    shared_root: Path = DEFAULT_ROOT / "shared"
    instances_root: Path = DEFAULT_ROOT / "instances"

    manifest_url: str = "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"
    resources_url: str = "https://resources.download.minecraft.net"
    libraries_url: str = "https://libraries.minecraft.net"
    runtime_catalog_url: str = "https://api.adoptium.net/v3"
    fabric_meta_url: str = "https://meta.fabricmc.net/v2"
    quilt_meta_url: str = "https://meta.quiltmc.org/v3"
    forge_maven_url: str = "https://maven.minecraftforge.net"
    forge_promotions_url: str = "https://files.minecraftforge.net/net/minecraftforge/forge/promotions_slim.json"
    neoforge_maven_url: str = "https://maven.neoforged.net"

    max_parallel_downloads: int = 8
    download_attempts: int = 3
    request_timeout: float = 60.0
    user_agent: str = f"mcprovision/{__version__}"

    launcher_name: str = "mcprovision"
    launcher_version: str = __version__

    @classmethod
    def from_env(cls, **overrides) -> "ProvisionConfig":
        """Build a config from MCPROVISION_* environment variables."""
        values = {}
        for name in cls.model_fields:
            env_value = environ.get(ENV_PREFIX + name.upper())
            if env_value is not None:
                values[name] = env_value
        values.update(overrides)
        return cls(**values)

    # Shared store layout

    @property
    def manifest_cache_path(self) -> Path:
        return self.shared_root / "version_manifest.json"

    @property
    def versions_dir(self) -> Path:
        return self.shared_root / "versions"

    @property
    def libraries_dir(self) -> Path:
        return self.shared_root / "libraries"

    @property
    def assets_dir(self) -> Path:
        return self.shared_root / "assets"

    @property
    def asset_objects_dir(self) -> Path:
        return self.assets_dir / "objects"

    @property
    def runtimes_dir(self) -> Path:
        return self.shared_root / "runtimes"
