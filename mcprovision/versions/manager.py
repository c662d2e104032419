"""Version manifest and metadata manager."""

import asyncio
import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
from pydantic import ValidationError

from ..config import ProvisionConfig
from ..errors import (ManifestUnavailable, MalformedDescriptor, ProvisionError, RequestFailed,
                      VersionNotFound)
from ..progress import ProgressSink, emit, emit_terminal
from ..utils.async_http import AsyncHTTPClient
from ..utils.files import read_json, write_bytes_atomic, write_json_atomic
from .download_manager import DownloadManager, DownloadTask
from .models import (AssetIndex, VersionDescriptor, VersionInfo, VersionManifest, parse_asset_index,
                     parse_descriptor)

logger = logging.getLogger(__name__)


class VersionManager:
    """Fetches and caches the version catalog and per-version descriptors."""

    def __init__(self, config: ProvisionConfig, http: AsyncHTTPClient):
        self.config = config
        self.http = http
        self._manifest: Optional[VersionManifest] = None

    @property
    def manifest(self) -> Optional[VersionManifest]:
        """The manifest fetched so far, if any."""
        return self._manifest

    async def fetch_manifest(self, progress_sink: Optional[ProgressSink] = None,
                             refresh: bool = False) -> VersionManifest:
        """Fetch the launcher version manifest, falling back to the last cached copy."""
        if self._manifest is not None and not refresh:
            return self._manifest

        cache_path = self.config.manifest_cache_path
        await emit(progress_sink, "manifest", 0, 1, self.config.manifest_url)
        try:
            data = await self.http.get_json(self.config.manifest_url)
            manifest = VersionManifest(**data)
        except (RequestFailed, ValidationError, TypeError) as e:
            if not cache_path.exists():
                await emit_terminal(progress_sink, "manifest", False, str(e))
                raise ManifestUnavailable(self.config.manifest_url, e) from e
            logger.warning("Version manifest fetch failed (%s), using cached copy %s", e, cache_path)
            try:
                manifest = VersionManifest(**await read_json(cache_path))
            except (OSError, ValueError) as cache_error:
                await emit_terminal(progress_sink, "manifest", False, str(cache_error))
                raise ManifestUnavailable(self.config.manifest_url, e) from cache_error
            manifest.stale = True
        else:
            try:
                await write_json_atomic(cache_path, data)
            except OSError as e:
                logger.warning("Could not cache the version manifest at %s: %s", cache_path, e)

        dropped = manifest.dedupe()
        if dropped:
            logger.warning("Version manifest lists duplicate ids, keeping first: %s", ", ".join(dropped))

        self._manifest = manifest
        await emit(progress_sink, "manifest", 1, 1, "stale" if manifest.stale else "fresh")
        await emit_terminal(progress_sink, "manifest", True, "stale" if manifest.stale else "fresh", 1, 1)
        return manifest

    async def get_version_info(self, version_id: str, manifest: Optional[VersionManifest] = None) -> VersionInfo:
        """Get version info for a specific version."""
        if not manifest:
            manifest = await self.fetch_manifest()
        info = manifest.get(version_id)
        if info is None:
            raise VersionNotFound(version_id)
        return info

    def descriptor_cache_path(self, version_id: str) -> Path:
        return self.config.versions_dir / version_id / f"{version_id}.json"

    async def fetch_descriptor_data(self, version_info: VersionInfo) -> Dict[str, Any]:
        """Fetch the raw version.json for a version, reusing the cache when its sha1 matches."""
        cache_path = self.descriptor_cache_path(version_info.id)

        if cache_path.exists():
            async with aiofiles.open(cache_path, "rb") as f:
                raw = await f.read()
            if version_info.sha1 is None or hashlib.sha1(raw).hexdigest() == version_info.sha1.lower():
                try:
                    return json.loads(raw)
                except ValueError:
                    logger.warning("Cached descriptor %s is not valid JSON, fetching again", cache_path)

        try:
            raw = await self.http.get_bytes(version_info.url)
        except RequestFailed:
            if not cache_path.exists():
                raise
            logger.warning("Descriptor fetch for %s failed, using cached copy %s", version_info.id, cache_path)
            async with aiofiles.open(cache_path, "rb") as f:
                raw = await f.read()

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedDescriptor(version_info.id, f"invalid JSON: {e}", cache_path) from e

        # Cached verbatim
        try:
            await write_bytes_atomic(cache_path, raw)
        except OSError as e:
            logger.warning("Could not cache the descriptor of %s at %s: %s", version_info.id, cache_path, e)
        return data

    async def resolve_descriptor(self, version_id: str,
                                 manifest: Optional[VersionManifest] = None) -> VersionDescriptor:
        """Fetch and parse version.json for a specific version."""
        info = await self.get_version_info(version_id, manifest)
        data = await self.fetch_descriptor_data(info)
        return parse_descriptor(data, self.config.libraries_url + "/")

    async def fetch_asset_index(self, descriptor: VersionDescriptor, downloads: DownloadManager,
                                progress_sink: Optional[ProgressSink] = None,
                                cancel_event: Optional[asyncio.Event] = None) -> AssetIndex:
        """Download the asset index of a descriptor into the shared store and parse it."""
        ref = descriptor.asset_index
        dest = self.config.assets_dir / "indexes" / f"{ref.id}.json"
        task = DownloadTask(url=ref.url, destination=dest, expected_hash=ref.sha1, expected_size=ref.size,
                            kind="asset_index", label=f"asset index {ref.id}")
        await downloads.run([task], progress_sink=progress_sink, cancel_event=cancel_event)
        try:
            return parse_asset_index(await read_json(dest))
        except (OSError, ValueError) as e:
            raise ProvisionError(f"Asset index {ref.id} at {dest} is unreadable: {e}") from e
