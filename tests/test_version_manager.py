"""Tests for the version catalog."""

import json

import pytest

from conftest import GAME_VERSION
from mcprovision.errors import ManifestUnavailable, MalformedDescriptor, VersionNotFound
from mcprovision.progress import ProgressStatus
from mcprovision.versions.download_manager import DownloadManager
from mcprovision.versions.manager import VersionManager

MANIFEST_PATH = "/mc/version_manifest_v2.json"


@pytest.mark.asyncio
async def test_fetch_manifest_caches_to_disk(config, http, origin, game_version):
    manager = VersionManager(config, http)
    manifest = await manager.fetch_manifest()
    assert not manifest.stale
    assert manifest.latest["release"] == GAME_VERSION
    assert config.manifest_cache_path.is_file()

    # Memoized for the manager's lifetime
    await manager.fetch_manifest()
    assert origin.count(MANIFEST_PATH) == 1


@pytest.mark.asyncio
async def test_stale_manifest_fallback(config, http, origin, game_version):
    await VersionManager(config, http).fetch_manifest()
    origin.routes[MANIFEST_PATH].status = 500

    events = []
    manifest = await VersionManager(config, http).fetch_manifest(events.append)
    assert manifest.stale
    assert manifest.get(GAME_VERSION) is not None
    assert events[-1].status is ProgressStatus.SUCCEEDED
    assert events[-1].label == "stale"


@pytest.mark.asyncio
async def test_manifest_unavailable_without_cache(config, http, origin):
    events = []
    with pytest.raises(ManifestUnavailable) as excinfo:
        await VersionManager(config, http).fetch_manifest(events.append)
    assert excinfo.value.url == config.manifest_url
    assert events[-1].status is ProgressStatus.FAILED


@pytest.mark.asyncio
async def test_manifest_duplicates_keep_first(config, http, origin, game_version):
    data = json.loads(origin.routes[MANIFEST_PATH].body)
    duplicate = dict(data["versions"][0], url=origin.url("/elsewhere.json"))
    data["versions"].append(duplicate)
    origin.add_json(MANIFEST_PATH, data)

    manifest = await VersionManager(config, http).fetch_manifest()
    assert len(manifest.versions) == 1
    assert manifest.versions[0].url.endswith("/mc/1.20.1.json")


@pytest.mark.asyncio
async def test_unknown_version(config, http, game_version):
    with pytest.raises(VersionNotFound):
        await VersionManager(config, http).resolve_descriptor("0.0.0")


@pytest.mark.asyncio
async def test_resolve_descriptor_uses_verified_cache(config, http, origin, game_version):
    descriptor = await VersionManager(config, http).resolve_descriptor(GAME_VERSION)
    assert descriptor.id == GAME_VERSION
    assert descriptor.java_major_version == 17
    assert len(descriptor.libraries) == 4
    assert VersionManager(config, http).descriptor_cache_path(GAME_VERSION).is_file()

    origin.reset()
    again = await VersionManager(config, http).resolve_descriptor(GAME_VERSION)
    assert again == descriptor
    assert origin.requests == [MANIFEST_PATH]


@pytest.mark.asyncio
async def test_malformed_descriptor_is_fatal_for_that_version(config, http, origin, game_version):
    data = json.loads(origin.routes["/mc/1.20.1.json"].body)
    del data["mainClass"]
    origin.add_json("/mc/1.20.1.json", data)
    manifest = json.loads(origin.routes[MANIFEST_PATH].body)
    manifest["versions"][0]["sha1"] = None
    origin.add_json(MANIFEST_PATH, manifest)

    with pytest.raises(MalformedDescriptor) as excinfo:
        await VersionManager(config, http).resolve_descriptor(GAME_VERSION)
    assert excinfo.value.version_id == GAME_VERSION


@pytest.mark.asyncio
async def test_fetch_asset_index(config, http, origin, game_version):
    manager = VersionManager(config, http)
    descriptor = await manager.resolve_descriptor(GAME_VERSION)
    index = await manager.fetch_asset_index(descriptor, DownloadManager(config, http))
    assert set(index.objects) == {"icons/icon.png", "sounds/a.ogg", "sounds/copy.ogg"}
    assert (config.assets_dir / "indexes" / "5.json").is_file()


@pytest.mark.asyncio
async def test_unwritable_cache_keeps_fresh_catalog(config, http, origin, game_version, tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    config = config.model_copy(update={"shared_root": blocker})

    manager = VersionManager(config, http)
    manifest = await manager.fetch_manifest()
    assert not manifest.stale
    assert not config.manifest_cache_path.exists()

    descriptor = await manager.resolve_descriptor(GAME_VERSION)
    assert descriptor.id == GAME_VERSION
