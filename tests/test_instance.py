"""Tests for the instance store."""

import pytest

from mcprovision.config import ProvisionConfig
from mcprovision.core.instance import InstanceConfig, InstanceStore, LoaderKind, LoaderState
from mcprovision.errors import InstanceExists, InstanceNotFound

DESCRIPTOR = {
    "id": "1.20.1",
    "mainClass": "net.minecraft.client.main.Main",
    "libraries": [],
    "assetIndex": {"id": "5", "url": "https://example.invalid/5.json"},
    "downloads": {"client": {"url": "https://example.invalid/client.jar"}},
}


@pytest.fixture
def store(tmp_path) -> InstanceStore:
    return InstanceStore(ProvisionConfig(shared_root=tmp_path / "shared", instances_root=tmp_path / "instances"))


@pytest.mark.asyncio
async def test_create_and_load(store):
    created = await store.create("survival", "1.20.1", DESCRIPTOR, InstanceConfig(ram_mb=4096))
    assert created.game_dir.is_dir() and created.natives_dir.is_dir() and created.libraries_dir.is_dir()
    assert store.list_names() == ["survival"]

    loaded = await store.load("survival")
    assert loaded == created
    assert loaded.loader_state.is_vanilla
    assert loaded.config.ram_mb == 4096
    assert (await store.load_descriptor(loaded)).id == "1.20.1"


@pytest.mark.asyncio
async def test_create_twice_fails(store):
    await store.create("survival", "1.20.1", DESCRIPTOR)
    with pytest.raises(InstanceExists):
        await store.create("survival", "1.20.1", DESCRIPTOR)


@pytest.mark.asyncio
async def test_load_missing(store):
    with pytest.raises(InstanceNotFound):
        await store.load("nothing-here")


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b"])
def test_invalid_names(store, name):
    with pytest.raises(ValueError):
        store.path(name)


@pytest.mark.asyncio
async def test_loader_state_persists(store):
    instance = await store.create("modded", "1.20.1", DESCRIPTOR)
    updated = await store.set_loader_state(instance, LoaderState(kind=LoaderKind.FABRIC, version="0.15.0"))
    assert str(updated.loader_state) == "Fabric 0.15.0"
    assert instance.loader_state.is_vanilla
    assert (await store.load("modded")).loader_state == updated.loader_state


@pytest.mark.asyncio
async def test_unreadable_marker_means_vanilla(store):
    instance = await store.create("modded", "1.20.1", DESCRIPTOR)
    instance.loader_marker_path.write_text('{"kind": "Rift"}')
    assert (await store.load("modded")).loader_state.is_vanilla


@pytest.mark.asyncio
async def test_pending_loader_installs(store):
    instance = await store.create("modded", "1.20.1", DESCRIPTOR)
    assert instance.pending_loader_installs() == []
    instance.loader_lock_path(LoaderKind.FORGE).write_text("")
    assert instance.pending_loader_installs() == [LoaderKind.FORGE]


@pytest.mark.asyncio
async def test_save_config(store):
    instance = await store.create("survival", "1.20.1", DESCRIPTOR)
    instance.config.game_args.append("--demo")
    await store.save_config(instance)
    assert (await store.load("survival")).config.game_args == ["--demo"]


@pytest.mark.asyncio
async def test_delete(store):
    instance = await store.create("survival", "1.20.1", DESCRIPTOR)
    (instance.game_dir / "saves").mkdir()
    await store.delete("survival")
    assert not instance.root.exists()
    assert store.list_names() == []
    with pytest.raises(InstanceNotFound):
        await store.delete("survival")


def test_loader_kind_parse():
    assert LoaderKind.parse("neoforge") is LoaderKind.NEOFORGE
    assert LoaderKind.parse("OptiFine") is LoaderKind.OPTIFINE
    with pytest.raises(ValueError):
        LoaderKind.parse("rift")
