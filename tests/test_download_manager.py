"""Tests for the download orchestrator."""

import asyncio

import pytest

from conftest import sha1
from mcprovision.errors import DownloadCancelled, DownloadError
from mcprovision.progress import ProgressStatus
from mcprovision.versions.download_manager import DownloadManager, DownloadTask, file_digest
from mcprovision.versions.models import AssetIndex


def make_task(origin, tmp_path, name: str, data: bytes, **route) -> DownloadTask:
    url = origin.add(f"/files/{name}", data, **route)
    return DownloadTask(url=url, destination=tmp_path / "store" / name, expected_hash=sha1(data),
                        expected_size=len(data))


@pytest.mark.asyncio
async def test_downloads_and_verifies(config, http, origin, tmp_path):
    tasks = [make_task(origin, tmp_path, f"f{i}.bin", f"payload {i}".encode()) for i in range(5)]
    events = []
    await DownloadManager(config, http).run(tasks, progress_sink=events.append)

    for i, task in enumerate(tasks):
        assert task.destination.read_bytes() == f"payload {i}".encode()
    progress = [event.completed for event in events if not event.is_terminal]
    assert progress == sorted(progress)
    assert events[-1].status is ProgressStatus.SUCCEEDED
    assert events[-1].completed == events[-1].total == 5
    # No temp files left next to the artifacts
    assert sorted(p.name for p in (tmp_path / "store").iterdir()) == [f"f{i}.bin" for i in range(5)]


@pytest.mark.asyncio
async def test_second_run_makes_no_requests(config, http, origin, tmp_path):
    tasks = [make_task(origin, tmp_path, f"f{i}.bin", b"x" * (i + 1)) for i in range(3)]
    manager = DownloadManager(config, http)
    await manager.run(tasks)
    origin.reset()
    events = []
    await manager.run(tasks, progress_sink=events.append)
    assert origin.requests == []
    assert events[-1].completed == 3


@pytest.mark.asyncio
async def test_existing_corrupt_file_is_replaced(config, http, origin, tmp_path):
    task = make_task(origin, tmp_path, "lib.jar", b"good bytes")
    task.destination.parent.mkdir(parents=True)
    task.destination.write_bytes(b"bad bytes!")
    await DownloadManager(config, http).run([task])
    assert task.destination.read_bytes() == b"good bytes"
    assert origin.count("/files/lib.jar") == 1


@pytest.mark.asyncio
async def test_retries_transient_and_corrupt_responses(config, http, origin, tmp_path):
    flaky = make_task(origin, tmp_path, "flaky.bin", b"flaky", failures=2)
    corrupt = make_task(origin, tmp_path, "corrupt.bin", b"corrupt once", corruptions=1)
    await DownloadManager(config, http).run([flaky, corrupt])
    assert flaky.destination.read_bytes() == b"flaky"
    assert corrupt.destination.read_bytes() == b"corrupt once"
    assert origin.count("/files/flaky.bin") == 3
    assert origin.count("/files/corrupt.bin") == 2


@pytest.mark.asyncio
async def test_truncated_body_is_retried(config, http, origin, tmp_path):
    truncated = make_task(origin, tmp_path, "short.bin", b"the whole payload", truncations=1)
    await DownloadManager(config, http).run([truncated])
    assert truncated.destination.read_bytes() == b"the whole payload"
    assert origin.count("/files/short.bin") == 2


@pytest.mark.asyncio
async def test_aggregate_failure_lists_every_artifact(config, http, origin, tmp_path):
    good = make_task(origin, tmp_path, "good.bin", b"fine")
    always_corrupt = make_task(origin, tmp_path, "bad.bin", b"never right", corruptions=10)
    missing = DownloadTask(url=origin.url("/files/missing.bin"), destination=tmp_path / "store" / "missing.bin")

    events = []
    with pytest.raises(DownloadError) as excinfo:
        await DownloadManager(config, http).run([good, always_corrupt, missing], progress_sink=events.append)

    assert sorted(excinfo.value.urls) == sorted([always_corrupt.url, missing.url])
    assert "missing.bin" in str(excinfo.value) and "bad.bin" in str(excinfo.value)
    assert good.destination.read_bytes() == b"fine"
    assert not always_corrupt.destination.exists()
    # Permanent 404 is not retried
    assert origin.count("/files/missing.bin") == 1
    assert origin.count("/files/bad.bin") == config.download_attempts
    assert events[-1].status is ProgressStatus.FAILED


@pytest.mark.asyncio
async def test_concurrency_is_bounded(config, http, origin, tmp_path):
    tasks = [make_task(origin, tmp_path, f"slow{i}.bin", b"slow", delay=0.05) for i in range(8)]
    await DownloadManager(config, http).run(tasks, max_parallel=2)
    assert origin.max_in_flight == 2
    assert all(task.destination.is_file() for task in tasks)


@pytest.mark.asyncio
async def test_cancel_event_stops_and_leaves_no_partial_files(config, http, origin, tmp_path):
    tasks = [make_task(origin, tmp_path, f"c{i}.bin", b"slow data", delay=0.5) for i in range(6)]
    cancel = asyncio.Event()
    manager = DownloadManager(config, http)

    async def trigger():
        await asyncio.sleep(0.1)
        cancel.set()

    trigger_task = asyncio.ensure_future(trigger())
    with pytest.raises(DownloadCancelled) as excinfo:
        await manager.run(tasks, max_parallel=2, cancel_event=cancel)
    await trigger_task

    assert excinfo.value.completed < excinfo.value.total == 6
    store = tmp_path / "store"
    leftovers = list(store.iterdir()) if store.exists() else []
    assert leftovers == []
    # Pending tasks never started
    assert len(origin.requests) <= 2


@pytest.mark.asyncio
async def test_task_cancellation_propagates(config, http, origin, tmp_path):
    tasks = [make_task(origin, tmp_path, "hang.bin", b"data", delay=1)]
    job = asyncio.ensure_future(DownloadManager(config, http).run(tasks))
    await asyncio.sleep(0.1)
    job.cancel()
    with pytest.raises(asyncio.CancelledError):
        await job
    assert not tasks[0].destination.exists()


@pytest.mark.asyncio
async def test_asset_tasks_share_identical_objects(config, http):
    index = AssetIndex(objects={
        "a.ogg": {"hash": "aa" + "0" * 38, "size": 3},
        "copy-of-a.ogg": {"hash": "aa" + "0" * 38, "size": 3},
        "b.ogg": {"hash": "bb" + "1" * 38, "size": 4},
    })
    tasks = DownloadManager(config, http).asset_tasks(index)
    assert len(tasks) == 2
    assert tasks[0].destination == config.asset_objects_dir / "aa" / ("aa" + "0" * 38)
    assert tasks[0].url == f"{config.resources_url}/aa/{'aa' + '0' * 38}"


@pytest.mark.asyncio
async def test_file_digest(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"abc")
    assert await file_digest(path) == sha1(b"abc")
    assert await file_digest(path, "sha256") == \
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


@pytest.mark.asyncio
async def test_unexpected_task_error_is_reported(config, http, origin, tmp_path):
    good = make_task(origin, tmp_path, "good.bin", b"fine")
    broken = make_task(origin, tmp_path, "broken.bin", b"data")
    broken.hash_algorithm = "not-a-hash"

    events = []
    with pytest.raises(DownloadError) as excinfo:
        await DownloadManager(config, http).run([good, broken], progress_sink=events.append)

    assert excinfo.value.urls == [broken.url]
    assert "ValueError" in excinfo.value.failures[0].last_error
    assert good.destination.is_file()
    assert not broken.destination.exists()
    assert events[-1].status is ProgressStatus.FAILED
    assert events[-1].completed == 1 and events[-1].total == 2
