"""Async file helpers built on aiofiles."""

import json
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os


def temp_sibling(path: Path, suffix: str = ".tmp") -> Path:
    """A unique temp path in the same directory, so a rename onto ``path`` stays on one volume."""
    return path.with_name(f".{path.name}.{uuid.uuid4().hex[:12]}{suffix}")


async def read_json(path: Path) -> Any:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return json.loads(await f.read())


async def write_bytes_atomic(path: Path, data: bytes):
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    tmp_path = temp_sibling(path)
    try:
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            await aiofiles.os.remove(tmp_path)


async def write_json_atomic(path: Path, data: Any):
    await write_bytes_atomic(path, json.dumps(data, indent=2).encode("utf-8"))
