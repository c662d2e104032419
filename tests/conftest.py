import asyncio
import hashlib
import io
import json
import stat
import sys
import tarfile
import zipfile
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mcprovision.config import ProvisionConfig
from mcprovision.utils.async_http import AsyncHTTPClient
from mcprovision.utils.host import HostPlatform

GAME_VERSION = "1.20.1"
JAVA_MAJOR = 17

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake executables are shell scripts")


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def zip_bytes(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


JAVA_VERSION_SCRIPT = """\
if [ "$1" = "-version" ]; then
  echo 'openjdk version "17.0.9" 2023-10-17' >&2
  exit 0
fi
"""


class Route:
    def __init__(self, body: bytes, status: int = 200, failures: int = 0, corruptions: int = 0,
                 delay: float = 0.0, truncations: int = 0):
        self.body = body
        self.status = status
        self.failures = failures
        self.corruptions = corruptions
        self.truncations = truncations
        self.delay = delay


class Origin:
    """Local HTTP origin serving registered bodies and recording every request path."""

    def __init__(self):
        self.routes: Dict[str, Route] = {}
        self.requests: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.server: Optional[TestServer] = None

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def add(self, path: str, body: bytes, **kwargs) -> str:
        self.routes[path] = Route(body, **kwargs)
        return self.url(path)

    def add_json(self, path: str, data, **kwargs) -> str:
        return self.add(path, json.dumps(data).encode("utf-8"), **kwargs)

    def count(self, path: str) -> int:
        return self.requests.count(path)

    def reset(self):
        self.requests.clear()

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(request.path)
        route = self.routes.get(request.path)
        if route is None:
            return web.Response(status=404)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if route.delay:
                await asyncio.sleep(route.delay)
            if route.failures > 0:
                route.failures -= 1
                return web.Response(status=503)
            if route.status != 200:
                return web.Response(status=route.status)
            body = route.body
            if route.corruptions > 0:
                route.corruptions -= 1
                body = bytes(b ^ 0xFF for b in body)
            elif route.truncations > 0:
                route.truncations -= 1
                body = body[: len(body) // 2]
            return web.Response(body=body)
        finally:
            self.in_flight -= 1


@pytest_asyncio.fixture
async def origin() -> AsyncGenerator[Origin, None]:
    origin = Origin()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", origin.handle)
    server = TestServer(app)
    await server.start_server()
    origin.server = server
    yield origin
    await server.close()


@pytest.fixture
def host() -> HostPlatform:
    return HostPlatform("linux", "x86_64", "6.1.0")


@pytest.fixture
def config(tmp_path, origin) -> ProvisionConfig:
    return ProvisionConfig(
        shared_root=tmp_path / "shared",
        instances_root=tmp_path / "instances",
        manifest_url=origin.url("/mc/version_manifest_v2.json"),
        resources_url=origin.url("/resources"),
        libraries_url=origin.url("/libraries"),
        runtime_catalog_url=origin.url("/adoptium/v3"),
        fabric_meta_url=origin.url("/fabric/v2"),
        quilt_meta_url=origin.url("/quilt/v3"),
        forge_maven_url=origin.url("/forge-maven"),
        forge_promotions_url=origin.url("/forge/promotions_slim.json"),
        neoforge_maven_url=origin.url("/neoforge"),
        max_parallel_downloads=4,
        download_attempts=3,
        request_timeout=5.0,
    )


@pytest_asyncio.fixture
async def http() -> AsyncGenerator[AsyncHTTPClient, None]:
    async with AsyncHTTPClient(timeout=5.0) as client:
        yield client


@pytest.fixture
def fake_java(tmp_path) -> Path:
    """A java executable that answers -version and fails anything else."""
    return write_script(tmp_path / "fake-jdk" / "bin" / "java", JAVA_VERSION_SCRIPT + "exit 3\n")


@pytest.fixture
def game_version(origin):
    """Publish a small but complete version on the origin; returns its descriptor data."""
    client_jar = b"client jar bytes"
    lib_a = b"library a"
    lib_b = b"library b, macOS only"
    lib_c = b"library c"
    natives = zip_bytes({
        "liblwjgl.so": b"\x7fELF native",
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\n",
    })
    logging_xml = b"<Configuration/>"
    objects = {"icons/icon.png": b"png", "sounds/a.ogg": b"ogg", "sounds/copy.ogg": b"ogg"}
    asset_index = {"objects": {path: {"hash": sha1(data), "size": len(data)} for path, data in objects.items()}}
    asset_index_bytes = json.dumps(asset_index).encode("utf-8")

    def library(name: str, path: str, data: bytes, rules=None):
        entry = {"name": name, "downloads": {"artifact": {
            "path": path, "url": origin.add(f"/libraries/{path}", data), "sha1": sha1(data), "size": len(data),
        }}}
        if rules:
            entry["rules"] = rules
        return entry

    for data in objects.values():
        digest = sha1(data)
        origin.add(f"/resources/{digest[:2]}/{digest}", data)

    descriptor = {
        "id": GAME_VERSION,
        "type": "release",
        "mainClass": "net.minecraft.client.main.Main",
        "javaVersion": {"component": "java-runtime-gamma", "majorVersion": JAVA_MAJOR},
        "assetIndex": {"id": "5", "url": origin.add("/mc/indexes/5.json", asset_index_bytes),
                       "sha1": sha1(asset_index_bytes), "size": len(asset_index_bytes)},
        "downloads": {"client": {"url": origin.add("/mc/client.jar", client_jar), "sha1": sha1(client_jar),
                                 "size": len(client_jar)}},
        "logging": {"client": {
            "argument": "-Dlog4j.configurationFile=${path}",
            "type": "log4j2-xml",
            "file": {"id": "client-1.12.xml", "url": origin.add("/mc/client-1.12.xml", logging_xml),
                     "sha1": sha1(logging_xml), "size": len(logging_xml)},
        }},
        "libraries": [
            library("com.example:a:1.0", "com/example/a/1.0/a-1.0.jar", lib_a),
            library("com.example:b:1.0", "com/example/b/1.0/b-1.0.jar", lib_b,
                    rules=[{"action": "allow", "os": {"name": "osx"}}]),
            library("com.example:c:1.0", "com/example/c/1.0/c-1.0.jar", lib_c),
            {
                "name": "org.lwjgl:lwjgl-platform:2.9.4",
                "natives": {"linux": "natives-linux", "osx": "natives-osx"},
                "extract": {"exclude": ["META-INF/"]},
                "downloads": {"classifiers": {"natives-linux": {
                    "path": "org/lwjgl/lwjgl-platform/2.9.4/lwjgl-platform-2.9.4-natives-linux.jar",
                    "url": origin.add("/libraries/org/lwjgl/lwjgl-platform/2.9.4/"
                                      "lwjgl-platform-2.9.4-natives-linux.jar", natives),
                    "sha1": sha1(natives), "size": len(natives),
                }}},
            },
        ],
        "arguments": {
            "game": [
                "--username", "${auth_player_name}",
                "--version", "${version_name}",
                "--gameDir", "${game_directory}",
                "--assetsDir", "${assets_root}",
                "--assetIndex", "${assets_index_name}",
                "--uuid", "${auth_uuid}",
                "--accessToken", "${auth_access_token}",
                {"rules": [{"action": "allow", "features": {"has_custom_resolution": True}}],
                 "value": ["--width", "${resolution_width}"]},
            ],
            "jvm": [
                {"rules": [{"action": "allow", "os": {"name": "osx"}}], "value": ["-XstartOnFirstThread"]},
                "-Djava.library.path=${natives_directory}",
                "-cp", "${classpath}",
            ],
        },
    }
    descriptor_bytes = json.dumps(descriptor).encode("utf-8")
    origin.add_json("/mc/version_manifest_v2.json", {
        "latest": {"release": GAME_VERSION, "snapshot": GAME_VERSION},
        "versions": [{
            "id": GAME_VERSION, "type": "release", "url": origin.add("/mc/1.20.1.json", descriptor_bytes),
            "time": "2023-06-12T13:25:51+00:00", "releaseTime": "2023-06-12T13:25:51+00:00",
            "sha1": sha1(descriptor_bytes), "complianceLevel": 1,
        }],
    })
    return descriptor


@pytest.fixture
def jdk_archive(origin) -> bytes:
    """A tar.gz JDK whose java answers -version, published through a fake runtime catalog."""
    script = ("#!/bin/sh\n" + JAVA_VERSION_SCRIPT + "exit 3\n").encode("utf-8")
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        info = tarfile.TarInfo("jdk-17.0.9+9/bin/java")
        info.size = len(script)
        info.mode = 0o755
        archive.addfile(info, io.BytesIO(script))
        release = b'JAVA_VERSION="17.0.9"\n'
        info = tarfile.TarInfo("jdk-17.0.9+9/release")
        info.size = len(release)
        info.mode = 0o644
        archive.addfile(info, io.BytesIO(release))
    data = buffer.getvalue()
    name = "OpenJDK17U-jdk_x64_linux_hotspot_17.0.9_9.tar.gz"
    origin.add_json(f"/adoptium/v3/assets/latest/{JAVA_MAJOR}/hotspot", [{
        "release_name": "jdk-17.0.9+9",
        "binary": {"os": "linux", "architecture": "x64", "image_type": "jdk", "package": {
            "name": name, "link": origin.add(f"/adoptium/binary/{name}", data),
            "checksum": sha256(data), "size": len(data),
        }},
    }])
    return data
