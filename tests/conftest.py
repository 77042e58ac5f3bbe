"""
Pytest configuration and shared fixtures.

Provides an in-memory container runtime, a scripted WebSocket, config
fixtures rooted in tmp_path, and an httpx transport for the sandbox
control API.
"""

import asyncio
import json
from typing import Any

import httpx
import pytest

from superagent.core.config import clear_cache
from superagent.core.config.models import (
    ApiKeysConfig,
    AppConfig,
    ContainerConfig,
    SuperagentConfig,
)
from superagent.core.exceptions import RuntimeCommandError
from superagent.core.runtime import ContainerInfo, ContainerStats, LaunchSpec, clear_runtime_availability_cache

# ==============================================================================
# Fakes
# ==============================================================================


class FakeRuntime:
    """
    In-memory RuntimeAdapter.

    ``containers`` maps running container names to their host port.
    """

    name = "fake"
    command = "fake"

    def __init__(self) -> None:
        self.containers: dict[str, int | None] = {}
        self.images: set[str] = set()
        self.used_ports: set[int] = set()
        self.stats: ContainerStats | None = None
        self.build_delay = 0.0
        self.fail_build = False
        self.fail_run = False
        self.build_calls: list[str] = []
        self.run_calls: list[LaunchSpec] = []
        self.removed: list[str] = []
        self.stopped: list[str] = []

    async def is_available(self) -> bool:
        return True

    async def is_running(self) -> bool:
        return True

    async def inspect(self, container_name: str) -> ContainerInfo:
        if container_name not in self.containers:
            return ContainerInfo()
        return ContainerInfo(running=True, host_port=self.containers[container_name])

    async def list_used_host_ports(self) -> set[int]:
        return self.used_ports | {port for port in self.containers.values() if port}

    async def image_exists(self, image: str) -> bool:
        return image in self.images

    async def build_image(self, image: str, context: str) -> None:
        self.build_calls.append(image)
        await asyncio.sleep(self.build_delay)
        if self.fail_build:
            raise RuntimeCommandError("Image build failed", ["fake", "build"], exit_code=1)
        self.images.add(image)

    async def run_container(self, spec: LaunchSpec) -> str:
        self.run_calls.append(spec)
        if self.fail_run:
            raise RuntimeCommandError(
                f"Failed to launch container {spec.name}",
                ["fake", "run"],
                exit_code=125,
                stderr="port is already allocated",
            )
        self.containers[spec.name] = spec.host_port
        return "0123456789abcdef"

    async def remove_container(self, container_name: str) -> None:
        self.removed.append(container_name)
        self.containers.pop(container_name, None)

    async def stop_container(self, container_name: str) -> None:
        self.stopped.append(container_name)
        self.containers.pop(container_name, None)

    def stop_container_sync(self, container_name: str, stop_timeout: float, remove_timeout: float) -> None:
        self.stopped.append(container_name)
        self.containers.pop(container_name, None)

    async def get_stats(self, container_name: str) -> ContainerStats | None:
        return self.stats


class FakeWebSocket:
    """Scripted stand-in for a websockets ClientConnection."""

    def __init__(self, url: str = "") -> None:
        self.url = url
        self.closed = False
        self._queue: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    def push(self, frame: Any) -> None:
        """Queue a frame; dicts are JSON-encoded."""
        self._queue.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def end(self) -> None:
        """Simulate the server closing the connection."""
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)


class FakeConnector:
    """Stream connector recording every WebSocket it opens."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        websocket = FakeWebSocket(url)
        self.sockets.append(websocket)
        return websocket

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


class ControlApi:
    """Minimal sandbox control API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.healthy = True
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(200 if self.healthy else 503, json={"status": "ok"})
        if request.method == "POST" and request.url.path == "/sessions":
            return httpx.Response(201, json={"id": "sess-1", "createdAt": "2026-01-01T00:00:00Z"})
        if request.method == "POST" and request.url.path.endswith("/messages"):
            return httpx.Response(202)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def reset_caches():
    """Drop module-level caches between tests."""
    clear_cache()
    clear_runtime_availability_cache()
    yield
    clear_cache()
    clear_runtime_availability_cache()


@pytest.fixture
def fake_runtime():
    """Provide an in-memory runtime adapter."""
    return FakeRuntime()


@pytest.fixture
def connector():
    """Provide a recording stream connector."""
    return FakeConnector()


@pytest.fixture
def control_api():
    """Provide a scripted sandbox control API."""
    return ControlApi()


@pytest.fixture
def config(tmp_path):
    """
    Provide a config rooted in tmp_path with fast health polling.

    Creates the image build context so builds are allowed.
    """
    build_context = tmp_path / "agent-container"
    build_context.mkdir()
    return SuperagentConfig(
        data_dir=tmp_path / "data",
        container=ContainerConfig(
            build_context=str(build_context),
            base_port=47100,
            port_scan_limit=50,
            health_timeout=0.2,
            health_poll_interval=0.01,
        ),
        app=AppConfig(viewer_queue_size=100),
        api_keys=ApiKeysConfig(anthropic_api_key="sk-test"),
    )
