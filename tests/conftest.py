"""Shared fixtures: fake blob backend, fake Gemini client, isolated cwd/env."""

import base64
from pathlib import Path
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from nano_banana.config import ConfigManager
from nano_banana.core.memory import MemoryPressureController, MemorySnapshot
from nano_banana.core.storage import StorageRouter
from nano_banana.mcp.implementations import ImageService, set_image_service

# A small 1x1 PNG image (black pixel)
SAMPLE_IMAGE_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8/w8AAn8B9pQn2wAAAABJRU5ErkJggg=="
)
SAMPLE_PNG = base64.b64decode(SAMPLE_IMAGE_BASE64)

ENV_VARS = (
    "GEMINI_API_KEY",
    "AZURE_STORAGE_CONNECTION_STRING",
    "AZURE_STORAGE_CONTAINER_NAME",
    "MAX_HEAP_MB",
)


class FakeBackend:
    """In-memory stand-in for :class:`AzureBlobBackend`."""

    def __init__(self, connection_string: str = "UseDevelopmentStorage=true", container_name: str = "nano-banana-images",
                 *, fail_init: bool = False, fail_upload: bool = False) -> None:
        self.connection_string = connection_string
        self.container_name = container_name
        self.fail_init = fail_init
        self.fail_upload = fail_upload
        self.uploads: List[Tuple[str, bytes, str]] = []
        self.closed = False

    async def ensure_container(self) -> None:
        if self.fail_init:
            raise ConnectionError("container check failed")

    async def upload(self, name: str, data: bytes, content_type: str) -> str:
        if self.fail_upload:
            raise ConnectionError("upload refused")
        self.uploads.append((name, data, content_type))
        return f"https://account.blob.core.windows.net/{self.container_name}/{name}"

    async def close(self) -> None:
        self.closed = True


class BackendFactory:
    """Records every backend it builds."""

    def __init__(self, **backend_kwargs) -> None:
        self.backend_kwargs = backend_kwargs
        self.created: List[FakeBackend] = []

    def __call__(self, connection_string: str, container_name: str) -> FakeBackend:
        backend = FakeBackend(connection_string, container_name, **self.backend_kwargs)
        self.created.append(backend)
        return backend


def image_response(*parts: types.Part) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=list(parts)))]
    )


def png_part(data: bytes = SAMPLE_PNG) -> types.Part:
    return types.Part(inline_data=types.Blob(data=data, mime_type="image/png"))


def fake_client(response: Optional[types.GenerateContentResponse] = None, error: Optional[Exception] = None) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return client


class RecordingController(MemoryPressureController):
    """Memory controller with forced GC available and a recorded call log."""

    def __init__(self, usage: float = 0.1) -> None:
        self.events: List[str] = []
        super().__init__(
            threshold=0.70,
            passes=3,
            collect=self._collect_pass,
            capability=lambda: True,
            sampler=lambda: MemorySnapshot(int(usage * 1000), 1000, 2000),
        )

    def _collect_pass(self) -> int:
        self.events.append("collect")
        return 0

    async def force_aggressive_reclaim(self):
        self.events.append("reclaim")
        return await super().force_aggressive_reclaim()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every test from an empty working directory with a clean environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    set_image_service(None)


@pytest.fixture
def images_dir(tmp_path) -> Path:
    return tmp_path / "generated_imgs"


@pytest.fixture
def backend_factory() -> BackendFactory:
    return BackendFactory()


@pytest.fixture
def router(backend_factory, images_dir) -> StorageRouter:
    return StorageRouter(backend_factory=backend_factory, directory_resolver=lambda: images_dir)


@pytest.fixture
def controller() -> RecordingController:
    return RecordingController()


@pytest.fixture
def make_service(router, controller, tmp_path):
    """Build an ImageService whose Gemini client is *client*."""

    def _make(client: MagicMock, http_client_factory=None) -> ImageService:
        config = ConfigManager(router, config_path=tmp_path / ".nano-banana-config.json", client_factory=lambda _key: client)
        kwargs = {"http_client_factory": http_client_factory} if http_client_factory else {}
        service = ImageService(config, router, controller, **kwargs)
        set_image_service(service)
        return service

    return _make
