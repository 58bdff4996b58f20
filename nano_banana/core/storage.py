"""Persist generated images to Azure Blob Storage with a local fallback.

The router owns one lazily created blob container handle shared by every
tool call.  Remote failures never escape this module: initialisation and
upload errors are logged and the image is written to the local images
directory instead.
"""

from __future__ import annotations

import asyncio
import os
import platform
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Literal, Optional, Protocol, Tuple

import anyio
from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient
from loguru import logger

DEFAULT_CONTAINER = "nano-banana-images"
LOCAL_DIR_NAME = "nano-banana-images"
LOCAL_CWD_DIR_NAME = "generated_imgs"
SYSTEM_PREFIXES = ("/usr/", "/opt/", "/var/")

_ID_ALPHABET = string.ascii_lowercase + string.digits

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


@dataclass(frozen=True)
class PersistedArtifact:
    location: str
    size_bytes: int
    backend: Literal["remote", "local"]

    @property
    def is_remote(self) -> bool:
        return self.backend == "remote"


class BlobBackend(Protocol):
    container_name: str

    async def ensure_container(self) -> None: ...

    async def upload(self, name: str, data: bytes, content_type: str) -> str: ...

    async def close(self) -> None: ...


class AzureBlobBackend:
    """Thin async wrapper around one Azure blob container."""

    def __init__(self, connection_string: str, container_name: str) -> None:
        self.container_name = container_name
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = self._service.get_container_client(container_name)

    async def ensure_container(self) -> None:
        """Create the container with public blob read access if it does not exist."""
        if await self._container.exists():
            return
        try:
            await self._container.create_container(public_access="blob")
        except ResourceExistsError:
            pass

    async def upload(self, name: str, data: bytes, content_type: str) -> str:
        blob = self._container.get_blob_client(name)
        await blob.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )
        return blob.url

    async def close(self) -> None:
        await self._service.close()


BackendFactory = Callable[[str, str], BlobBackend]


def images_directory(
    *,
    system: Optional[str] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return the local directory used when remote storage is unavailable.

    Windows: ``~/Documents/nano-banana-images``.  Elsewhere the working
    directory's ``generated_imgs`` folder, unless the server runs from a
    system location (``/usr``, ``/opt``, ``/var``), in which case
    ``~/nano-banana-images``.
    """
    system = system or platform.system()
    home = home or Path.home()
    if system == "Windows":
        return home / "Documents" / LOCAL_DIR_NAME

    cwd = cwd or Path.cwd()
    if str(cwd).startswith(SYSTEM_PREFIXES):
        return home / LOCAL_DIR_NAME
    return cwd / LOCAL_CWD_DIR_NAME


def artifact_name(prefix: str, mime_type: str = "image/png", *, now: Optional[datetime] = None) -> str:
    """``<prefix>-<UTC timestamp>-<random id><ext>``, e.g. ``generated-2025-01-01T10-00-00-000Z-a1b2c3.png``."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    random_id = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}-{timestamp}-{random_id}{_EXTENSIONS.get(mime_type, '.png')}"


def environment_storage_config() -> Optional[Tuple[str, str]]:
    """Read Azure settings from the live process environment."""
    connection_string = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")
    if not connection_string:
        return None
    container = os.environ.get("AZURE_STORAGE_CONTAINER_NAME") or DEFAULT_CONTAINER
    return connection_string, container


class StorageRouter:
    """Decide per image between remote blob storage and the local directory."""

    def __init__(
        self,
        *,
        backend_factory: BackendFactory = AzureBlobBackend,
        directory_resolver: Callable[[], Path] = images_directory,
    ) -> None:
        self._backend_factory = backend_factory
        self._directory_resolver = directory_resolver
        self._backend: Optional[BlobBackend] = None
        self._active: Optional[Tuple[str, str]] = None
        self._attempted: set[Tuple[str, str]] = set()
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> Optional[BlobBackend]:
        return self._backend

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------
    async def configure(self, connection_string: Optional[str], container_name: str = DEFAULT_CONTAINER) -> bool:
        """Initialise the backend from loaded configuration.

        Returns *True* when a working backend is in place afterwards.
        """
        if not connection_string:
            return self._backend is not None
        async with self._lock:
            if self._backend is not None and self._active == (connection_string, container_name):
                return True
            return await self._initialize(connection_string, container_name, source="configuration")

    async def ensure_initialized(self) -> bool:
        """Pick up Azure settings that appeared in the environment after start-up.

        Each distinct environment configuration is tried once per process.
        """
        if self._backend is not None:
            return True
        env = environment_storage_config()
        if env is None:
            return False
        # concurrent callers wait here for the first attempt to finish
        async with self._lock:
            if self._backend is not None:
                return True
            if env in self._attempted:
                return False
            return await self._initialize(*env, source="environment")

    async def _initialize(self, connection_string: str, container_name: str, *, source: str) -> bool:
        # caller holds self._lock
        self._attempted.add((connection_string, container_name))
        backend: Optional[BlobBackend] = None
        try:
            backend = self._backend_factory(connection_string, container_name)
            await backend.ensure_container()
        except Exception as exc:
            logger.warning(f"Failed to initialize Azure Storage from {source}: {exc}")
            if backend is not None:
                await self._close_quietly(backend)
            return self._backend is not None

        previous, self._backend = self._backend, backend
        self._active = (connection_string, container_name)
        if previous is not None:
            await self._close_quietly(previous)
        logger.info(f"✅ Azure Blob Storage initialized from {source}: container '{container_name}'")
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    async def upload(self, data: bytes, name: str, mime_type: str) -> Optional[str]:
        """Upload to blob storage; return the URL or *None* if unavailable or failed."""
        if self._backend is None:
            logger.debug("🔍 Azure Blob Storage not configured, using local storage")
            return None
        try:
            logger.info(f"🚀 Uploading image to Azure Blob Storage: {name}")
            url = await self._backend.upload(name, data, mime_type)
        except Exception as exc:
            logger.error(f"❌ Failed to upload to Azure Blob Storage: {exc}")
            return None
        logger.info(f"✅ Successfully uploaded to Azure: {url}")
        return url

    async def write_local(self, data: bytes, name: str) -> Path:
        directory = self._directory_resolver()
        path = directory / name
        await anyio.Path(directory).mkdir(mode=0o755, parents=True, exist_ok=True)
        await anyio.Path(path).write_bytes(data)
        logger.info(f"📁 Image saved locally: {path}")
        return path

    async def persist(self, data: bytes, name: str, mime_type: str = "image/png") -> PersistedArtifact:
        """Store *data* remotely if possible, otherwise locally.

        Local I/O errors propagate to the caller.
        """
        url = await self.upload(data, name, mime_type)
        if url:
            return PersistedArtifact(location=url, size_bytes=len(data), backend="remote")
        path = await self.write_local(data, name)
        return PersistedArtifact(location=str(path), size_bytes=len(data), backend="local")

    # ------------------------------------------------------------------
    def describe(self) -> str:
        if self._backend is not None:
            return f"Azure Blob Storage (container '{self._backend.container_name}')"
        return f"Local directory ({self._directory_resolver()})"

    async def close(self) -> None:
        async with self._lock:
            backend, self._backend = self._backend, None
            self._active = None
        if backend is not None:
            await self._close_quietly(backend)

    @staticmethod
    async def _close_quietly(backend: BlobBackend) -> None:
        try:
            await backend.close()
        except Exception as exc:
            logger.debug(f"Ignoring error while closing blob backend: {exc}")
