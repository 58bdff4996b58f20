"""Tests for configuration precedence, persistence and status text."""

import json
from unittest.mock import MagicMock

import pytest

from nano_banana.config import ConfigManager, ConfigSource, ImageConfig
from nano_banana.errors import InvalidParamsError


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / ".nano-banana-config.json"


@pytest.fixture
def manager(router, config_path):
    return ConfigManager(router, config_path=config_path, client_factory=lambda key: MagicMock(api_key=key))


@pytest.mark.asyncio
async def test_not_configured_by_default(manager):
    assert await manager.load() is ConfigSource.NOT_CONFIGURED
    assert not manager.is_configured
    assert "not configured" in manager.status_text()


@pytest.mark.asyncio
async def test_environment_wins_over_file(manager, config_path, monkeypatch, backend_factory):
    config_path.write_text(json.dumps({"geminiApiKey": "from-file"}))
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "UseDevelopmentStorage=true")
    monkeypatch.setenv("AZURE_STORAGE_CONTAINER_NAME", "pictures")

    assert await manager.load() is ConfigSource.ENVIRONMENT
    assert manager.config.gemini_api_key == "from-env"
    assert backend_factory.created[0].container_name == "pictures"
    assert "Environment variable" in manager.status_text()
    assert "pictures" in manager.status_text()


@pytest.mark.asyncio
async def test_file_used_without_environment(manager, config_path, backend_factory):
    config_path.write_text(json.dumps({
        "geminiApiKey": "from-file",
        "azureStorageConnectionString": "UseDevelopmentStorage=true",
        "azureStorageContainerName": "saved",
    }))

    assert await manager.load() is ConfigSource.CONFIG_FILE
    assert manager.config.gemini_api_key == "from-file"
    assert backend_factory.created[0].container_name == "saved"
    assert "Local configuration file" in manager.status_text()


@pytest.mark.asyncio
async def test_invalid_file_is_ignored(manager, config_path):
    config_path.write_text("{not json")
    assert await manager.load() is ConfigSource.NOT_CONFIGURED

    config_path.write_text(json.dumps({"geminiApiKey": ""}))
    assert await manager.load() is ConfigSource.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_configure_persists_record(manager, config_path):
    await manager.configure("new-key")

    assert manager.is_configured
    assert manager.source is ConfigSource.CONFIG_FILE
    assert json.loads(config_path.read_text()) == {
        "geminiApiKey": "new-key",
        "azureStorageContainerName": "nano-banana-images",
    }


@pytest.mark.asyncio
async def test_configure_keeps_storage_settings(manager, monkeypatch, config_path):
    monkeypatch.setenv("GEMINI_API_KEY", "old")
    monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "conn")
    await manager.load()

    await manager.configure("new-key")
    record = json.loads(config_path.read_text())
    assert record["azureStorageConnectionString"] == "conn"


@pytest.mark.asyncio
async def test_configure_rejects_empty_key(manager, config_path):
    with pytest.raises(InvalidParamsError, match="Invalid API key"):
        await manager.configure("")
    assert not config_path.exists()
    assert not manager.is_configured


def test_record_aliases():
    config = ImageConfig.model_validate({"geminiApiKey": "k"})
    assert config.azure_storage_connection_string is None
    assert config.model_dump(by_alias=True, exclude_none=True) == {
        "geminiApiKey": "k",
        "azureStorageContainerName": "nano-banana-images",
    }
