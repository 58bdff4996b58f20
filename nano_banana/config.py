from __future__ import annotations

"""API key and storage configuration.

Precedence (first present wins):

1. environment variables – including those the MCP client injects when it
   launches the server – and ``.env``;
2. the JSON record written by ``configure_gemini_token`` in the working
   directory.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional

import anyio
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

from nano_banana.core.storage import DEFAULT_CONTAINER, StorageRouter
from nano_banana.errors import InvalidParamsError
from nano_banana.llm import ClientFactory, ImageModel, create_client
from nano_banana.settings import settings


class ConfigSource(str, Enum):
    ENVIRONMENT = "environment"
    CONFIG_FILE = "config_file"
    NOT_CONFIGURED = "not_configured"


class ImageConfig(BaseModel):
    """Resolved configuration; also the on-disk JSON record."""

    model_config = ConfigDict(populate_by_name=True)

    gemini_api_key: str = Field(..., alias="geminiApiKey", min_length=1)
    azure_storage_connection_string: Optional[str] = Field(None, alias="azureStorageConnectionString")
    azure_storage_container_name: str = Field(DEFAULT_CONTAINER, alias="azureStorageContainerName")


class EnvironmentConfig(BaseSettings):
    """Snapshot of the configuration-related environment variables."""

    GEMINI_API_KEY: Optional[str] = None
    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = None
    AZURE_STORAGE_CONTAINER_NAME: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    return errors[0]["msg"] if errors else str(exc)


class ConfigManager:
    """Owns the resolved config, the Gemini model handle and its source tag."""

    def __init__(
        self,
        router: StorageRouter,
        *,
        config_path: Optional[Path] = None,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self.router = router
        self.config_path = config_path or Path.cwd() / settings.CONFIG_FILE
        self._client_factory = client_factory
        self.config: Optional[ImageConfig] = None
        self.model: Optional[ImageModel] = None
        self.source = ConfigSource.NOT_CONFIGURED

    @property
    def is_configured(self) -> bool:
        return self.config is not None and self.model is not None

    async def load(self) -> ConfigSource:
        """Resolve configuration at start-up and initialise storage."""
        env = EnvironmentConfig()
        if env.GEMINI_API_KEY:
            try:
                config = ImageConfig(
                    gemini_api_key=env.GEMINI_API_KEY,
                    azure_storage_connection_string=env.AZURE_STORAGE_CONNECTION_STRING,
                    azure_storage_container_name=env.AZURE_STORAGE_CONTAINER_NAME or DEFAULT_CONTAINER,
                )
            except ValidationError as exc:
                logger.warning(f"Ignoring invalid environment configuration: {_first_error(exc)}")
            else:
                await self._activate(config, ConfigSource.ENVIRONMENT)
                return self.source

        try:
            raw = await anyio.Path(self.config_path).read_text(encoding="utf-8")
            config = ImageConfig.model_validate(json.loads(raw))
        except FileNotFoundError:
            logger.debug(f"No config file at {self.config_path}")
        except (OSError, ValueError) as exc:
            # ValidationError and JSONDecodeError are both ValueErrors
            logger.warning(f"Ignoring unreadable config file {self.config_path}: {exc}")
        else:
            await self._activate(config, ConfigSource.CONFIG_FILE)
            return self.source

        self.source = ConfigSource.NOT_CONFIGURED
        return self.source

    async def configure(self, api_key: str) -> None:
        """Validate and store *api_key*, keeping any storage settings already known."""
        current = self.config
        try:
            config = ImageConfig(
                gemini_api_key=api_key,
                azure_storage_connection_string=current.azure_storage_connection_string if current else None,
                azure_storage_container_name=current.azure_storage_container_name if current else DEFAULT_CONTAINER,
            )
        except ValidationError as exc:
            raise InvalidParamsError(f"Invalid API key: {_first_error(exc)}") from exc

        await self._activate(config, ConfigSource.CONFIG_FILE)
        await self.save()

    async def save(self) -> None:
        if self.config is None:
            return
        payload = self.config.model_dump(by_alias=True, exclude_none=True)
        await anyio.Path(self.config_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(f"Configuration saved to {self.config_path}")

    async def _activate(self, config: ImageConfig, source: ConfigSource) -> None:
        self.model = ImageModel(config.gemini_api_key, client_factory=self._client_factory)
        self.config = config
        self.source = source
        await self.router.configure(config.azure_storage_connection_string, config.azure_storage_container_name)

    def status_text(self) -> str:
        if self.is_configured:
            text = "✅ Gemini API token is configured and ready to use"
            if self.source is ConfigSource.ENVIRONMENT:
                text += (
                    "\n📍 Source: Environment variable (GEMINI_API_KEY)"
                    "\n💡 This is the most secure configuration method."
                )
            elif self.source is ConfigSource.CONFIG_FILE:
                text += (
                    f"\n📍 Source: Local configuration file ({self.config_path.name})"
                    "\n💡 Consider using environment variables for better security."
                )
            return text + f"\n🗄️ Image storage: {self.router.describe()}"

        return (
            "❌ Gemini API token is not configured\n\n"
            "📝 Configuration options (in priority order):\n"
            "1. 🥇 MCP client environment variables (Recommended)\n"
            "2. 🥈 System environment variable: GEMINI_API_KEY\n"
            "3. 🥉 Use configure_gemini_token tool\n\n"
            "💡 For the most secure setup, add this to your MCP configuration:\n"
            '"env": { "GEMINI_API_KEY": "your-api-key-here" }'
        )
