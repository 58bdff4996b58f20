from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Server-wide configuration loaded from environment variables (.env optional)."""

    # General settings
    LOG_LEVEL: str = Field("INFO", description="Root log level for Loguru")
    LOG_DIR: str = Field("logs", description="Directory for the rotating log files")
    TRANSPORT: Literal["stdio", "sse"] = Field("stdio", description="MCP transport used by the server")
    PORT: int = Field(8000, description="HTTP port when TRANSPORT=sse")

    # Gemini
    GEMINI_MODEL: str = Field(
        "gemini-2.5-flash-image-preview",
        description="Model used for generate_image / edit_image",
    )
    IMAGE_FETCH_TIMEOUT: float = Field(30.0, description="Timeout (seconds) when downloading images by URL")

    # Local configuration record
    CONFIG_FILE: str = Field(
        ".nano-banana-config.json",
        description="File name of the JSON config record, relative to the working directory",
    )

    # Memory management
    MAX_HEAP_MB: int = Field(512, description="Heap bound used for pressure checks and relaunch", ge=16)
    MEMORY_PRESSURE_THRESHOLD: float = Field(
        0.70,
        description="Heap usage ratio above which a collection pass is triggered",
        gt=0.0,
        le=1.0,
    )
    GC_PASSES: int = Field(3, description="Collection passes after each generate/edit call", ge=1)

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
        "env_prefix": "",
    }


settings = Settings()
