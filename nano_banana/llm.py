from __future__ import annotations

from typing import Any, Callable

from google import genai
from loguru import logger

from nano_banana.settings import settings

ClientFactory = Callable[[str], Any]


def create_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


class ImageModel:
    """Gemini image model bound to one API key."""

    def __init__(self, api_key: str, *, model: str | None = None, client_factory: ClientFactory = create_client):
        self.model = model or settings.GEMINI_MODEL
        self._client = client_factory(api_key)
        logger.info(f"Loaded image model: {self.model}")

    async def generate(self, contents: Any) -> Any:
        """Call ``generate_content`` and return the raw SDK response."""
        return await self._client.aio.models.generate_content(model=self.model, contents=contents)
