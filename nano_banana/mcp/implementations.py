"""Implementation of the nano-banana tools without MCP decoration.

``ImageService`` wires the configuration, the storage router and the memory
controller together.  Every generate/edit call follows the same shape:

1. threshold check (``check_and_maybe_collect``);
2. lazy storage initialisation, model call, persist + scrub each image;
3. drop the response and outgoing payloads;
4. ``force_aggressive_reclaim`` – in ``finally``, so it also runs on errors.
"""

from __future__ import annotations

from typing import Callable, Optional

import httpx
from google.genai import types
from loguru import logger

from nano_banana.config import ConfigManager
from nano_banana.core.buffers import (
    GenerationRequest,
    ProcessedResponse,
    load_image,
    load_reference_images,
    persist_response_parts,
    release_parts,
)
from nano_banana.core.memory import MemoryPressureController, get_memory_controller
from nano_banana.core.storage import StorageRouter
from nano_banana.errors import ConfigurationError, ImageGenerationError, NanoBananaError
from nano_banana.llm import ImageModel
from nano_banana.settings import settings

HttpClientFactory = Callable[[], httpx.AsyncClient]


def default_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.IMAGE_FETCH_TIMEOUT, follow_redirects=True)


def _describe(exc: Exception) -> str:
    return exc.message if isinstance(exc, NanoBananaError) else str(exc)


class ImageService:
    def __init__(
        self,
        config: ConfigManager,
        router: StorageRouter,
        memory: MemoryPressureController,
        *,
        http_client_factory: HttpClientFactory = default_http_client,
    ) -> None:
        self.config = config
        self.router = router
        self.memory = memory
        self._http_client_factory = http_client_factory

    def _require_model(self) -> ImageModel:
        if not self.config.is_configured or self.config.model is None:
            raise ConfigurationError("Gemini API token not configured. Use configure_gemini_token first.")
        return self.config.model

    # ------------------------------------------------------------------
    async def configure_token(self, api_key: str) -> str:
        await self.config.configure(api_key)
        return "✅ Gemini API token configured successfully! You can now use nano-banana image generation features."

    def configuration_status(self) -> str:
        return self.config.status_text()

    # ------------------------------------------------------------------
    async def generate_image(self, prompt: str) -> ProcessedResponse:
        model = self._require_model()
        await self.memory.check_and_maybe_collect()

        response = None
        try:
            await self.router.ensure_initialized()
            response = await model.generate(prompt)
            processed = await persist_response_parts(response, self.router, "generated")
            response = None

            logger.info("🎨 Image generated with nano-banana (Gemini 2.5 Flash Image)!")
            logger.info(f'Prompt: "{prompt}"')
            self._log_outcome(processed, "generate_image")
            return processed
        except Exception as exc:
            response = None
            logger.error(f"Error generating image: {exc}")
            raise ImageGenerationError(f"Failed to generate image: {_describe(exc)}") from exc
        finally:
            await self.memory.force_aggressive_reclaim()

    async def edit_image(self, request: GenerationRequest) -> ProcessedResponse:
        model = self._require_model()
        if not request.source_image:
            raise ImageGenerationError("Failed to edit image: no source image given")
        await self.memory.check_and_maybe_collect()

        response = None
        contents = None
        parts: list[types.Part] = []
        try:
            await self.router.ensure_initialized()

            async with self._http_client_factory() as http:
                parts.append(await load_image(request.source_image, http))
                parts.extend(await load_reference_images(request.reference_images, http))
            parts.append(types.Part(text=request.prompt))

            contents = [types.Content(role="user", parts=parts)]
            # scrub the instances the request holds, not the pre-validation list
            parts = list(contents[0].parts or [])
            response = await model.generate(contents)
            release_parts(parts)
            contents = None

            processed = await persist_response_parts(response, self.router, "edited")
            response = None

            logger.info("🎨 Image edited with nano-banana!")
            logger.info(f"Original: {request.source_image}")
            logger.info(f'Edit prompt: "{request.prompt}"')
            for ref in request.reference_images:
                logger.info(f"Reference image: {ref}")
            self._log_outcome(processed, "edit_image")
            return processed
        except Exception as exc:
            response = None
            contents = None
            logger.error(f"Error editing image: {exc}")
            raise ImageGenerationError(f"Failed to edit image: {_describe(exc)}") from exc
        finally:
            release_parts(parts)
            await self.memory.force_aggressive_reclaim()

    @staticmethod
    def _log_outcome(processed: ProcessedResponse, tool_name: str) -> None:
        if processed.text:
            logger.info(f"Description: {processed.text}")

        if not processed.artifacts:
            logger.warning("Note: No image was generated. The model may have returned only text.")
            logger.info("💡 Tip: Try running the command again - sometimes the first call needs to warm up the model.")
            return

        where = "☁️ Uploaded to Azure Blob Storage" if processed.artifacts[0].is_remote else "📁 Saved locally"
        for artifact in processed.artifacts:
            logger.info(f"{where}: {artifact.location} ({artifact.size_bytes} bytes)")
        logger.debug(f'Expand "Called {tool_name}" in the MCP client to see the call details')


_service: Optional[ImageService] = None


def get_image_service() -> ImageService:
    """Return the process-wide service, building it on first use."""
    global _service
    if _service is None:
        router = StorageRouter()
        _service = ImageService(ConfigManager(router), router, get_memory_controller())
    return _service


def set_image_service(service: Optional[ImageService]) -> None:
    global _service
    _service = service
