from __future__ import annotations

from pydantic import ValidationError

from nano_banana.core.buffers import GenerationRequest
from nano_banana.errors import InvalidParamsError
from nano_banana.mcp.implementations import get_image_service
from nano_banana.mcp.models import (
    ConfigureTokenRequest,
    EditImageRequest,
    GenerateImageRequest,
    ImageResult,
)
from nano_banana.mcp.plugin import tool


def _validate(model, kwargs):
    try:
        return model(**kwargs)
    except ValidationError as exc:
        raise InvalidParamsError(f"Invalid arguments: {exc.errors()[0]['msg']}") from exc


configure_schema = {
    "type": "object",
    "properties": {
        "apiKey": {"type": "string", "description": "Your Gemini API key from Google AI Studio"},
    },
    "required": ["apiKey"],
}

@tool("configure_gemini_token", "Configure your Gemini API token for nano-banana image generation", configure_schema)
async def configure_gemini_token(**kwargs):
    req = _validate(ConfigureTokenRequest, kwargs)
    return await get_image_service().configure_token(req.api_key)

generate_schema = {
    "type": "object",
    "properties": {
        "prompt": {"type": "string", "description": "Text prompt describing the NEW image to create from scratch"},
    },
    "required": ["prompt"],
}

@tool(
    "generate_image",
    "Generate a NEW image from text prompt. Use this ONLY when creating a completely new image, not when modifying an existing one.",
    generate_schema,
)
async def generate_image(**kwargs):
    req = _validate(GenerateImageRequest, kwargs)
    processed = await get_image_service().generate_image(req.prompt)
    return ImageResult(remote_url=processed.remote_url).model_dump_json(by_alias=True)

edit_schema = {
    "type": "object",
    "properties": {
        "imagePath": {"type": "string", "description": "Full file path or URL of the main image to edit"},
        "prompt": {"type": "string", "description": "Text describing the modifications to make to the existing image"},
        "referenceImages": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional file paths or URLs of additional reference images (e.g. for style transfer, adding elements)",
        },
    },
    "required": ["imagePath", "prompt"],
}

@tool(
    "edit_image",
    "Edit a SPECIFIC existing image file, optionally using additional reference images. Use this when you have the exact file path of an image to modify.",
    edit_schema,
)
async def edit_image(**kwargs):
    req = _validate(EditImageRequest, kwargs)
    request = GenerationRequest(
        prompt=req.prompt,
        source_image=req.image_path,
        reference_images=tuple(req.reference_images),
    )
    processed = await get_image_service().edit_image(request)
    return ImageResult(remote_url=processed.remote_url).model_dump_json(by_alias=True)

@tool(
    "get_configuration_status",
    "Check if Gemini API token is configured",
    {"type": "object", "properties": {}, "additionalProperties": False},
)
async def get_configuration_status(**_):  # accept & ignore any extraneous args
    return get_image_service().configuration_status()
