"""End-to-end tests of the MCP tool surface with fake Gemini and blob clients."""

import json

import httpx
import pytest
from google.genai import types
from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND

from nano_banana.mcp.plugin import discover
from nano_banana.mcp.server import call_tool, create_mcp_server
from tests.conftest import SAMPLE_PNG, fake_client, image_response, png_part


@pytest.fixture
def registry():
    return discover()


def test_registry_exposes_four_tools(registry):
    assert set(registry) == {
        "configure_gemini_token",
        "generate_image",
        "edit_image",
        "get_configuration_status",
    }
    assert registry["edit_image"]["inputSchema"]["required"] == ["imagePath", "prompt"]


def test_create_mcp_server():
    server = create_mcp_server()
    assert server.name == "nano-banana-mcp"


@pytest.mark.asyncio
async def test_generate_uploads_to_remote(registry, make_service, router, backend_factory, images_dir, controller):
    client = fake_client(image_response(png_part()))
    service = make_service(client)
    await service.config.configure("key")
    await router.configure("UseDevelopmentStorage=true", "images")

    text = await call_tool(registry, "generate_image", {"prompt": "a red circle"})

    url = json.loads(text)["remoteUrl"]
    assert url.startswith("https://account.blob.core.windows.net/images/generated-")
    assert url.endswith(".png")
    assert not images_dir.exists()
    client.aio.models.generate_content.assert_awaited_once()
    assert client.aio.models.generate_content.call_args.kwargs["contents"] == "a red circle"
    assert controller.events[-4:] == ["reclaim", "collect", "collect", "collect"]


@pytest.mark.asyncio
async def test_generate_without_remote_saves_locally(registry, make_service, images_dir):
    service = make_service(fake_client(image_response(png_part())))
    await service.config.configure("key")

    text = await call_tool(registry, "generate_image", {"prompt": "a red circle"})

    assert json.loads(text) == {"remoteUrl": None}
    saved = list(images_dir.iterdir())
    assert len(saved) == 1
    assert saved[0].name.startswith("generated-")
    assert saved[0].read_bytes() == SAMPLE_PNG


@pytest.mark.asyncio
async def test_generate_requires_configuration(registry, make_service):
    make_service(fake_client())
    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "generate_image", {"prompt": "x"})
    assert exc_info.value.error.code == INVALID_REQUEST
    assert "configure_gemini_token" in exc_info.value.error.message


@pytest.mark.asyncio
async def test_model_error_still_reclaims(registry, make_service, controller):
    service = make_service(fake_client(error=RuntimeError("quota exceeded")))
    await service.config.configure("key")

    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "generate_image", {"prompt": "x"})

    assert exc_info.value.error.code == INTERNAL_ERROR
    assert "Failed to generate image: quota exceeded" in exc_info.value.error.message
    assert "reclaim" in controller.events


@pytest.mark.asyncio
async def test_edit_skips_unreachable_reference(registry, make_service):
    main_url = "https://account.blob.core.windows.net/images/main.png"

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == main_url:
            return httpx.Response(200, content=SAMPLE_PNG, headers={"content-type": "image/png"})
        return httpx.Response(404)

    client = fake_client(image_response(png_part()))
    service = make_service(client, http_client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await service.config.configure("key")

    text = await call_tool(registry, "edit_image", {
        "imagePath": main_url,
        "prompt": "make it blue",
        "referenceImages": ["https://example.com/missing.png"],
    })

    assert json.loads(text) == {"remoteUrl": None}
    contents = client.aio.models.generate_content.call_args.kwargs["contents"]
    parts = contents[0].parts
    # main image + prompt; the missing reference is dropped
    assert len(parts) == 2
    assert parts[1].text == "make it blue"
    # outgoing payload released after the call
    assert parts[0].inline_data.data == b""


@pytest.mark.asyncio
async def test_edit_local_image_with_references(registry, make_service, tmp_path):
    main = tmp_path / "main.jpg"
    main.write_bytes(b"main")
    ref = tmp_path / "style.webp"
    ref.write_bytes(b"ref")

    client = fake_client(image_response(types.Part(text="done"), png_part()))
    service = make_service(client)
    await service.config.configure("key")

    await call_tool(registry, "edit_image", {"imagePath": str(main), "prompt": "p", "referenceImages": [str(ref)]})

    parts = client.aio.models.generate_content.call_args.kwargs["contents"][0].parts
    assert [p.inline_data.mime_type for p in parts[:2]] == ["image/jpeg", "image/webp"]
    assert (tmp_path / "generated_imgs").exists()
    assert next((tmp_path / "generated_imgs").iterdir()).name.startswith("edited-")


@pytest.mark.asyncio
async def test_edit_missing_main_image_is_fatal(registry, make_service, tmp_path, controller):
    service = make_service(fake_client(image_response(png_part())))
    await service.config.configure("key")

    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "edit_image", {"imagePath": str(tmp_path / "missing.png"), "prompt": "p"})

    assert exc_info.value.error.code == INTERNAL_ERROR
    assert exc_info.value.error.message.startswith("INTERNAL_ERROR: Failed to edit image:")
    assert "reclaim" in controller.events


@pytest.mark.asyncio
async def test_configure_tool(registry, make_service, tmp_path):
    make_service(fake_client())
    text = await call_tool(registry, "configure_gemini_token", {"apiKey": "abc"})
    assert "configured successfully" in text
    assert json.loads((tmp_path / ".nano-banana-config.json").read_text())["geminiApiKey"] == "abc"

    status = await call_tool(registry, "get_configuration_status", {"unexpected": 1})
    assert status.startswith("✅")


@pytest.mark.asyncio
async def test_configure_tool_rejects_empty_key(registry, make_service):
    make_service(fake_client())
    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "configure_gemini_token", {"apiKey": ""})
    assert exc_info.value.error.code == INVALID_PARAMS


@pytest.mark.asyncio
async def test_unknown_tool(registry, make_service):
    make_service(fake_client())
    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "draw", {})
    assert exc_info.value.error.code == METHOD_NOT_FOUND


@pytest.mark.asyncio
async def test_edit_rejects_empty_image_path(registry, make_service, controller):
    client = fake_client(image_response(png_part()))
    service = make_service(client)
    await service.config.configure("key")

    with pytest.raises(McpError) as exc_info:
        await call_tool(registry, "edit_image", {"imagePath": "", "prompt": "p"})

    assert exc_info.value.error.code == INVALID_PARAMS
    client.aio.models.generate_content.assert_not_awaited()
