"""Main MCP server for nano-banana."""

import asyncio
from typing import Any, Dict

import mcp.types as types
from mcp.server import Server
import mcp.server.stdio

from loguru import logger

from nano_banana import __version__
from nano_banana.core.memory import apply_launch_options, forced_gc_available
from nano_banana.errors import NanoBananaError, ToolNotFoundError
from nano_banana.logging import setup_logger
from nano_banana.settings import settings

from .implementations import get_image_service
from .models import ErrorEnvelope, ToolCall
from .plugin import discover

SERVER_NAME = "nano-banana-mcp"


async def call_tool(registry: Dict[str, Dict[str, Any]], name: str, arguments: dict | None) -> str:
    """Dispatch one tool call; raise a ``McpError`` on failure."""
    if arguments is None:
        arguments = {}

    logger.info(f"🔧 [MCP SERVER] Tool called: {name} with arguments: {sorted(arguments)}")

    try:
        if name not in registry:
            raise ToolNotFoundError(f"Unknown tool: {name}")

        # Drop keys not declared in the JSON schema
        schema_props = registry[name]["inputSchema"].get("properties", {})
        arguments = {k: v for k, v in arguments.items() if k in schema_props}

        impl_fn = registry[name]["fn"]
        return await impl_fn(**arguments)

    except NanoBananaError as e:
        envelope = ErrorEnvelope(error=e.message, code=e.code, tool=name, request=ToolCall(name=name, arguments={}))
        logger.error(f"💥 [MCP SERVER] Error handling tool {name}: {envelope.model_dump_json()}")
        raise e.to_mcp_error() from e


def create_mcp_server() -> Server:
    """Create and configure the MCP server with all tools."""

    server = Server(SERVER_NAME, version=__version__)
    registry = discover()

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        """List available tools."""
        return [
            types.Tool(name=name, description=meta["description"], inputSchema=meta["inputSchema"])
            for name, meta in registry.items()
        ]

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict | None) -> list[types.TextContent]:
        """Handle tool calls."""
        text = await call_tool(registry, name, arguments)
        return [types.TextContent(type="text", text=text)]

    return server


async def _serve_stdio(server: Server) -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def _serve_sse(server: Server) -> None:
    import uvicorn
    from contextlib import asynccontextmanager
    from starlette.applications import Starlette
    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.routing import Mount, Route
    from mcp.server.sse import SseServerTransport

    sse_transport = SseServerTransport("/mcp/messages/")

    async def sse_endpoint(request: Request):
        async with sse_transport.connect_sse(request.scope, request.receive, request._send) as streams:
            await server.run(streams[0], streams[1], server.create_initialization_options())
        return Response(status_code=204)

    @asynccontextmanager
    async def lifespan(_app):
        # storage clients must live on uvicorn's event loop
        await _startup()
        try:
            yield
        finally:
            await _shutdown()

    #    GET /mcp/sse - The client connects here to start the event stream.
    #    POST /mcp/messages/?session_id=... - The client sends messages here.
    app = Starlette(
        routes=[
            Route("/mcp/sse", endpoint=sse_endpoint, methods=["GET"]),
            Mount("/mcp/messages/", app=sse_transport.handle_post_message),
        ],
        lifespan=lifespan,
    )

    logger.info(f"📡 [MCP SERVER] Starting HTTP server on port {settings.PORT}...")
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


async def _startup() -> None:
    service = get_image_service()
    source = await service.config.load()
    logger.info(f"Configuration source: {source.value}")


async def _shutdown() -> None:
    await get_image_service().router.close()


async def _run_stdio() -> None:
    await _startup()
    try:
        await _serve_stdio(create_mcp_server())
    finally:
        await _shutdown()


def run_server() -> None:
    """Run the MCP server on the configured transport."""
    setup_logger()
    apply_launch_options()
    logger.info(
        f"🚀 [MCP SERVER] Starting {SERVER_NAME} {__version__} "
        f"(transport: {settings.TRANSPORT}, forced GC: {forced_gc_available()})"
    )

    if settings.TRANSPORT == "sse":
        _serve_sse(create_mcp_server())
        return

    asyncio.run(_run_stdio())
