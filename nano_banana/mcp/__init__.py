"""nano-banana MCP Module - Model Context Protocol server components."""

from .implementations import ImageService, get_image_service
from .server import create_mcp_server, run_server

__all__ = ["ImageService", "get_image_service", "create_mcp_server", "run_server"]
