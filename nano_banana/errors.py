from __future__ import annotations

"""Centralised error types for nano-banana.

Each custom error carries the JSON-RPC error code the MCP layer reports and
is JSON-serialisable via ``to_dict`` so tool results expose machine-readable
diagnostics instead of free-form strings.
"""

from typing import Any, Dict, Optional

from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
)


class NanoBananaError(Exception):
    """Base class for all structured nano-banana exceptions."""

    code: str = "NANO_BANANA_ERROR"
    rpc_code: int = INTERNAL_ERROR
    status: str = "error"

    def __init__(self, message: str, *, data: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401 – simple init
        super().__init__(message)
        self.message = message
        self.data = data or {}

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – utility
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }

    def to_mcp_error(self) -> McpError:
        """Wrap the error so the MCP SDK reports it as a typed failure."""
        return McpError(ErrorData(code=self.rpc_code, message=str(self), data=self.to_dict()))

    def __str__(self) -> str:  # noqa: D401 – friendly repr
        return f"{self.code}: {self.message}"


class InvalidParamsError(NanoBananaError):
    code = "INVALID_PARAMS"
    rpc_code = INVALID_PARAMS


class ConfigurationError(NanoBananaError):
    code = "NOT_CONFIGURED"
    rpc_code = INVALID_REQUEST


class ToolNotFoundError(NanoBananaError):
    code = "METHOD_NOT_FOUND"
    rpc_code = METHOD_NOT_FOUND


class ImageLoadError(NanoBananaError):
    code = "IMAGE_LOAD_ERROR"


class ImageGenerationError(NanoBananaError):
    code = "INTERNAL_ERROR"
