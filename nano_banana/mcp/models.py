from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfigureTokenRequest(BaseModel):
    """Validated payload for :pyfunc:`configure_gemini_token`."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", description="Gemini API key from Google AI Studio")


class GenerateImageRequest(BaseModel):
    prompt: str = Field(..., description="Text prompt describing the new image")


class EditImageRequest(BaseModel):
    """Validated payload for :pyfunc:`edit_image`.

    ``imagePath`` and each entry of ``referenceImages`` may be a local path
    or an ``http(s)://`` URL.
    """

    model_config = ConfigDict(populate_by_name=True)

    image_path: str = Field(..., alias="imagePath", min_length=1)
    prompt: str
    reference_images: List[str] = Field(default_factory=list, alias="referenceImages")


class ImageResult(BaseModel):
    """Tool result for generate/edit: only a remote URL is ever reported."""

    model_config = ConfigDict(populate_by_name=True)

    remote_url: Optional[str] = Field(None, alias="remoteUrl")


# ---------------------------------------------------------------------------
# Internal envelope models
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    """Represents a request issued by the client to call a tool."""

    name: str = Field(..., description="Registered tool name (unique id)")
    arguments: dict = Field(default_factory=dict, description="JSON-serialisable arguments object")


class ErrorEnvelope(BaseModel):
    """Structured error payload logged for failed tool executions."""

    error: str = Field(..., description="Short error message / summary")
    code: str = Field("UNHANDLED_EXCEPTION", description="Machine-readable error code")
    tool: Optional[str] = Field(None, description="Tool involved, if any")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request: Optional[ToolCall] = Field(None, description="Original tool-call that triggered the error (if available)")
