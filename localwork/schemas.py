"""Pydantic schemas for LocalWork state and backend contracts."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

TOOL_ERROR_PREFIX = "Error:"


class LoadState(str, Enum):
    """Load state of the active model."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class SessionState(str, Enum):
    """Agent session state."""

    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    BLOCKED_NO_MODEL = "blocked_no_model"


class DownloadStatus(str, Enum):
    """Terminal status of a download."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# --- Models ---


class Model(BaseModel):
    """A downloadable language model known to the registry."""

    id: str
    display_name: str
    filename: str
    size_bytes: int = Field(default=0, ge=0)
    local_path: str | None = None
    downloaded: bool = False


class ActiveModel(BaseModel):
    """The model currently selected in the inference engine."""

    model_id: str | None = None
    load_state: LoadState = LoadState.IDLE

    @property
    def is_ready(self) -> bool:
        return self.load_state == LoadState.READY and self.model_id is not None


# --- Downloads ---


class DownloadProgress(BaseModel):
    """Progress record for the in-flight download.

    ``percent`` is None when the total size is unknown.
    """

    model_id: str
    downloaded_bytes: int = Field(default=0, ge=0)
    total_bytes: int | None = None
    percent: float | None = Field(default=None, ge=0.0, le=100.0)


class DownloadOutcome(BaseModel):
    """Terminal event of a download stream."""

    model_id: str
    status: DownloadStatus
    local_path: str | None = None
    error: str | None = None


# --- Conversation ---


class ToolCall(BaseModel):
    """A tool invocation made by the model, with its result once executed."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None

    @property
    def is_error(self) -> bool:
        return self.result is not None and self.result.startswith(TOOL_ERROR_PREFIX)


class ConversationMessage(BaseModel):
    """One entry of the conversation history."""

    role: Role
    content: str
    tool_calls: list[ToolCall] | None = None


class TurnResponse(BaseModel):
    """Backend response to one chat turn."""

    content: str
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    """Tool definition advertised to the model."""

    name: str
    description: str
    parameters: dict[str, Any]


# --- Files & permissions ---


class FolderPermission(BaseModel):
    """A user grant covering a directory subtree."""

    id: str
    path: str
    granted_at: int


class FileEntry(BaseModel):
    """Directory listing entry."""

    name: str
    path: str
    is_directory: bool
    size_bytes: int
    modified_at: int


# --- HTTP API ---


class AppInfo(BaseModel):
    """Application name and version."""

    name: str
    version: str


class ChatRequest(BaseModel):
    """Request body for a chat turn."""

    text: str = Field(..., min_length=1)


class GrantRequest(BaseModel):
    """Request body for granting a folder."""

    path: str = Field(..., min_length=1)


class DownloadJobResponse(BaseModel):
    """Current download job, if any."""

    busy: bool
    job: DownloadProgress | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    core: Literal["healthy"] = "healthy"
    active_model: ActiveModel
    download_busy: bool = False
    session_state: SessionState = SessionState.IDLE


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None
