"""Local HTTP API exposing the core to the desktop UI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from localwork import __version__
from localwork.config import Settings
from localwork.core import LocalWorkCore
from localwork.errors import LocalWorkError
from localwork.schemas import (
    ActiveModel,
    AppInfo,
    ChatRequest,
    ConversationMessage,
    DownloadJobResponse,
    ErrorResponse,
    FolderPermission,
    GrantRequest,
    HealthResponse,
    Model,
    ToolDefinition,
)
from localwork.tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def create_app(core: LocalWorkCore) -> FastAPI:
    """Build the HTTP API around an existing core."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await core.aclose()

    app = FastAPI(
        title="LocalWork",
        description="Local API for model management, chat and folder permissions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.core = core

    # --- Status ---

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            active_model=core.models.active,
            download_busy=core.downloads.is_busy,
            session_state=core.session.state,
        )

    @app.get("/info", response_model=AppInfo)
    async def info() -> AppInfo:
        return await core.backend.get_app_info()

    # --- Models ---

    @app.get("/models", response_model=list[Model])
    async def list_models() -> list[Model]:
        return await core.registry.list_models()

    @app.get("/models/active", response_model=ActiveModel)
    async def active_model() -> ActiveModel:
        return core.models.active

    @app.post("/models/{model_id}/download")
    async def download(model_id: str) -> StreamingResponse:
        """Start (or join) a download and stream its events as NDJSON."""
        if not core.registry.models:
            await core.registry.list_models()
        stream = await core.downloads.start_download(model_id)

        async def events() -> AsyncIterator[str]:
            async for event in stream:
                yield event.model_dump_json() + "\n"

        return StreamingResponse(events(), media_type="application/x-ndjson")

    @app.get("/downloads/current", response_model=DownloadJobResponse)
    async def current_download() -> DownloadJobResponse:
        return DownloadJobResponse(busy=core.downloads.is_busy, job=core.downloads.active_job)

    @app.delete("/downloads/current", status_code=204)
    async def cancel_download() -> None:
        if not await core.downloads.cancel():
            raise HTTPException(status_code=404, detail="No download in progress")

    @app.post("/models/{model_id}/load", response_model=ActiveModel)
    async def load_model(model_id: str) -> ActiveModel:
        if not core.registry.models:
            await core.registry.list_models()
        return await core.models.load_model(model_id)

    # --- Chat ---

    @app.post("/chat", response_model=ConversationMessage)
    async def chat(request: ChatRequest) -> ConversationMessage:
        try:
            return await core.session.send(request.text)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/chat/history", response_model=list[ConversationMessage])
    async def chat_history() -> list[ConversationMessage]:
        return list(core.session.history)

    # --- Folders ---

    @app.get("/folders", response_model=list[FolderPermission])
    async def list_folders() -> list[FolderPermission]:
        return await core.permissions.list()

    @app.post("/folders", response_model=FolderPermission, status_code=201)
    async def grant_folder(request: GrantRequest) -> FolderPermission:
        return await core.permissions.grant(request.path)

    @app.delete("/folders/{permission_id}", status_code=204)
    async def revoke_folder(permission_id: str) -> None:
        await core.permissions.revoke(permission_id)

    @app.get("/tools", response_model=list[ToolDefinition])
    async def tools() -> list[ToolDefinition]:
        return TOOL_DEFINITIONS

    # --- Errors ---

    @app.exception_handler(LocalWorkError)
    async def localwork_exception_handler(request: Request, exc: LocalWorkError) -> JSONResponse:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(detail=str(exc), error_code=exc.error_code).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=str(exc), error_code="INTERNAL_ERROR").model_dump(),
        )

    return app


def create_default_app() -> FastAPI:
    """App factory for uvicorn, configured from the environment."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    return create_app(LocalWorkCore.from_settings(Settings.from_env()))
