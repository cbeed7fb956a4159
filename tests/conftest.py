"""Pytest configuration and fixtures for LocalWork tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence

import pytest

from localwork.backend import ProgressCallback
from localwork.core import LocalWorkCore
from localwork.errors import BackendError
from localwork.permissions import PermissionStore
from localwork.schemas import (
    AppInfo,
    ConversationMessage,
    DownloadProgress,
    FolderPermission,
    Model,
    TurnResponse,
)
from localwork.tools import ToolExecutionFacade, extract_text_content, parse_tool_calls


class FakeBackend:
    """Scripted stand-in for the inference engine.

    Chat replies are raw model outputs; tool calls in them are executed against
    a real PermissionStore-scoped facade, the way a backend tool loop would.
    """

    def __init__(self, models: list[Model] | None = None):
        self.models = models or []
        self.store = PermissionStore()
        self.facade = ToolExecutionFacade(self.store)

        self.list_error: Exception | None = None

        self.progress_script: list[DownloadProgress] = []
        self.download_gate: asyncio.Event | None = None
        self.download_error: Exception | None = None
        self.download_calls: list[str] = []

        self.load_gate: asyncio.Event | None = None
        self.load_errors: dict[str, Exception] = {}
        self.load_calls: list[str] = []

        self.replies: list[str | Exception] = []
        self.turns: list[list[ConversationMessage]] = []

    async def get_app_info(self) -> AppInfo:
        return AppInfo(name="LocalWork", version="9.9.9")

    async def list_models(self) -> list[Model]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    async def download_model(
        self, model_id: str, filename: str, on_progress: ProgressCallback
    ) -> str:
        self.download_calls.append(model_id)
        for progress in self.progress_script:
            on_progress(progress)
            await asyncio.sleep(0)
        if self.download_gate is not None:
            await self.download_gate.wait()
        if self.download_error is not None:
            raise self.download_error
        return f"/data/models/{filename}"

    async def load_model(self, local_path: str) -> None:
        self.load_calls.append(local_path)
        if self.load_gate is not None:
            await self.load_gate.wait()
        if local_path in self.load_errors:
            raise self.load_errors[local_path]

    async def send_turn(self, history: Sequence[ConversationMessage]) -> TurnResponse:
        self.turns.append(list(history))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        calls = [self.facade.execute(call) for call in parse_tool_calls(reply)]
        return TurnResponse(content=extract_text_content(reply), tool_calls=calls)

    async def grant_folder(self, path: str) -> FolderPermission:
        return self.store.grant(path)

    async def revoke_folder(self, permission_id: str) -> None:
        self.store.revoke(permission_id)

    async def list_folders(self) -> list[FolderPermission]:
        return self.store.list()


@pytest.fixture
def catalog() -> list[Model]:
    return [
        Model(id="m1", display_name="Model One", filename="m1.gguf", size_bytes=1000),
        Model(id="m2", display_name="Model Two", filename="m2.gguf", size_bytes=2000),
        Model(
            id="m3",
            display_name="Model Three",
            filename="m3.gguf",
            size_bytes=3000,
            downloaded=True,
            local_path="/data/models/m3.gguf",
        ),
    ]


@pytest.fixture
def backend(catalog: list[Model]) -> FakeBackend:
    return FakeBackend(models=catalog)


@pytest.fixture
def core(backend: FakeBackend) -> LocalWorkCore:
    return LocalWorkCore(backend)


@pytest.fixture
def unreachable() -> BackendError:
    return BackendError("Backend unavailable: connection refused")


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """A granted-to-be folder with one text file, next to an ungranted one."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("alpha\n")
    other = tmp_path / "other"
    other.mkdir()
    (other / "b.txt").write_text("bravo\n")
    return docs
