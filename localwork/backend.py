"""Boundary to the backend inference engine.

The core never talks to the engine directly; every component receives an object
satisfying :class:`Backend`. :class:`HttpBackend` is the production
implementation, speaking JSON over HTTP with an NDJSON stream for download
progress.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Protocol, Sequence

import httpx
from pydantic import ValidationError

from localwork.config import (
    DEFAULT_BACKEND_URL,
    DEFAULT_LOAD_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TURN_TIMEOUT,
)
from localwork.errors import BackendError, NotFoundError, PermissionDeniedError
from localwork.schemas import (
    AppInfo,
    ConversationMessage,
    DownloadProgress,
    FolderPermission,
    Model,
    TurnResponse,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]


class Backend(Protocol):
    """Operations the core invokes on its backend collaborator."""

    async def get_app_info(self) -> AppInfo: ...

    async def list_models(self) -> list[Model]: ...

    async def download_model(
        self, model_id: str, filename: str, on_progress: ProgressCallback
    ) -> str: ...

    async def load_model(self, local_path: str) -> None: ...

    async def send_turn(self, history: Sequence[ConversationMessage]) -> TurnResponse: ...

    async def grant_folder(self, path: str) -> FolderPermission: ...

    async def revoke_folder(self, permission_id: str) -> None: ...

    async def list_folders(self) -> list[FolderPermission]: ...


def _error_detail(response: httpx.Response) -> str:
    """Extract a human-readable error message from a backend response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("error") or payload)
    return str(payload)


class HttpBackend:
    """Backend reached over HTTP with httpx."""

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        turn_timeout: float = DEFAULT_TURN_TIMEOUT,
        load_timeout: float = DEFAULT_LOAD_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Root URL of the backend engine
            timeout: Default per-request timeout in seconds
            turn_timeout: Timeout for a full chat turn including tool calls
            load_timeout: Timeout for loading a model
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url
        self._timeout = timeout
        self._turn_timeout = turn_timeout
        self._load_timeout = load_timeout
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            status = e.response.status_code
            logger.warning(f"Backend {method} {path} returned {status}: {detail}")
            if status == 404:
                raise NotFoundError(detail) from e
            if status == 403:
                raise PermissionDeniedError(detail) from e
            raise BackendError(f"Backend returned {status}: {detail}") from e

        except httpx.TimeoutException as e:
            logger.error(f"Backend {method} {path} timed out")
            raise BackendError("Backend request timed out") from e

        except httpx.HTTPError as e:
            logger.error(f"Failed to reach backend at {self.base_url}: {e}")
            raise BackendError(f"Backend unavailable: {e}") from e

    async def get_app_info(self) -> AppInfo:
        response = await self._request("GET", "/info")
        return AppInfo.model_validate(response.json())

    async def list_models(self) -> list[Model]:
        response = await self._request("GET", "/models")
        return [Model.model_validate(item) for item in response.json()]

    async def download_model(
        self, model_id: str, filename: str, on_progress: ProgressCallback
    ) -> str:
        """Download a model, relaying progress lines to ``on_progress``.

        The backend answers with newline-delimited JSON: zero or more progress
        records followed by ``{"local_path": ...}`` or ``{"error": ...}``.

        Returns:
            Local path of the downloaded model file
        """
        # No read timeout: large files stream for a long time between lines
        timeout = httpx.Timeout(self._timeout, read=None)
        try:
            async with self._client.stream(
                "POST",
                f"/models/{model_id}/download",
                json={"filename": filename},
                timeout=timeout,
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise BackendError(_error_detail(response))

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    payload = json.loads(line)
                    if not isinstance(payload, dict):
                        raise BackendError(f"Malformed download stream: {line[:80]}")
                    if payload.get("error"):
                        raise BackendError(str(payload["error"]))
                    if payload.get("local_path"):
                        return str(payload["local_path"])
                    payload.setdefault("model_id", model_id)
                    # Percent is recomputed and clamped by the coordinator
                    payload.pop("percent", None)
                    on_progress(DownloadProgress.model_validate(payload))

        except (ValueError, ValidationError) as e:
            raise BackendError(f"Malformed download stream: {e}") from e
        except httpx.TimeoutException as e:
            raise BackendError("Download connection timed out") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Backend unavailable: {e}") from e

        raise BackendError("Download stream ended without a result")

    async def load_model(self, local_path: str) -> None:
        await self._request(
            "POST",
            "/models/load",
            json={"local_path": local_path},
            timeout=self._load_timeout,
        )

    async def send_turn(self, history: Sequence[ConversationMessage]) -> TurnResponse:
        response = await self._request(
            "POST",
            "/chat",
            json={"messages": [m.model_dump(mode="json", exclude_none=True) for m in history]},
            timeout=self._turn_timeout,
        )
        return TurnResponse.model_validate(response.json())

    async def grant_folder(self, path: str) -> FolderPermission:
        response = await self._request("POST", "/folders", json={"path": path})
        return FolderPermission.model_validate(response.json())

    async def revoke_folder(self, permission_id: str) -> None:
        await self._request("DELETE", f"/folders/{permission_id}")

    async def list_folders(self) -> list[FolderPermission]:
        response = await self._request("GET", "/folders")
        return [FolderPermission.model_validate(item) for item in response.json()]
