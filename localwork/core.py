"""Wiring of the core components around one backend."""

from __future__ import annotations

import logging

from localwork.agent import AgentSession
from localwork.backend import Backend, HttpBackend
from localwork.config import Settings
from localwork.downloads import DownloadCoordinator
from localwork.model_session import ModelSessionManager
from localwork.permissions import PermissionStoreClient
from localwork.registry import ModelRegistryClient

logger = logging.getLogger(__name__)


class LocalWorkCore:
    """One instance of each component, sharing a backend.

    The active model and the in-flight download are state owned by the
    model session manager and the download coordinator held here.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self.registry = ModelRegistryClient(backend)
        self.downloads = DownloadCoordinator(backend, self.registry)
        self.models = ModelSessionManager(backend, self.registry)
        self.permissions = PermissionStoreClient(backend)
        self.session = AgentSession(backend, self.models)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> LocalWorkCore:
        """Build a core talking to the HTTP backend described by ``settings``."""
        settings = settings or Settings.from_env()
        logger.debug(f"Using backend at {settings.backend_url}")
        return cls(
            HttpBackend(
                base_url=settings.backend_url,
                timeout=settings.request_timeout,
                turn_timeout=settings.turn_timeout,
                load_timeout=settings.load_timeout,
            )
        )

    async def aclose(self) -> None:
        """Cancel any download in flight and close the backend connection."""
        await self.downloads.aclose()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()
