"""Model session manager: exactly one model loaded in the engine."""

from __future__ import annotations

import asyncio
import logging

from localwork.backend import Backend
from localwork.errors import LoadFailedError, NotFoundError
from localwork.registry import ModelRegistryClient
from localwork.schemas import ActiveModel, LoadState

logger = logging.getLogger(__name__)


class ModelSessionManager:
    """Owns the ActiveModel state and serializes loads.

    The engine is single-capacity: a second ``load_model`` call waits for the
    one in progress instead of interleaving with it.
    """

    def __init__(self, backend: Backend, registry: ModelRegistryClient):
        self._backend = backend
        self._registry = registry
        self._lock = asyncio.Lock()
        self._active = ActiveModel()
        self.last_error: str | None = None

    @property
    def active(self) -> ActiveModel:
        return self._active

    @property
    def is_loading(self) -> bool:
        return self._active.load_state == LoadState.LOADING

    async def load_model(self, model_id: str) -> ActiveModel:
        """Load a downloaded model from the registry.

        Raises:
            LoadFailedError: If the model is unknown, not downloaded, or the
                engine fails to load it
        """
        try:
            model = self._registry.get(model_id)
        except NotFoundError as e:
            raise LoadFailedError(str(e)) from e

        if not model.downloaded or not model.local_path:
            raise LoadFailedError(f"Model {model_id} is not downloaded")

        return await self.load_path(model.local_path, model_id)

    async def load_path(self, local_path: str, model_id: str) -> ActiveModel:
        """Load a model file and make it the active model.

        On failure the previous state is restored (or idle if there was none).
        """
        async with self._lock:
            prior = self._active
            self._active = ActiveModel(model_id=model_id, load_state=LoadState.LOADING)
            logger.info(f"Loading model {model_id} from {local_path}")

            try:
                await self._backend.load_model(local_path)
            except Exception as e:
                self._active = prior if prior.is_ready else ActiveModel()
                self.last_error = str(e) or e.__class__.__name__
                logger.error(f"Failed to load model {model_id}: {self.last_error}")
                raise LoadFailedError(self.last_error) from e
            except BaseException:
                # Cancelled while loading: never leave the state in LOADING
                self._active = prior if prior.is_ready else ActiveModel()
                raise

            self._active = ActiveModel(model_id=model_id, load_state=LoadState.READY)
            self.last_error = None

        if prior.is_ready and prior.model_id != model_id:
            logger.info(f"Model {model_id} is ready, replacing {prior.model_id}")
        else:
            logger.info(f"Model {model_id} is ready")
        return self._active
