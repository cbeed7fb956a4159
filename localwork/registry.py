"""Model registry client: available models and their local state."""

from __future__ import annotations

import logging

from localwork.backend import Backend
from localwork.errors import BackendError, ModelNotFoundError, RegistryUnavailableError
from localwork.schemas import Model

logger = logging.getLogger(__name__)


class ModelRegistryClient:
    """Lists models from the backend and keeps the latest snapshot."""

    def __init__(self, backend: Backend):
        self._backend = backend
        self._models: dict[str, Model] = {}

    @property
    def models(self) -> list[Model]:
        """Snapshot from the last successful listing."""
        return list(self._models.values())

    async def list_models(self) -> list[Model]:
        """Fetch available models from the backend.

        An empty list is a valid answer (no models configured) and is distinct
        from a failure, which raises.

        Raises:
            RegistryUnavailableError: If the backend cannot be reached
        """
        try:
            models = await self._backend.list_models()
        except BackendError as e:
            logger.warning(f"Model registry unavailable: {e}")
            raise RegistryUnavailableError(str(e)) from e

        self._models = {model.id: model for model in models}
        logger.debug(f"Registry lists {len(models)} models")
        return list(models)

    def get(self, model_id: str) -> Model:
        """Look up a model in the snapshot."""
        try:
            return self._models[model_id]
        except KeyError:
            raise ModelNotFoundError(f"Unknown model: {model_id}") from None

    def record_download(self, model_id: str, local_path: str) -> Model:
        """Mark a model as downloaded.

        Only the download coordinator calls this, once a download completed.
        """
        model = self.get(model_id).model_copy(update={"downloaded": True, "local_path": local_path})
        self._models[model_id] = model
        logger.info(f"Model {model_id} downloaded to {local_path}")
        return model
