"""Download coordinator: one exclusive model download at a time."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import AsyncIterator, Union

from localwork.backend import Backend
from localwork.errors import DownloadBusyError, DownloadCancelledError, DownloadFailedError
from localwork.registry import ModelRegistryClient
from localwork.schemas import DownloadOutcome, DownloadProgress, DownloadStatus, Model

logger = logging.getLogger(__name__)

DownloadEvent = Union[DownloadProgress, DownloadOutcome]


def compute_percent(downloaded_bytes: int, total_bytes: int | None) -> float | None:
    """Percent complete clamped to [0, 100], or None if the total is unknown."""
    if not total_bytes or total_bytes <= 0:
        return None
    return max(0.0, min(100.0, downloaded_bytes / total_bytes * 100))


class DownloadStream:
    """Events of a single download, fanned out to any number of subscribers.

    Every subscriber sees progress records followed by exactly one
    :class:`DownloadOutcome`. Subscribers joining late first receive the latest
    progress record (and the outcome, if the download already ended).
    """

    def __init__(self, model_id: str):
        self.model_id = model_id
        self._latest: DownloadProgress | None = None
        self._outcome: DownloadOutcome | None = None
        self._subscribers: list[asyncio.Queue[DownloadEvent]] = []
        self._done = asyncio.Event()

    @property
    def latest(self) -> DownloadProgress | None:
        return self._latest

    @property
    def outcome(self) -> DownloadOutcome | None:
        return self._outcome

    @property
    def done(self) -> bool:
        return self._outcome is not None

    def _publish(self, progress: DownloadProgress) -> None:
        if self._outcome is not None:
            return
        self._latest = progress
        for queue in self._subscribers:
            queue.put_nowait(progress)

    def _finish(self, outcome: DownloadOutcome) -> None:
        if self._outcome is not None:
            return
        self._outcome = outcome
        for queue in self._subscribers:
            queue.put_nowait(outcome)
        self._subscribers.clear()
        self._done.set()

    async def subscribe(self) -> AsyncIterator[DownloadEvent]:
        """Iterate over progress records until the terminal outcome."""
        queue: asyncio.Queue[DownloadEvent] = asyncio.Queue()
        if self._latest is not None:
            queue.put_nowait(self._latest)
        if self._outcome is not None:
            queue.put_nowait(self._outcome)
        else:
            self._subscribers.append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, DownloadOutcome):
                    return
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def __aiter__(self) -> AsyncIterator[DownloadEvent]:
        return self.subscribe()

    async def result(self) -> str:
        """Wait for the download to end.

        Returns:
            Local path of the downloaded model

        Raises:
            DownloadFailedError: With the backend's error message, verbatim
            DownloadCancelledError: If the download was cancelled
        """
        await self._done.wait()
        outcome = self._outcome
        if outcome is None:
            raise DownloadFailedError(f"Download of {self.model_id} ended without an outcome")
        if outcome.status == DownloadStatus.COMPLETED and outcome.local_path:
            return outcome.local_path
        if outcome.status == DownloadStatus.CANCELLED:
            raise DownloadCancelledError(f"Download of {self.model_id} was cancelled")
        raise DownloadFailedError(outcome.error or f"Download of {self.model_id} failed")


class DownloadCoordinator:
    """Drives at most one model download and relays its progress."""

    def __init__(self, backend: Backend, registry: ModelRegistryClient):
        self._backend = backend
        self._registry = registry
        self._lock = asyncio.Lock()
        self._job: DownloadProgress | None = None
        self._stream: DownloadStream | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active_job(self) -> DownloadProgress | None:
        """Latest progress of the in-flight download, if any."""
        return self._job

    @property
    def is_busy(self) -> bool:
        return self._stream is not None

    @property
    def active_stream(self) -> DownloadStream | None:
        return self._stream

    async def start_download(self, model_id: str) -> DownloadStream:
        """Start downloading a model, or join the download already running for it.

        Raises:
            DownloadBusyError: If a different model is downloading
            ModelNotFoundError: If the model is not in the registry snapshot
        """
        async with self._lock:
            if self._stream is not None:
                if self._stream.model_id == model_id:
                    logger.info(f"Joining in-flight download of {model_id}")
                    return self._stream
                logger.warning(
                    f"Rejected download of {model_id}: {self._stream.model_id} is downloading"
                )
                raise DownloadBusyError(
                    f"Another model is already downloading: {self._stream.model_id}"
                )

            model = self._registry.get(model_id)
            stream = DownloadStream(model_id)

            if model.downloaded and model.local_path:
                logger.info(f"Model {model_id} already downloaded at {model.local_path}")
                stream._finish(
                    DownloadOutcome(
                        model_id=model_id,
                        status=DownloadStatus.COMPLETED,
                        local_path=model.local_path,
                    )
                )
                return stream

            total = model.size_bytes or None
            self._job = DownloadProgress(
                model_id=model_id,
                downloaded_bytes=0,
                total_bytes=total,
                percent=compute_percent(0, total),
            )
            self._stream = stream
            stream._publish(self._job)
            self._task = asyncio.create_task(self._run(model, stream), name=f"download-{model_id}")

        logger.info(f"Started download of {model_id} ({model.filename})")
        return stream

    async def download(self, model_id: str) -> str:
        """Start (or join) a download and wait for its local path."""
        stream = await self.start_download(model_id)
        return await stream.result()

    async def cancel(self) -> bool:
        """Cancel the in-flight download.

        The job is removed and the single-flight slot released before this
        returns. The model is left untouched.

        Returns:
            True if a download was cancelled, False if none was running
        """
        async with self._lock:
            stream, task = self._stream, self._task
            if stream is None:
                return False

            self._clear(stream)
            if task is not None:
                task.cancel()
            stream._finish(DownloadOutcome(model_id=stream.model_id, status=DownloadStatus.CANCELLED))

        logger.info(f"Cancelled download of {stream.model_id}")
        return True

    async def aclose(self) -> None:
        """Cancel any in-flight download and wait for it to unwind."""
        task = self._task
        if await self.cancel() and task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _clear(self, stream: DownloadStream) -> None:
        if self._stream is stream:
            self._stream = None
            self._job = None
            self._task = None

    def _on_progress(self, stream: DownloadStream, progress: DownloadProgress) -> None:
        job = self._job
        if stream is not self._stream or job is None or progress.model_id != stream.model_id:
            return

        if progress.downloaded_bytes < job.downloaded_bytes:
            logger.debug(
                f"Discarded stale progress for {progress.model_id}: "
                f"{progress.downloaded_bytes} < {job.downloaded_bytes}"
            )
            return

        total = progress.total_bytes or job.total_bytes
        percent = compute_percent(progress.downloaded_bytes, total)
        if percent is not None and job.percent is not None:
            percent = max(percent, job.percent)

        self._job = DownloadProgress(
            model_id=progress.model_id,
            downloaded_bytes=progress.downloaded_bytes,
            total_bytes=total,
            percent=percent,
        )
        stream._publish(self._job)

    async def _run(self, model: Model, stream: DownloadStream) -> None:
        outcome = DownloadOutcome(
            model_id=model.id,
            status=DownloadStatus.FAILED,
            error="Download ended unexpectedly",
        )
        try:
            local_path = await self._backend.download_model(
                model.id, model.filename, partial(self._on_progress, stream)
            )
            self._registry.record_download(model.id, local_path)

            job = self._job
            if stream is self._stream and job is not None and job.total_bytes:
                if job.percent is None or job.percent < 100.0:
                    self._job = job.model_copy(
                        update={
                            "downloaded_bytes": max(job.downloaded_bytes, job.total_bytes),
                            "percent": 100.0,
                        }
                    )
                    stream._publish(self._job)

            outcome = DownloadOutcome(
                model_id=model.id,
                status=DownloadStatus.COMPLETED,
                local_path=local_path,
            )

        except asyncio.CancelledError:
            outcome = DownloadOutcome(model_id=model.id, status=DownloadStatus.CANCELLED)
            raise

        except Exception as e:
            logger.error(f"Download of {model.id} failed: {e}")
            outcome = DownloadOutcome(
                model_id=model.id,
                status=DownloadStatus.FAILED,
                error=str(e) or e.__class__.__name__,
            )

        finally:
            self._clear(stream)
            stream._finish(outcome)
