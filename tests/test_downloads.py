"""Tests for the download coordinator."""

import asyncio

import pytest

from localwork.downloads import DownloadStream, compute_percent
from localwork.errors import (
    BackendError,
    DownloadBusyError,
    DownloadCancelledError,
    DownloadFailedError,
    ModelNotFoundError,
)
from localwork.schemas import DownloadOutcome, DownloadProgress, DownloadStatus, Model


def progress(downloaded: int, total: int | None = 1000, model_id: str = "m1") -> DownloadProgress:
    """Raw progress record as the backend emits it."""
    return DownloadProgress(model_id=model_id, downloaded_bytes=downloaded, total_bytes=total)


async def collect(stream: DownloadStream) -> tuple[list[DownloadProgress], DownloadOutcome]:
    records, outcome = [], None
    async for event in stream:
        if isinstance(event, DownloadOutcome):
            outcome = event
        else:
            records.append(event)
    return records, outcome


class TestComputePercent:
    """Test percent computation."""

    def test_percent_of_known_total(self):
        assert compute_percent(250, 1000) == 25.0

    def test_unknown_total_is_none(self):
        assert compute_percent(250, None) is None
        assert compute_percent(250, 0) is None

    def test_percent_is_clamped(self):
        assert compute_percent(1500, 1000) == 100.0
        assert compute_percent(0, 1000) == 0.0


class TestDownloadCoordinator:
    """Test single-flight downloads and progress relay."""

    @pytest.mark.asyncio
    async def test_download_emits_zero_to_hundred_then_marks_model(self, core, backend):
        """
        Purpose: A completed download reports 0..100 and flips the model state.
        Input: m1 not downloaded, backend reports 0, 500, 1000 of 1000 bytes.
        Expected: percent starts at 0 and ends at 100; m1 downloaded with a path.
        """
        backend.progress_script = [progress(0), progress(500), progress(1000)]
        models = await core.registry.list_models()
        assert models[0].id == "m1" and models[0].downloaded is False

        stream = await core.downloads.start_download("m1")
        records, outcome = await collect(stream)

        assert records[0].percent == 0.0
        assert records[-1].percent == 100.0
        assert outcome.status == DownloadStatus.COMPLETED
        assert outcome.local_path == "/data/models/m1.gguf"

        model = core.registry.get("m1")
        assert model.downloaded is True
        assert model.local_path == "/data/models/m1.gguf"
        assert core.downloads.is_busy is False
        assert core.downloads.active_job is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sequence",
        [
            [600, 300, 800, 700, 1000],
            [100, 100, 50, 900, 10, 1000],
            [1000, 0, 500],
            [5, 4, 3, 2, 1],
        ],
    )
    async def test_observed_percent_never_decreases(self, core, backend, sequence):
        """Out-of-order progress is discarded so percent is non-decreasing."""
        backend.progress_script = [progress(n) for n in sequence]
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        records, outcome = await collect(stream)

        percents = [r.percent for r in records]
        assert percents == sorted(percents)
        downloaded = [r.downloaded_bytes for r in records]
        assert downloaded == sorted(downloaded)
        assert outcome.status == DownloadStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_total_reports_no_percent(self, core, backend):
        """Without a total size the percent is undefined."""
        backend.models.append(Model(id="mx", display_name="Unsized", filename="mx.gguf"))
        backend.progress_script = [progress(100, total=None, model_id="mx")]
        await core.registry.list_models()

        records, outcome = await collect(await core.downloads.start_download("mx"))

        assert all(r.percent is None for r in records)
        assert records[-1].downloaded_bytes == 100
        assert outcome.status == DownloadStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_for_other_model_is_ignored(self, core, backend):
        backend.progress_script = [progress(900, model_id="m2"), progress(200)]
        await core.registry.list_models()

        records, _ = await collect(await core.downloads.start_download("m1"))

        assert [r.downloaded_bytes for r in records] == [0, 200, 1000]
        assert all(r.model_id == "m1" for r in records)

    @pytest.mark.asyncio
    async def test_second_download_of_other_model_is_busy(self, core, backend):
        """
        Purpose: Single-flight rejects a different model while one downloads.
        Expected: DownloadBusyError, the first job continues untouched.
        """
        backend.download_gate = asyncio.Event()
        backend.progress_script = [progress(400)]
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        await asyncio.sleep(0)
        job_before = core.downloads.active_job

        with pytest.raises(DownloadBusyError):
            await core.downloads.start_download("m2")

        assert core.downloads.is_busy is True
        assert core.downloads.active_job == job_before
        assert core.downloads.active_job.model_id == "m1"

        backend.download_gate.set()
        assert await stream.result() == "/data/models/m1.gguf"
        assert backend.download_calls == ["m1"]
        assert core.registry.get("m2").downloaded is False

    @pytest.mark.asyncio
    async def test_same_model_joins_existing_download(self, core, backend):
        backend.download_gate = asyncio.Event()
        await core.registry.list_models()

        first = await core.downloads.start_download("m1")
        second = await core.downloads.start_download("m1")
        assert first is second

        backend.download_gate.set()
        assert await second.result() == "/data/models/m1.gguf"
        assert backend.download_calls == ["m1"]

    @pytest.mark.asyncio
    async def test_failure_surfaces_error_verbatim_without_mutation(self, core, backend):
        backend.progress_script = [progress(300)]
        backend.download_error = BackendError("checksum mismatch for m1.gguf")
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        with pytest.raises(DownloadFailedError) as exc_info:
            await stream.result()

        assert str(exc_info.value) == "checksum mismatch for m1.gguf"
        assert stream.outcome.error == "checksum mismatch for m1.gguf"
        model = core.registry.get("m1")
        assert model.downloaded is False
        assert model.local_path is None
        assert core.downloads.is_busy is False

    @pytest.mark.asyncio
    async def test_cancel_releases_slot_and_leaves_model(self, core, backend):
        """
        Purpose: Cancelling removes the job and frees single-flight.
        Expected: stream ends cancelled, model untouched, next download runs.
        """
        backend.download_gate = asyncio.Event()
        backend.progress_script = [progress(500)]
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        await asyncio.sleep(0)

        assert await core.downloads.cancel() is True
        assert core.downloads.is_busy is False
        assert core.downloads.active_job is None
        with pytest.raises(DownloadCancelledError):
            await stream.result()
        assert stream.outcome.status == DownloadStatus.CANCELLED
        assert core.registry.get("m1").downloaded is False

        backend.download_gate = None
        assert await core.downloads.download("m2") == "/data/models/m2.gguf"
        assert core.registry.get("m1").downloaded is False

    @pytest.mark.asyncio
    async def test_cancel_without_download_returns_false(self, core):
        assert await core.downloads.cancel() is False

    @pytest.mark.asyncio
    async def test_cancelled_stream_has_exactly_one_terminal_event(self, core, backend):
        backend.download_gate = asyncio.Event()
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        subscriber = asyncio.create_task(collect(stream))
        await asyncio.sleep(0)
        await core.downloads.cancel()

        records, outcome = await subscriber
        assert outcome.status == DownloadStatus.CANCELLED
        assert all(isinstance(r, DownloadProgress) for r in records)

    @pytest.mark.asyncio
    async def test_late_subscriber_receives_latest_progress(self, core, backend):
        backend.download_gate = asyncio.Event()
        backend.progress_script = [progress(400)]
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        events = stream.subscribe()
        first = await events.__anext__()
        assert first.downloaded_bytes == 400
        assert first.percent == 40.0

        backend.download_gate.set()
        remaining = [event async for event in events]
        assert isinstance(remaining[-1], DownloadOutcome)

    @pytest.mark.asyncio
    async def test_already_downloaded_model_completes_immediately(self, core, backend):
        await core.registry.list_models()

        stream = await core.downloads.start_download("m3")

        assert stream.done is True
        assert await stream.result() == "/data/models/m3.gguf"
        assert backend.download_calls == []
        assert core.downloads.is_busy is False

    @pytest.mark.asyncio
    async def test_unknown_model_is_rejected(self, core):
        await core.registry.list_models()
        with pytest.raises(ModelNotFoundError):
            await core.downloads.start_download("nope")
        assert core.downloads.is_busy is False

    @pytest.mark.asyncio
    async def test_aclose_cancels_in_flight_download(self, core, backend):
        backend.download_gate = asyncio.Event()
        await core.registry.list_models()

        stream = await core.downloads.start_download("m1")
        await asyncio.sleep(0)
        await core.downloads.aclose()

        assert stream.outcome.status == DownloadStatus.CANCELLED
        assert core.downloads.is_busy is False

    @pytest.mark.asyncio
    async def test_result_without_outcome_raises(self):
        """A stream released without a terminal event reports a failure."""
        stream = DownloadStream("m1")
        stream._done.set()

        with pytest.raises(DownloadFailedError, match="without an outcome"):
            await stream.result()
