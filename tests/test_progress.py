"""
Tests for the progress reporter
"""

import asyncio

from cipherdocs.models.processing import ContentType, ProcessingStatus
from cipherdocs.services.progress import ProcessingProgressReporter, stage_progress

from conftest import RecordingJobStore


def test_stage_windows():
    assert stage_progress(ProcessingStatus.VALIDATING) == 0
    assert stage_progress(ProcessingStatus.EMBEDDING, 0.5) == 45
    assert stage_progress(ProcessingStatus.UPLOADING, 1.0) == 100
    assert stage_progress(ProcessingStatus.ENCRYPTING, 7) == 85


def test_report_reaches_callback_and_store():
    store = RecordingJobStore()
    seen = []
    reporter = ProcessingProgressReporter(store, on_progress=seen.append, content_type=ContentType.WEBSITE)

    event = asyncio.run(reporter.report("job-1", ProcessingStatus.CHUNKING, 27.5, "Splitting text"))

    assert seen == [event]
    assert store.events == [event]
    assert event.content_type == ContentType.WEBSITE
    assert event.current_step == "Splitting text"


def test_progress_is_clamped():
    reporter = ProcessingProgressReporter()
    assert asyncio.run(reporter.report("job-1", ProcessingStatus.EMBEDDING, 140)).progress == 100
    assert asyncio.run(reporter.report("job-1", ProcessingStatus.EMBEDDING, -3)).progress == 0


def test_store_failure_is_swallowed():
    reporter = ProcessingProgressReporter(RecordingJobStore(fail=True))
    event = asyncio.run(reporter.report("job-1", ProcessingStatus.EXTRACTING, 10))
    assert event.status == ProcessingStatus.EXTRACTING


def test_callback_failure_is_swallowed():
    store = RecordingJobStore()

    def explode(event):
        raise RuntimeError("ui gone")

    reporter = ProcessingProgressReporter(store, on_progress=explode)
    asyncio.run(reporter.report("job-1", ProcessingStatus.EXTRACTING, 10))
    assert len(store.events) == 1


def test_get_status():
    store = RecordingJobStore()
    reporter = ProcessingProgressReporter(store)
    assert asyncio.run(reporter.get_status("job-1")) is None

    asyncio.run(reporter.report("job-1", ProcessingStatus.EMBEDDING, 40))
    store.cancel_requested = True
    status = asyncio.run(reporter.get_status("job-1"))
    assert status.cancel_requested is True
    assert status.progress == 40

    assert asyncio.run(ProcessingProgressReporter(RecordingJobStore(fail=True)).get_status("job-1")) is None
