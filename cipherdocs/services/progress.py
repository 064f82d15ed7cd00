"""
Processing Progress Reporter
Best-effort job status side channel. A failed update is logged and
dropped; it never fails the job it describes.
"""

import inspect
import logging
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple, Union

from cipherdocs.models.processing import ContentType, JobStatusResponse, ProcessingStatus, ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

# Percent range each stage moves through
STAGE_WINDOWS: Dict[ProcessingStatus, Tuple[float, float]] = {
    ProcessingStatus.INITIALIZED: (0, 0),
    ProcessingStatus.VALIDATING: (0, 5),
    ProcessingStatus.EXTRACTING: (5, 25),
    ProcessingStatus.CHUNKING: (25, 30),
    ProcessingStatus.EMBEDDING: (30, 60),
    ProcessingStatus.ENCRYPTING: (60, 85),
    ProcessingStatus.UPLOADING: (85, 100),
    ProcessingStatus.COMPLETED: (100, 100),
}


def stage_progress(status: ProcessingStatus, fraction: float = 0.0) -> float:
    """Interpolate a 0-1 fraction into the stage's window"""
    start, end = STAGE_WINDOWS.get(status, (0, 0))
    fraction = max(0.0, min(1.0, fraction))
    return round(start + (end - start) * fraction, 2)


class JobStore(Protocol):
    async def update_progress(self, event: ProgressEvent) -> None: ...

    async def get_job_status(self, job_id: str) -> Optional[JobStatusResponse]: ...


class ProcessingProgressReporter:
    def __init__(
        self,
        job_store: Optional[JobStore] = None,
        on_progress: Optional[ProgressCallback] = None,
        content_type: ContentType = ContentType.DOCUMENT,
    ):
        self.job_store = job_store
        self.on_progress = on_progress
        self.content_type = content_type

    async def report(
        self,
        job_id: str,
        status: ProcessingStatus,
        progress: float,
        current_step: Optional[str] = None,
        content_type: Optional[ContentType] = None,
    ) -> ProgressEvent:
        event = ProgressEvent(
            job_id=job_id,
            progress=progress,
            status=status,
            current_step=current_step,
            content_type=content_type or self.content_type,
        )
        logger.debug(f"[{job_id}] {status.value} {event.progress:.0f}% {current_step or ''}")

        if self.on_progress is not None:
            try:
                result = self.on_progress(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"⚠️ Progress callback failed for job {job_id}: {e}")

        if self.job_store is not None:
            try:
                await self.job_store.update_progress(event)
            except Exception as e:
                logger.warning(f"⚠️ Failed to update progress for job {job_id}: {e}")

        return event

    async def get_status(self, job_id: str) -> Optional[JobStatusResponse]:
        if self.job_store is None:
            return None
        try:
            return await self.job_store.get_job_status(job_id)
        except Exception as e:
            logger.warning(f"⚠️ Failed to fetch status for job {job_id}: {e}")
            return None
