"""
CipherDocs Processing API Routes
Progress side channel for jobs that run on the client.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cipherdocs.api.deps import get_current_user_id
from cipherdocs.db.database import get_db
from cipherdocs.db.job_repo import ProcessingJobRepository
from cipherdocs.models.processing import (
    JobStatusResponse,
    ProcessingStartRequest,
    ProcessingStartResponse,
    ProcessingStatus,
    ProgressEvent,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/start", response_model=ProcessingStartResponse, status_code=status.HTTP_201_CREATED)
async def start_processing(
    request: ProcessingStartRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    job = ProcessingJobRepository(db).create(
        user_id, content_type=request.content_type.value, file_name=request.file_name
    )
    logger.info(f"🚀 Processing job {job.job_id} started for user {user_id}")
    return ProcessingStartResponse(job_id=job.job_id, status=ProcessingStatus(job.status))


@router.post("/progress", response_model=JobStatusResponse)
async def update_progress(
    event: ProgressEvent,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Record a progress update. Unknown job ids create the job."""
    job = ProcessingJobRepository(db).upsert_progress(
        job_id=event.job_id,
        user_id=user_id,
        progress=event.progress,
        status=event.status.value,
        current_step=event.current_step,
        content_type=event.content_type.value,
    )
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )
    return job


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_status(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    job = ProcessingJobRepository(db).get(job_id, user_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )
    return job


@router.post("/cancel/{job_id}", response_model=JobStatusResponse)
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Flag a job for cancellation. The client stops at its next checkpoint."""
    job = ProcessingJobRepository(db).request_cancel(job_id, user_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )
    logger.info(f"🛑 Cancellation requested for job {job_id}")
    return job
