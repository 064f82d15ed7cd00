"""
Processing Job Repository

Best-effort progress records for client-side processing jobs.
Entries are discarded once they have not been updated for the retention window.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from cipherdocs.db.database import ProcessingJob


class ProcessingJobRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: str, content_type: str = "document", file_name: Optional[str] = None) -> ProcessingJob:
        job = ProcessingJob(
            job_id=str(uuid.uuid4()),
            user_id=user_id,
            progress=0.0,
            status="initialized",
            current_step="Starting processing",
            content_type=content_type,
            file_name=file_name,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def get(self, job_id: str, user_id: str) -> Optional[ProcessingJob]:
        return (
            self.db.query(ProcessingJob)
            .filter(ProcessingJob.job_id == job_id, ProcessingJob.user_id == user_id)
            .first()
        )

    def upsert_progress(
        self,
        job_id: str,
        user_id: str,
        progress: float,
        status: str,
        current_step: Optional[str] = None,
        content_type: str = "document",
    ) -> Optional[ProcessingJob]:
        """
        Create or update a job. Progress is clamped to 0-100.
        Returns None when the job id belongs to another user.
        """
        progress = max(0.0, min(100.0, float(progress)))
        job = self.db.query(ProcessingJob).filter(ProcessingJob.job_id == job_id).first()
        if job is not None and job.user_id != user_id:
            return None
        if job is None:
            job = ProcessingJob(job_id=job_id, user_id=user_id, content_type=content_type)
            self.db.add(job)

        job.progress = progress
        job.status = status
        if current_step is not None:
            job.current_step = current_step
        job.content_type = content_type
        job.last_updated = datetime.utcnow()

        self.db.commit()
        self.db.refresh(job)
        return job

    def request_cancel(self, job_id: str, user_id: str) -> Optional[ProcessingJob]:
        job = self.get(job_id, user_id)
        if not job:
            return None
        job.cancel_requested = True
        job.last_updated = datetime.utcnow()
        self.db.commit()
        self.db.refresh(job)
        return job

    def cleanup_stale(self, older_than_minutes: int) -> int:
        """Delete jobs not updated within the window. Returns count deleted."""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        deleted = (
            self.db.query(ProcessingJob)
            .filter(ProcessingJob.last_updated < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
