"""
Processing Models
Job status enum, progress events and pipeline results.
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime
from enum import Enum


class ProcessingStatus(str, Enum):
    INITIALIZED = "initialized"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    ENCRYPTING = "encrypting"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ContentType(str, Enum):
    DOCUMENT = "document"
    WEBSITE = "website"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressEvent(CamelModel):
    """One progress update for a job"""
    job_id: str
    progress: float = Field(..., description="Percentage, clamped to 0-100")
    status: ProcessingStatus
    current_step: Optional[str] = None
    content_type: ContentType = ContentType.DOCUMENT

    @field_validator('progress')
    @classmethod
    def clamp_progress(cls, v):
        return max(0.0, min(100.0, float(v)))


class ProcessingStartRequest(CamelModel):
    file_name: Optional[str] = None
    content_type: ContentType = ContentType.DOCUMENT


class ProcessingStartResponse(CamelModel):
    job_id: str
    status: ProcessingStatus


class JobStatusResponse(CamelModel):
    job_id: str
    progress: float
    status: ProcessingStatus
    current_step: Optional[str] = None
    content_type: ContentType = ContentType.DOCUMENT
    cancel_requested: bool = False
    last_updated: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ProcessingResult(CamelModel):
    """Outcome of one pipeline run"""
    job_id: str
    status: ProcessingStatus
    success: bool
    document_id: Optional[str] = None
    error: Optional[str] = None
    error_stage: Optional[str] = None
    chunk_count: int = 0
    embeddings_generated: int = 0
    processing_time_ms: int = 0
