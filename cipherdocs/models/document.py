"""
Document Models
Encrypted documents and chunks as they travel to and from the durable store.
Wire payloads use camelCase keys.
"""

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Chunks ====================

class ChunkMetadata(CamelModel):
    """Positional metadata, stored in the clear"""
    chunk_number: int = Field(..., ge=1)
    page_number: int = Field(default=1, ge=1)


class EncryptedChunkCreate(CamelModel):
    chunk_number: int = Field(..., ge=1)
    encrypted_content: str
    encrypted_embedding: List[float]
    metadata: ChunkMetadata


class EncryptedChunkResponse(CamelModel):
    chunk_number: int
    encrypted_content: str
    encrypted_embedding: Optional[List[float]] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="chunk_metadata")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ==================== Documents ====================

class DocumentCreate(CamelModel):
    """Upload payload. Stored atomically with all of its chunks."""
    name: str = Field(..., min_length=1)
    original_name: str = Field(..., min_length=1)
    type: str
    file_size: int = Field(default=0, ge=0)
    page_count: int = Field(default=1, ge=0)
    project_id: Optional[str] = None
    encrypted_content: str
    encrypted_metadata: Dict[str, Any] = Field(default_factory=dict)
    chunks: List[EncryptedChunkCreate] = Field(default_factory=list)


class DocumentCreateResponse(CamelModel):
    document_id: str
    chunk_count: int


class DocumentSummary(CamelModel):
    id: str
    name: str
    original_name: str
    type: str
    file_size: int
    page_count: int
    project_id: Optional[str] = None
    encrypted_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DocumentResponse(DocumentSummary):
    encrypted_content: str
    chunks: List[EncryptedChunkResponse] = Field(default_factory=list)


# ==================== Search ====================

class VectorSearchRequest(CamelModel):
    """Query embedding must be encrypted with the same vector key as the chunks"""
    query_embedding: List[float] = Field(..., min_length=1)
    project_id: Optional[str] = None
    document_ids: Optional[List[str]] = None
    match_threshold: Optional[float] = None
    match_count: Optional[int] = None


class ChunkSearchResult(CamelModel):
    chunk_number: int
    document_id: str
    document_name: str
    document_type: str
    encrypted_content: str
    metadata: Optional[Dict[str, Any]] = None
    similarity: float


class VectorSearchResponse(CamelModel):
    results: List[ChunkSearchResult]
    total_results: int
