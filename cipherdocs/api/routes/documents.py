"""
CipherDocs Document API Routes
Encrypted documents, their chunks, and search over encrypted vectors.
All content encrypted client-side - server stores only ciphertext
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cipherdocs.api.deps import get_current_user_id
from cipherdocs.core.config import settings
from cipherdocs.db.database import get_db
from cipherdocs.db.document_repo import DocumentRepository
from cipherdocs.models.document import (
    ChunkSearchResult,
    DocumentCreate,
    DocumentCreateResponse,
    DocumentResponse,
    DocumentSummary,
    VectorSearchRequest,
    VectorSearchResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
search_router = APIRouter()


class DocumentList(BaseModel):
    documents: List[DocumentSummary]
    total: int
    has_more: bool = False


@router.post("", response_model=DocumentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    document: DocumentCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Store an encrypted document with all of its chunks.
    The write is atomic: a failure leaves no partial document behind.
    """
    try:
        created = DocumentRepository(db).create_with_chunks(
            user_id=user_id,
            name=document.name,
            original_name=document.original_name,
            doc_type=document.type,
            encrypted_content=document.encrypted_content,
            encrypted_metadata=document.encrypted_metadata,
            chunks=[
                {
                    "chunk_number": chunk.chunk_number,
                    "encrypted_content": chunk.encrypted_content,
                    "encrypted_embedding": chunk.encrypted_embedding,
                    "metadata": chunk.metadata.model_dump(by_alias=True),
                }
                for chunk in document.chunks
            ],
            file_size=document.file_size,
            page_count=document.page_count,
            project_id=document.project_id,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    logger.info(f"📄 Stored document {created.id} with {len(document.chunks)} chunks for user {user_id}")
    return DocumentCreateResponse(document_id=created.id, chunk_count=len(document.chunks))


@router.get("", response_model=DocumentList)
async def list_documents(
    name: Optional[str] = None,
    project_id: Optional[str] = None,
    limit: int = Query(default=50, le=100),
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    List documents. `name` must already be deterministically encrypted;
    the match is exact on ciphertext.
    """
    documents, total = DocumentRepository(db).list_for_user(
        user_id, name=name, project_id=project_id, limit=limit, offset=offset
    )
    return DocumentList(
        documents=[DocumentSummary.model_validate(d) for d in documents],
        total=total,
        has_more=(offset + limit < total)
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    document = DocumentRepository(db).get_by_id(document_id, user_id)
    if not document:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found"
        )
    return document


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    if not DocumentRepository(db).delete(document_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found"
        )


# ==================== Search ====================

@search_router.post("/vector", response_model=VectorSearchResponse)
async def vector_search(
    request: VectorSearchRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Rank encrypted chunks against an encrypted query embedding.
    Results stay encrypted; the client decrypts them.
    """
    threshold = request.match_threshold if request.match_threshold is not None else settings.SEARCH_MATCH_THRESHOLD
    count = request.match_count if request.match_count is not None else settings.SEARCH_MATCH_COUNT
    threshold = max(0.0, min(0.99, threshold))
    count = max(1, min(50, count))

    matches = DocumentRepository(db).search_chunks(
        user_id,
        request.query_embedding,
        match_threshold=threshold,
        match_count=count,
        project_id=request.project_id,
        document_ids=request.document_ids,
    )
    results = [
        ChunkSearchResult(
            chunk_number=chunk.chunk_number,
            document_id=chunk.document_id,
            document_name=chunk.document.name,
            document_type=chunk.document.type,
            encrypted_content=chunk.encrypted_content,
            metadata=chunk.chunk_metadata,
            similarity=similarity,
        )
        for chunk, similarity in matches
    ]
    return VectorSearchResponse(results=results, total_results=len(results))
