"""
Document Repository

Persists encrypted documents together with their chunks and ranks
encrypted chunk vectors for search. Nothing here can decrypt.
"""

import logging
from typing import Optional, List, Tuple

import numpy as np
from sqlalchemy.orm import Session, joinedload

from cipherdocs.db.database import Document, DocumentChunk

logger = logging.getLogger(__name__)


class DocumentRepository:
    def __init__(self, db: Session):
        self.db = db

    def create_with_chunks(
        self,
        user_id: str,
        name: str,
        original_name: str,
        doc_type: str,
        encrypted_content: str,
        encrypted_metadata: dict,
        chunks: List[dict],
        file_size: int = 0,
        page_count: int = 1,
        project_id: Optional[str] = None,
    ) -> Document:
        """
        Store a document and every chunk in one transaction.
        Either all rows are committed or none are.
        """
        numbers = [c["chunk_number"] for c in chunks]
        if len(numbers) != len(set(numbers)):
            raise ValueError("Duplicate chunk numbers")

        document = Document(
            user_id=user_id,
            project_id=project_id,
            name=name,
            original_name=original_name,
            type=doc_type,
            file_size=file_size,
            page_count=page_count,
            encrypted_content=encrypted_content,
            encrypted_metadata=encrypted_metadata,
        )
        for chunk in chunks:
            document.chunks.append(
                DocumentChunk(
                    chunk_number=chunk["chunk_number"],
                    encrypted_content=chunk["encrypted_content"],
                    encrypted_embedding=chunk.get("encrypted_embedding"),
                    chunk_metadata=chunk.get("metadata"),
                )
            )

        self.db.add(document)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(document)
        return document

    def get_by_id(self, document_id: str, user_id: str) -> Optional[Document]:
        return (
            self.db.query(Document)
            .options(joinedload(Document.chunks))
            .filter(Document.id == document_id, Document.user_id == user_id)
            .first()
        )

    def list_for_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Document], int]:
        """
        List documents. `name` is an exact match on the deterministic
        ciphertext, so the caller encrypts the name before filtering.
        """
        query = self.db.query(Document).filter(Document.user_id == user_id)
        if name is not None:
            query = query.filter(Document.name == name)
        if project_id is not None:
            query = query.filter(Document.project_id == project_id)

        total = query.count()
        documents = query.order_by(Document.created_at.desc()).offset(offset).limit(limit).all()
        return documents, total

    def delete(self, document_id: str, user_id: str) -> bool:
        document = self.get_by_id(document_id, user_id)
        if not document:
            return False
        self.db.delete(document)
        self.db.commit()
        return True

    # ==================== Search ====================

    def search_chunks(
        self,
        user_id: str,
        query_embedding: List[float],
        match_threshold: float,
        match_count: int,
        project_id: Optional[str] = None,
        document_ids: Optional[List[str]] = None,
    ) -> List[Tuple[DocumentChunk, float]]:
        """
        Rank chunks by cosine similarity between encrypted vectors.
        The vector encryption preserves cosine similarity, so the ranking
        matches the plaintext ranking.
        """
        query = (
            self.db.query(DocumentChunk)
            .join(Document)
            .options(joinedload(DocumentChunk.document))
            .filter(Document.user_id == user_id, DocumentChunk.encrypted_embedding.isnot(None))
        )
        if project_id is not None:
            query = query.filter(Document.project_id == project_id)
        if document_ids:
            query = query.filter(Document.id.in_(document_ids))

        chunks = query.all()
        if not chunks:
            return []

        q = np.asarray(query_embedding, dtype=np.float64)
        q_norm = np.linalg.norm(q)
        if q_norm == 0:
            return []

        scored = []
        for chunk in chunks:
            v = np.asarray(chunk.encrypted_embedding, dtype=np.float64)
            if v.shape != q.shape:
                logger.warning(f"Skipping chunk {chunk.id}: embedding dimension {v.shape} != {q.shape}")
                continue
            v_norm = np.linalg.norm(v)
            if v_norm == 0:
                continue
            similarity = float(np.dot(q, v) / (q_norm * v_norm))
            if similarity >= match_threshold:
                scored.append((chunk, similarity))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:match_count]
