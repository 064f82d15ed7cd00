from sqlalchemy import create_engine, Column, Integer, String, Boolean, Float, DateTime, Text, ForeignKey, Index, JSON
from sqlalchemy.orm import sessionmaker, relationship, declarative_base
from datetime import datetime
import uuid
from cipherdocs.core.config import settings

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


# ============ Database Models ============

class UserKeys(Base):
    """Wrapped master key record. The server never sees the unwrapped key."""
    __tablename__ = "user_keys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), unique=True, index=True, nullable=False)

    # All base64, produced client-side
    salt = Column(String(64), nullable=False)
    enc_key_pw = Column(Text, nullable=False)
    iv_pw = Column(String(32), nullable=False)
    enc_key_recovery = Column(Text, nullable=False)
    iv_recovery = Column(String(32), nullable=False)

    # Search key material encrypted under the master key
    encrypted_search_key_material = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Document(Base):
    """Encrypted document or website"""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    project_id = Column(String(100), nullable=True)

    # Deterministically encrypted, so equality filters work on ciphertext
    name = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    type = Column(String(100), nullable=False)
    file_size = Column(Integer, default=0)
    page_count = Column(Integer, default=1)

    encrypted_content = Column(Text, nullable=False)
    encrypted_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentChunk.chunk_number",
    )

    __table_args__ = (
        Index('ix_documents_user_name', 'user_id', 'name'),
    )


class DocumentChunk(Base):
    __tablename__ = "document_chunks"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    chunk_number = Column(Integer, nullable=False)

    encrypted_content = Column(Text, nullable=False)
    encrypted_embedding = Column(JSON, nullable=True)  # Distance-preserving ciphertext vector
    chunk_metadata = Column(JSON, nullable=True)  # Positional only

    document = relationship("Document", back_populates="chunks")

    __table_args__ = (
        Index('ix_chunks_document_number', 'document_id', 'chunk_number', unique=True),
    )


class ProcessingJob(Base):
    """Progress side channel for client-side processing"""
    __tablename__ = "processing_jobs"

    job_id = Column(String(100), primary_key=True)
    user_id = Column(String(100), nullable=False, index=True)
    progress = Column(Float, default=0.0)
    status = Column(String(20), default="initialized")
    current_step = Column(String(255), nullable=True)
    content_type = Column(String(20), default="document")
    file_name = Column(String(255), nullable=True)
    cancel_requested = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
