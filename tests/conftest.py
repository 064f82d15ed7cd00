"""
Shared fixtures for CipherDocs tests
"""

import hashlib
from typing import Dict, List, Optional

import numpy as np
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cipherdocs.main import app
from cipherdocs.client.api_client import ApiClient
from cipherdocs.core.crypto import CryptoUtils
from cipherdocs.core.errors import KeyRecordExistsError, StoreError
from cipherdocs.db.database import Base, get_db
from cipherdocs.models.document import DocumentCreate
from cipherdocs.models.keys import KeyRecordCreate, KeyRecordResponse, PasswordWrapUpdate
from cipherdocs.models.processing import JobStatusResponse, ProgressEvent
from cipherdocs.services.searchable_encryption import SearchableEncryptionProvider, SearchKeyMaterial
from cipherdocs.services.session import KeyContext

STRONG_PASSWORD = "Correct-Horse-9!"

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture
def setup_database():
    """Create tables before the test and drop after"""
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides.pop(get_db, None)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(setup_database):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(setup_database):
    return TestClient(app)


@pytest.fixture
def api_client(client):
    """ApiClient that talks to the app in-process"""
    return ApiClient(base_url="http://testserver", user_id="user-1", session=client)


# ============ Fakes ============

class FakeEmbeddingModel:
    """Deterministic embeddings derived from a hash of the text"""

    def __init__(self, dimension: int = 16):
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def vector_for(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:8], "big")
        return np.random.default_rng(seed).standard_normal(self.dimension).tolist()

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(text) for text in texts]


class InMemoryKeyRecordStore:
    def __init__(self):
        self.records: Dict[str, KeyRecordResponse] = {}
        self.fail_next_stores = 0
        self.store_attempts = 0

    async def fetch_key_record(self, user_id: str) -> Optional[KeyRecordResponse]:
        return self.records.get(user_id)

    async def store_key_record(self, user_id: str, record: KeyRecordCreate) -> None:
        self.store_attempts += 1
        if self.fail_next_stores > 0:
            self.fail_next_stores -= 1
            raise StoreError("temporarily unavailable", status_code=503)
        if user_id in self.records:
            raise KeyRecordExistsError()
        self.records[user_id] = KeyRecordResponse(user_id=user_id, **record.model_dump())

    async def update_password_wrap(self, user_id: str, update: PasswordWrapUpdate) -> None:
        record = self.records[user_id]
        self.records[user_id] = record.model_copy(update=update.model_dump())


class InMemoryDocumentStore:
    def __init__(self, fail: bool = False):
        self.documents: List[DocumentCreate] = []
        self.fail = fail

    async def create_document(self, payload: DocumentCreate) -> str:
        if self.fail:
            raise StoreError("Failed to upload document: storage unavailable", status_code=500)
        self.documents.append(payload)
        return f"doc-{len(self.documents)}"


class RecordingJobStore:
    def __init__(self, fail: bool = False):
        self.events: List[ProgressEvent] = []
        self.fail = fail
        self.cancel_requested = False

    async def update_progress(self, event: ProgressEvent) -> None:
        if self.fail:
            raise StoreError("progress endpoint down", status_code=503)
        self.events.append(event)

    async def get_job_status(self, job_id: str) -> Optional[JobStatusResponse]:
        if not self.events:
            return None
        last = self.events[-1]
        return JobStatusResponse(
            job_id=job_id,
            progress=last.progress,
            status=last.status,
            current_step=last.current_step,
            cancel_requested=self.cancel_requested,
        )


# ============ Key Fixtures ============

@pytest.fixture
def master_key():
    return CryptoUtils.generate_random_symmetric_key()


@pytest.fixture
def material():
    return SearchKeyMaterial.generate(scaling_factor=2.5)


@pytest.fixture
def provider(material):
    return SearchableEncryptionProvider(material)


@pytest.fixture
def key_context(master_key, provider):
    return KeyContext(user_id="user-1", master_key=master_key, encryption=provider)


@pytest.fixture
def embedding_model():
    return FakeEmbeddingModel()


@pytest.fixture
def key_record_store():
    return InMemoryKeyRecordStore()
