"""
Repository tests against the in-memory database
"""

from datetime import datetime, timedelta

import pytest

from cipherdocs.db.database import DocumentChunk
from cipherdocs.db.document_repo import DocumentRepository
from cipherdocs.db.job_repo import ProcessingJobRepository
from cipherdocs.db.key_repo import KeyRecordRepository


def test_cleanup_stale_jobs(db_session):
    repo = ProcessingJobRepository(db_session)
    old = repo.create("user-1")
    fresh = repo.create("user-1")
    old.last_updated = datetime.utcnow() - timedelta(minutes=45)
    db_session.commit()
    old_id, fresh_id = old.job_id, fresh.job_id

    assert repo.cleanup_stale(30) == 1
    assert repo.get(old_id, "user-1") is None
    assert repo.get(fresh_id, "user-1") is not None


def test_duplicate_key_record(db_session):
    repo = KeyRecordRepository(db_session)
    fields = dict(salt="c2FsdA==", enc_key_pw="YQ==", iv_pw="Yg==", enc_key_recovery="Yw==", iv_recovery="ZA==")
    repo.create("user-1", **fields)
    with pytest.raises(ValueError, match="Keys already exist"):
        repo.create("user-1", **fields)


def test_document_write_is_atomic(db_session):
    repo = DocumentRepository(db_session)
    with pytest.raises(ValueError):
        repo.create_with_chunks(
            user_id="user-1",
            name="bmFtZQ==",
            original_name="bmFtZQ==",
            doc_type="text/plain",
            encrypted_content="x",
            encrypted_metadata={},
            chunks=[
                {"chunk_number": 1, "encrypted_content": "a", "encrypted_embedding": [1.0]},
                {"chunk_number": 1, "encrypted_content": "b", "encrypted_embedding": [1.0]},
            ],
        )
    assert repo.list_for_user("user-1") == ([], 0)
    assert db_session.query(DocumentChunk).count() == 0


def test_progress_for_another_users_job_is_rejected(db_session):
    repo = ProcessingJobRepository(db_session)
    repo.upsert_progress("job-1", "user-1", 10, "extracting")

    assert repo.upsert_progress("job-1", "user-2", 50, "embedding") is None
    job = repo.get("job-1", "user-1")
    assert job.progress == 10
    assert job.status == "extracting"
