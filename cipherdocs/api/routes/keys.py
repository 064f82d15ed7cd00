"""
CipherDocs Key Management API Routes
Stores wrapped master keys and encrypted search key material.
The server never receives a password, recovery key or unwrapped key.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cipherdocs.api.deps import get_current_user_id
from cipherdocs.db.database import get_db
from cipherdocs.db.key_repo import KeyRecordRepository
from cipherdocs.models.keys import (
    KeyRecordCreate,
    KeyRecordResponse,
    PasswordWrapUpdate,
    SearchKeyMaterialResponse,
    SearchKeyMaterialUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=KeyRecordResponse)
async def get_key_record(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Fetch the wrapped key record needed to unlock the master key"""
    record = KeyRecordRepository(db).get_by_user_id(user_id)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encryption keys not found"
        )
    return record


@router.post("", response_model=KeyRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_key_record(
    record: KeyRecordCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Store the key record created at signup.
    A second record for the same user is rejected; the master key is never replaced.
    """
    try:
        created = KeyRecordRepository(db).create(user_id=user_id, **record.model_dump())
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    logger.info(f"🔑 Key record created for user {user_id}")
    return created


@router.put("/password", response_model=KeyRecordResponse)
async def update_password_wrap(
    update: PasswordWrapUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Replace the password-wrapped copy of the master key"""
    record = KeyRecordRepository(db).update_password_wrap(user_id, update.enc_key_pw, update.iv_pw)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encryption keys not found"
        )
    logger.info(f"🔄 Password wrap updated for user {user_id}")
    return record


@router.get("/search-material", response_model=SearchKeyMaterialResponse)
async def get_search_key_material(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    repo = KeyRecordRepository(db)
    if not repo.get_by_user_id(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encryption keys not found"
        )
    return SearchKeyMaterialResponse(encrypted_search_key_material=repo.get_search_key_material(user_id))


@router.put("/search-material", response_model=SearchKeyMaterialResponse)
async def store_search_key_material(
    update: SearchKeyMaterialUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    record = KeyRecordRepository(db).set_search_key_material(user_id, update.encrypted_search_key_material)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encryption keys not found"
        )
    return SearchKeyMaterialResponse(encrypted_search_key_material=record.encrypted_search_key_material)


@router.delete("/search-material", status_code=status.HTTP_204_NO_CONTENT)
async def clear_search_key_material(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    if not KeyRecordRepository(db).clear_search_key_material(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encryption keys not found"
        )
