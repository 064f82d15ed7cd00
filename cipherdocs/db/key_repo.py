"""
Key Record Repository

Storage for wrapped master keys and the encrypted search key material.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cipherdocs.db.database import UserKeys


class KeyRecordRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_user_id(self, user_id: str) -> Optional[UserKeys]:
        return self.db.query(UserKeys).filter(UserKeys.user_id == user_id).first()

    def create(
        self,
        user_id: str,
        salt: str,
        enc_key_pw: str,
        iv_pw: str,
        enc_key_recovery: str,
        iv_recovery: str,
        encrypted_search_key_material: Optional[str] = None,
    ) -> UserKeys:
        """
        Create the key record for a user.
        Raises ValueError if one already exists; the master key is never replaced.
        """
        if self.get_by_user_id(user_id):
            raise ValueError("Keys already exist")

        record = UserKeys(
            user_id=user_id,
            salt=salt,
            enc_key_pw=enc_key_pw,
            iv_pw=iv_pw,
            enc_key_recovery=enc_key_recovery,
            iv_recovery=iv_recovery,
            encrypted_search_key_material=encrypted_search_key_material,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValueError("Keys already exist")
        self.db.refresh(record)
        return record

    def update_password_wrap(self, user_id: str, enc_key_pw: str, iv_pw: str) -> Optional[UserKeys]:
        """Replace only the password wrap. The recovery wrap is untouched."""
        record = self.get_by_user_id(user_id)
        if not record:
            return None
        record.enc_key_pw = enc_key_pw
        record.iv_pw = iv_pw
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_search_key_material(self, user_id: str) -> Optional[str]:
        record = self.get_by_user_id(user_id)
        return record.encrypted_search_key_material if record else None

    def set_search_key_material(self, user_id: str, encrypted: str) -> Optional[UserKeys]:
        record = self.get_by_user_id(user_id)
        if not record:
            return None
        record.encrypted_search_key_material = encrypted
        self.db.commit()
        self.db.refresh(record)
        return record

    def clear_search_key_material(self, user_id: str) -> bool:
        record = self.get_by_user_id(user_id)
        if not record:
            return False
        record.encrypted_search_key_material = None
        self.db.commit()
        return True
