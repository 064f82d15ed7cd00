from fastapi import Header, HTTPException, status


def get_current_user_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """User identity is established upstream by the auth gateway"""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity"
        )
    return user_id
