import re
from typing import Optional
from urllib.parse import urlparse


def validate_password_strength(password: str) -> tuple[bool, Optional[str]]:
    """
    Validate password strength.
    Rules: At least 8 characters, contains uppercase, lowercase, digit, and special character.
    """
    if not password or len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if not re.search(r'[A-Z]', password):
        return False, "Password must contain at least one uppercase letter"

    if not re.search(r'[a-z]', password):
        return False, "Password must contain at least one lowercase letter"

    if not re.search(r'\d', password):
        return False, "Password must contain at least one digit"

    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', password):
        return False, "Password must contain at least one special character"

    return True, None


def validate_url(url: str) -> tuple[bool, Optional[str]]:
    """
    Validate a website URL.
    Rules: absolute http(s) URL with a host.
    """
    if not url or not url.strip():
        return False, "URL is required"

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        return False, "URL must start with http:// or https://"

    if not parsed.netloc or not parsed.hostname:
        return False, "URL must include a host"

    return True, None


def sanitize_text(content: str) -> str:
    """
    Sanitize extracted text.
    Remove null bytes and other control characters, keep newlines and tabs.
    """
    content = content.replace('\x00', '')
    return re.sub(r'[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]', '', content)
