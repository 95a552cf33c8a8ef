from typing import Any, Dict

import jwt

from core.config import settings


def decode_access(token: str) -> Dict[str, Any]:
    """Claims of an access token issued by the auth service."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
