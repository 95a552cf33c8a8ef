from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from jwt import PyJWTError
from sqlalchemy.orm import Session

from core.db import get_db
from models.business import ManagerProfile
from models.user import User, UserRole
from security import jwt as jwt_utils


def _user_from_header(db: Session, authorization: Optional[str]) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt_utils.decode_access(token)
    except PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.get(User, str(payload.get("sub")))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    return _user_from_header(db, authorization)


def get_optional_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> Optional[User]:
    """Caller identity when a bearer token is sent, None for anonymous calls."""
    if not authorization:
        return None
    return _user_from_header(db, authorization)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_current_manager(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> ManagerProfile:
    manager = db.query(ManagerProfile).filter(ManagerProfile.user_id == user.id).one_or_none()
    if not manager:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manager profile not found")
    return manager
