import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

import config
import models
from database import get_db
from errors import Forbidden, Unauthorized
from permissions import effective_permissions

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="auth/login",
    # Missing tokens are reported by `authenticate` so every 401 has the same body.
    auto_error=False,
)


@dataclass(frozen=True)
class Subject:
    """Identity carried by a verified access token."""
    id: int
    email: str


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against a hash. Users without a password never match."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate a password hash."""
    return pwd_context.hash(password)


def create_access_token(user: models.User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT for `user`. `role` is informational; authorization never reads it."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "exp": expire,
    }
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def authenticate(token: Optional[str]) -> Subject:
    """Verify `token` and return its subject. Never touches storage."""
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.info("Rejected access token: %s", e)
        raise Unauthorized("Could not validate credentials")

    sub = payload.get("sub")
    email = payload.get("email")
    if not sub or not email:
        raise Unauthorized("Could not validate credentials")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise Unauthorized("Could not validate credentials")
    return Subject(id=user_id, email=email)


def get_subject(token: Optional[str] = Depends(oauth2_scheme)) -> Subject:
    return authenticate(token)


def load_user(db: Session, subject: Subject) -> Optional[models.User]:
    """Fetch the subject's user record, or None when it is gone or deactivated."""
    user = db.query(models.User).filter(models.User.email == subject.email).first()
    if user is None or not user.is_active:
        return None
    return user


def user_permissions(user: Optional[models.User]) -> FrozenSet[str]:
    if user is None:
        return frozenset()
    return effective_permissions(user.role, user.permissions or [])


def authorize(db: Session, subject: Subject, permission: str) -> models.User:
    """Return the subject's user when it holds `permission`, else raise Forbidden.

    Effective permissions are re-read from storage on every call, so role and
    grant changes apply to the very next request. A missing or inactive user
    holds no permissions at all.
    """
    user = load_user(db, subject)
    granted = user_permissions(user)
    if permission not in granted:
        logger.warning("Denied %s to %s (user %s)", permission, subject.email,
                       "unknown" if user is None else user.id)
        raise Forbidden(required=permission, has=list(granted))
    return user


def require_permission(permission: str) -> Callable[..., models.User]:
    """Dependency factory: `Depends(require_permission("books:read"))` yields the authorized user."""

    def dependency(subject: Subject = Depends(get_subject), db: Session = Depends(get_db)) -> models.User:
        return authorize(db, subject, permission)

    dependency.__name__ = f"require_{permission.replace(':', '_')}"
    return dependency


def get_current_user(subject: Subject = Depends(get_subject), db: Session = Depends(get_db)) -> models.User:
    """The authenticated, active user, for endpoints that act on the caller's own record."""
    user = load_user(db, subject)
    if user is None:
        raise Forbidden("User not found or inactive")
    return user
