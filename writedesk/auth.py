"""
Authentication utilities for JWT bearer tokens.

Identity is issued by an external provider; this service only verifies the
token signature and turns its claims into an ``Actor``.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .config import get_settings
from .models.enums import Role
from .workflow.actor import Actor

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

_ROLES = {role.value for role in Role}


def create_access_token(
    user_id: int,
    role: str,
    organization_id: Optional[int] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token carrying the actor claims."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": str(user_id),  # JWT sub claim must be a string
        "role": role,
        "org": organization_id,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, expected_type: str = "access") -> Optional[dict]:
    """Verify a JWT token and return its payload."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        token_type = payload.get("type", "access")
        if token_type != expected_type:
            return None
        return payload
    except JWTError:
        return None


def actor_from_token(token: str) -> Optional[Actor]:
    payload = verify_token(token, "access")
    if not payload:
        return None

    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        return None

    role = payload.get("role")
    if role not in _ROLES:
        return None

    organization_id = payload.get("org")
    if organization_id is not None:
        try:
            organization_id = int(organization_id)
        except (ValueError, TypeError):
            return None

    return Actor(id=user_id, role=role, organization_id=organization_id)


def get_current_actor(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Actor]:
    """Get the current actor from the bearer token (optional auth)."""
    if not token:
        return None
    return actor_from_token(token)


def get_required_actor(current_actor: Optional[Actor] = Depends(get_current_actor)) -> Actor:
    """Get the current actor, raising 401 if not authenticated."""
    if not current_actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current_actor
