"""
Authentication Utility - JWT verification.

Tokens are issued by the platform's identity service; the engine only
verifies them and turns the claims into an Actor.

Provides:
- JWT token creation (used by scripts and tests) and verification
- FastAPI dependencies for protected routes
"""

from datetime import timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from assessment_engine.core.config import get_settings
from assessment_engine.schemas.schemas import Actor, UserRole
from assessment_engine.utils.helpers import utcnow

# Bearer token extractor
bearer_scheme = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Actor:
    """
    FastAPI dependency - Get current authenticated user.

    Usage:
        @router.get("/protected")
        def route(actor: Actor = Depends(get_current_user)):
            return actor
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    return Actor(
        user_id=str(user_id),
        role=payload.get("role", UserRole.student.value),
        name=payload.get("name"),
        email=payload.get("email"),
    )


async def get_current_admin(actor: Actor = Depends(get_current_user)) -> Actor:
    """Dependency - Require admin or superadmin role."""
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return actor
