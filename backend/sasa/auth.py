"""Authentication utilities for the Sasa backend.

Tokens are issued by the account service; this module only verifies them and
turns the claims into an :class:`AuthContext` for route handlers.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

# Make bearer optional so we can return our own 401 body
security = HTTPBearer(auto_error=False)


ROLES = ("requester", "provider", "company", "supplier", "admin")


def create_access_token(
    settings: Settings,
    user_id: str,
    role: str,
    status: str = "active",
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for a user."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode = {
        "sub": user_id,
        "role": role,
        "status": status,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access",
    }
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthContext:
    """Caller identity extracted from a verified token."""

    def __init__(
        self,
        user_id: str,
        role: str,
        status: str = "active",
        email: str | None = None,
    ):
        self.user_id = user_id
        self.role = role
        self.status = status
        self.email = email

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"AuthContext(user_id={self.user_id!r}, role={self.role!r})"


def context_from_payload(payload: dict) -> AuthContext:
    """Build an AuthContext from decoded claims, rejecting incomplete tokens."""
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthContext(
        user_id=user_id,
        role=role,
        status=payload.get("status", "active"),
        email=payload.get("email"),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
    request: Request,
) -> AuthContext:
    """Get the authenticated caller and enforce account status."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth = context_from_payload(decode_token(credentials.credentials, settings))

    # Blocked and deactivated accounts keep valid tokens until expiry
    if not auth.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account is {auth.status}",
        )

    request.state.user_id = auth.user_id
    return auth


async def require_admin(auth: Annotated[AuthContext, Depends(get_current_user)]) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return auth


# Type aliases for dependency injection
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
