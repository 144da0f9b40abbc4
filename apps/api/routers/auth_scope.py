"""Authentication dependencies for API user scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import CoreConfig
from routers.deps import get_core_config
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def _context_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthContext:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(user_id=claims.user_id, email=claims.email)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    return _context_from_credentials(credentials)


async def get_optional_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Like get_auth_context, but None instead of 401 when no valid token is sent."""
    try:
        return _context_from_credentials(credentials)
    except HTTPException:
        return None


async def require_admin(
    auth: AuthContext = Depends(get_auth_context),
    config: CoreConfig = Depends(get_core_config),
) -> AuthContext:
    """Allow only callers whose email is listed in ADMIN_EMAILS."""
    if not auth.email:
        raise HTTPException(status_code=401, detail="Authentication required")
    if auth.email.lower() not in config.admin_emails:
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth
