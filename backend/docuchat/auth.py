import logging
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from . import audit
from .config import SESSION_COOKIE_NAME
from .database import supabase

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Bearer header first, then the session cookie set by the web client."""
    if credentials and credentials.credentials:
        return credentials.credentials
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    return cookie or None


def token_subject(token: str) -> Optional[str]:
    """Read the ``sub`` claim without verifying the signature.

    Only used to key rate limits; authorization always goes through
    :func:`resolve_user`.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    sub = claims.get("sub")
    return str(sub) if sub else None


def resolve_user(token: str) -> Optional[Dict]:
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.info("Token rejected by auth backend: %s", e)
        return None
    user = getattr(response, "user", None) if response else None
    if user is None:
        return None
    return {"id": str(user.id), "email": getattr(user, "email", None)}


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict:
    token = extract_token(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authorization header",
        )
    user = resolve_user(token)
    if not user:
        audit.log_event(
            audit.AUTH_TOKEN_REJECTED,
            ip_address=request.client.host if request.client else None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user
