"""Authentication module for bearer tokens issued by the session provider.

This module provides:
1. Verification of HS256 JWTs whose `sub` claim is the user id
2. Token issuing for local tooling and tests
3. A FastAPI dependency for protecting routes
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, ExpiredSignatureError, JWTError

from config import Settings, get_settings

# Configure logging
logger = logging.getLogger(__name__)

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a token has expired."""
    pass

def create_token(user_id: str, settings: Settings, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Issue a token the way the session provider does."""
    if not settings.jwt_secret:
        raise AuthError("JWT secret is not configured")
    now = datetime.now(timezone.utc)
    claims = {'sub': user_id, 'iat': now, 'exp': now + expires_in}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)

def verify_token(token: str, settings: Settings) -> str:
    """Verify a bearer token.

    Args:
        token: Encoded JWT
        settings: Settings holding the shared secret and algorithm

    Returns:
        The user id from the `sub` claim

    Raises:
        SessionExpiredError: If the token has expired
        AuthError: If the token is invalid
    """
    if not settings.jwt_secret:
        raise AuthError("JWT secret is not configured")

    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise SessionExpiredError("Session has expired")
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}")

    user_id: Optional[str] = claims.get('sub')
    if not user_id:
        raise AuthError("Token has no subject")
    return user_id

auth_scheme = HTTPBearer(auto_error=False)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    settings: Settings = Depends(get_settings)
) -> str:
    """FastAPI dependency for getting the authenticated user.

    Returns:
        The authenticated user id

    Raises:
        HTTPException: If authentication fails
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={'WWW-Authenticate': 'Bearer'}
        )
    try:
        return verify_token(credentials.credentials, settings)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired",
            headers={'WWW-Authenticate': 'Bearer'}
        )
    except AuthError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={'WWW-Authenticate': 'Bearer'}
        )

# Export public interface
__all__ = [
    'get_current_user',
    'create_token',
    'verify_token',
    'AuthError',
    'SessionExpiredError'
]
