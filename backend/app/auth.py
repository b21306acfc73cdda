"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens, a dependency
`get_current_user` that validates the bearer token and returns the
corresponding `User`, and `require_roles` which additionally restricts a
route to a set of roles.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .services import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    Rejects missing or bad tokens (401), tokens issued before the user's
    last password change (401) and deleted or blocked users (403).
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail='You are not authorized')
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(session).find_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    if user.is_deleted:
        raise HTTPException(status_code=403, detail='This user is deleted')
    if user.status == models.UserStatus.blocked:
        raise HTTPException(status_code=403, detail='This user is blocked')
    if AuthService.token_predates_password_change(user, int(payload.get('iat', 0))):
        raise HTTPException(status_code=401, detail='You are not authorized')
    return user


def require_roles(*roles: models.UserRole):
    """Build a dependency that admits only users holding one of `roles`."""
    allowed = {models.UserRole(r) for r in roles}

    def dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail='forbidden')
        return user

    return dependency
