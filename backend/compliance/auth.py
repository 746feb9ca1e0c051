"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT tokens and provides `get_current_user`, which
validates the bearer token and returns the corresponding `Account`
from the request's database session. `require_permission` and
`require_user_type` build dependencies on top of it for the admin and
company endpoints.

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


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
    db: Session = Depends(get_session),
) -> models.Account:
    """FastAPI dependency that returns the authenticated account.

    Raises 401 for any token problem and 403 for a deactivated account.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    account = repositories.AccountRepository(db).get(user_id)
    if not account:
        raise HTTPException(status_code=401, detail='user not found')
    if not account.is_active:
        raise HTTPException(status_code=403, detail='account disabled')
    return account


def require_permission(flag: str):
    """Dependency factory: the caller must hold permission `flag`."""
    def dependency(account: models.Account = Depends(get_current_user)) -> models.Account:
        if not getattr(account, flag, False):
            raise HTTPException(status_code=403, detail=f'permission required: {flag}')
        return account
    return dependency


def require_user_type(*user_types: models.UserType):
    def dependency(account: models.Account = Depends(get_current_user)) -> models.Account:
        if account.user_type not in user_types:
            raise HTTPException(status_code=403, detail='access denied for this account type')
        return account
    return dependency
