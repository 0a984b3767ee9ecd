"""
Authorization dependencies for FastAPI routes.

``get_current_user`` runs the full check for every request: bearer token
present, signature and expiry valid, user exists and is active, token still in
the user's session ledger. Nothing is cached between requests.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import decode_token
from .crud import authorize_session
from .errors import AuthenticationError, Forbidden, MissingToken
from .models.users import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Optional[str]:
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


async def authenticate_token(token: Optional[str]) -> User:
    if not token:
        raise MissingToken()
    # expiry is decided by the codec before the ledger is consulted
    claims = decode_token(token)
    return await authorize_session(claims['user_id'], token)


async def get_current_user(request: Request, token: Optional[str] = Depends(get_bearer_token)) -> User:
    user = await authenticate_token(token)
    request.state.user = user
    request.state.token = token
    return user


async def get_optional_user(request: Request, token: Optional[str] = Depends(get_bearer_token)) -> Optional[User]:
    """Same checks as get_current_user, but a rejection means anonymous."""
    request.state.user = None
    request.state.token = None
    if not token:
        return None
    try:
        user = await authenticate_token(token)
    except AuthenticationError as e:
        logger.info({'msg': 'optional_auth_anonymous', 'kind': e.kind, 'path': request.url.path})
        return None
    request.state.user = user
    request.state.token = token
    return user


def require_role(*roles: str):
    """Dependency factory gating a route on the resolved user's role."""
    allowed = frozenset(roles)

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise Forbidden(f'role {current_user.role!r} not in {sorted(allowed)}')
        return current_user

    return checker


require_organizer = require_role('organizer', 'admin')
require_admin = require_role('admin')
