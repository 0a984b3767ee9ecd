import os
import re
import logging
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
import secrets
import hashlib

from .errors import MalformedToken, InvalidSignature, TokenExpired

logger = logging.getLogger(__name__)

DEV_SECRET = 'devsecret'

# Prefer JWT_SECRET but support legacy JWT_SECRET_KEY for compatibility
SECRET = os.getenv('JWT_SECRET') or os.getenv('JWT_SECRET_KEY', DEV_SECRET)
ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')

_DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400}


def parse_duration(value: str) -> int:
    """Parse '3600', '30m', '24h' or '7d' into seconds."""
    match = re.fullmatch(r'\s*(\d+)\s*([smhd]?)\s*', value or '')
    if not match:
        raise ValueError(f'invalid duration: {value!r}')
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit or 's']


TOKEN_LIFETIME_SECONDS = parse_duration(
    os.getenv('TOKEN_LIFETIME_SECONDS') or os.getenv('JWT_EXPIRES_IN', '24h')
)


def utcnow() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_timestamp(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def _from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_access_token(user_id: int, expires_delta: timedelta = None) -> str:
    """Mint a signed bearer token for ``user_id``.

    A random ``jti`` makes every issuance distinct even within the same second.
    """
    now = utcnow()
    if expires_delta is None:
        expires_delta = timedelta(seconds=TOKEN_LIFETIME_SECONDS)
    to_encode = {
        'sub': str(user_id),
        'iat': _to_timestamp(now),
        'exp': _to_timestamp(now + expires_delta),
        'jti': secrets.token_urlsafe(16),
    }
    return jwt.encode(to_encode, SECRET, algorithm=ALGORITHM)


def decode_token(token: str, allow_expired: bool = False) -> dict:
    """Verify ``token`` and return ``{'user_id', 'expires_at', 'jti'}``.

    Raises MalformedToken when the structure cannot be parsed, InvalidSignature
    when the signature does not match, TokenExpired once the current time is
    past the embedded expiry (unless ``allow_expired``).
    """
    try:
        jwt.get_unverified_header(token)
    except JWTError as e:
        raise MalformedToken(str(e)) from e
    try:
        payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM], options={'verify_exp': False})
    except JWTError as e:
        raise InvalidSignature(str(e)) from e

    try:
        user_id = int(payload['sub'])
        exp = int(payload['exp'])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedToken('missing or invalid claims') from e

    expires_at = _from_timestamp(exp)
    if not allow_expired and utcnow() > expires_at:
        raise TokenExpired(f'token expired at {expires_at.isoformat()}')
    return {'user_id': user_id, 'expires_at': expires_at, 'jti': payload.get('jti')}
