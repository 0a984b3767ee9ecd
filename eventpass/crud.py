import os
import logging
from contextlib import asynccontextmanager
from datetime import timedelta, timezone
from passlib.context import CryptContext
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import AsyncSessionLocal
from .models.users import User, ROLES
from .auth import create_access_token, decode_token, utcnow
from .core import LOGINS, SESSIONS_REVOKED
from .errors import (
    AccountDisabled,
    EmailTaken,
    InvalidCredentials,
    LOGIN_FAILED_MESSAGE,
    SessionRevoked,
    StorageError,
    UserNotFound,
    WeakPassword,
)

logger = logging.getLogger(__name__)

MAX_ACTIVE_SESSIONS = int(os.getenv('MAX_ACTIVE_SESSIONS', '10'))
LOGIN_HISTORY_LIMIT = int(os.getenv('LOGIN_HISTORY_LIMIT', '10'))
MIN_PASSWORD_LENGTH = 6
# matches the user_agent column width
USER_AGENT_MAX_LENGTH = 255

BCRYPT_ROUNDS = int(os.getenv('BCRYPT_ROUNDS', '12'))

pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto', bcrypt__rounds=BCRYPT_ROUNDS)


@asynccontextmanager
async def unit_of_work():
    """One database session per operation; storage failures become StorageError."""
    try:
        async with AsyncSessionLocal() as session:
            yield session
    except (SQLAlchemyError, OSError) as e:
        logger.error({'msg': 'storage_error', 'error': str(e)})
        raise StorageError(str(e)) from e


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def _load_user(session, user_id: int) -> User | None:
    # row lock serialises read-modify-write of one ledger where the backend supports it
    q = await session.execute(select(User).where(User.id == user_id).with_for_update())
    return q.scalars().first()


def _prune(user: User, now) -> int:
    pruned = user.prune_expired(now)
    if pruned:
        SESSIONS_REVOKED.labels(reason='expired').inc(pruned)
    return pruned


def _open_session(user: User, user_agent: str | None, ip: str | None) -> str:
    """Issue a token for ``user`` and record it in the ledger (caller commits)."""
    now = utcnow()
    if user_agent:
        user_agent = user_agent[:USER_AGENT_MAX_LENGTH]
    _prune(user, now)
    token = create_access_token(user.id)
    claims = decode_token(token)
    user.add_session(
        token,
        expires_at=claims['expires_at'],
        now=now,
        user_agent=user_agent,
        ip_address=ip,
        max_sessions=MAX_ACTIVE_SESSIONS,
    )
    user.record_login(now, user_agent=user_agent, ip_address=ip, history_limit=LOGIN_HISTORY_LIMIT)
    return token


async def create_user(payload, user_agent: str | None = None, ip: str | None = None):
    """Register a user and log them in. Returns ``(token, user)``."""
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()
    email = normalize_email(payload.email)
    async with unit_of_work() as session:
        q = await session.execute(select(User.id).where(User.email == email))
        if q.scalars().first() is not None:
            raise EmailTaken(email)
        now = utcnow()
        first_name = payload.first_name.strip()
        last_name = payload.last_name.strip()
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            name=f'{first_name} {last_name}',
            hashed_password=pwd_ctx.hash(payload.password),
            role='organizer' if payload.is_organizer else 'attendee',
            is_active=True,
            created_at=now,
            is_online=False,
            session_count=0,
            active_tokens=[],
            login_history=[],
        )
        session.add(user)
        try:
            # the token embeds the primary key
            await session.flush()
        except IntegrityError as e:
            await session.rollback()
            raise EmailTaken(email) from e
        token = _open_session(user, user_agent, ip)
        await session.commit()
    logger.info({'msg': 'user_registered', 'user_id': user.id, 'role': user.role})
    LOGINS.labels(outcome='registered').inc()
    return token, user


async def authenticate_user(email: str, password: str, user_agent: str | None = None, ip: str | None = None):
    """Verify credentials and open a new session. Returns ``(token, user)``."""
    async with unit_of_work() as session:
        q = await session.execute(select(User).where(User.email == normalize_email(email)).with_for_update())
        user = q.scalars().first()
        if user is None:
            # equalise timing with the known-user path
            pwd_ctx.dummy_verify()
            LOGINS.labels(outcome='invalid_credentials').inc()
            raise InvalidCredentials('unknown email')
        if not pwd_ctx.verify(password, user.hashed_password):
            LOGINS.labels(outcome='invalid_credentials').inc()
            raise InvalidCredentials(f'bad password for user {user.id}')
        if not user.is_active:
            LOGINS.labels(outcome='account_disabled').inc()
            raise AccountDisabled(f'user {user.id} is deactivated', public_message=LOGIN_FAILED_MESSAGE)
        token = _open_session(user, user_agent, ip)
        await session.commit()
    logger.info({'msg': 'user_logged_in', 'user_id': user.id, 'sessions': user.session_count})
    LOGINS.labels(outcome='success').inc()
    return token, user


async def authorize_session(user_id: int, token: str) -> User:
    """Cross-check an already verified token against its owner's ledger.

    Prunes expired sessions, rejects unknown or disabled users and tokens that
    are no longer in the ledger, then records the activity.
    """
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        if not user.is_active:
            raise AccountDisabled(f'user {user_id} is deactivated')
        now = utcnow()
        pruned = _prune(user, now)
        if not user.has_session(token):
            if pruned:
                await session.commit()
            raise SessionRevoked(f'token not in ledger of user {user_id}')
        user.touch_session(token, now)
        await session.commit()
    return user


async def logout(user_id: int, token: str) -> bool:
    """Remove one session. Idempotent: an absent token or user is not an error."""
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            return False
        now = utcnow()
        removed = user.remove_session(token)
        _prune(user, now)
        if removed:
            user.record_logout(now)
        await session.commit()
    if removed:
        SESSIONS_REVOKED.labels(reason='logout').inc()
        logger.info({'msg': 'user_logged_out', 'user_id': user_id, 'sessions': user.session_count})
    return removed


async def revoke_all_sessions(user_id: int) -> int:
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        now = utcnow()
        removed = user.remove_all_sessions(now)
        user.record_logout(now, close_all=True)
        await session.commit()
    SESSIONS_REVOKED.labels(reason='revoke_all').inc(removed)
    logger.info({'msg': 'sessions_revoked', 'user_id': user_id, 'count': removed})
    return removed


async def list_sessions(user_id: int) -> list[dict]:
    """Session metadata in creation order. Token values are never returned."""
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        if _prune(user, utcnow()):
            await session.commit()
        return [
            {
                'created_at': s.created_at,
                'last_used': s.last_used,
                'user_agent': s.user_agent,
                'ip_address': s.ip_address,
            }
            for s in user.active_tokens
        ]


async def get_user_by_id(user_id: int):
    async with unit_of_work() as session:
        return await _load_user(session, user_id)


async def change_password(user_id: int, current_password: str, new_password: str):
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        if not pwd_ctx.verify(current_password, user.hashed_password):
            raise InvalidCredentials('current password mismatch', public_message='Current password is incorrect')
        user.hashed_password = pwd_ctx.hash(new_password)
        await session.commit()
    logger.info({'msg': 'password_changed', 'user_id': user_id})


async def deactivate_user(user_id: int):
    """Disable the account and revoke every session; the row is kept.

    The email is rewritten to ``deleted_<timestamp>_<email>`` so the address
    can be registered again.
    """
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        now = utcnow()
        user.is_active = False
        user.email = f'deleted_{int(now.replace(tzinfo=timezone.utc).timestamp())}_{user.email}'[:255]
        removed = user.remove_all_sessions(now)
        user.record_logout(now, close_all=True)
        await session.commit()
    SESSIONS_REVOKED.labels(reason='deactivated').inc(removed)
    logger.info({'msg': 'account_deactivated', 'user_id': user_id})


async def set_user_role(user_id: int, role: str):
    if role not in ROLES:
        raise ValueError(f"unknown role: {role!r}")
    async with unit_of_work() as session:
        user = await _load_user(session, user_id)
        if user is None:
            raise UserNotFound(f'user {user_id}')
        user.role = role
        await session.commit()
        return user


async def auth_stats() -> dict:
    week_ago = utcnow() - timedelta(days=7)
    async with unit_of_work() as session:
        active = User.is_active.is_(True)
        total_users = await session.scalar(select(func.count(User.id)).where(active))
        online_users = await session.scalar(select(func.count(User.id)).where(active, User.is_online.is_(True)))
        recent_logins = await session.scalar(select(func.count(User.id)).where(User.last_login >= week_ago))
        total_sessions = await session.scalar(select(func.coalesce(func.sum(User.session_count), 0)).where(active))
    return {
        'total_users': total_users or 0,
        'online_users': online_users or 0,
        'recent_logins': recent_logins or 0,
        'total_active_sessions': total_sessions or 0,
    }


async def list_users_status(page: int = 1, limit: int = 10):
    """Active users ordered by most recent activity. Returns ``(users, total)``."""
    async with unit_of_work() as session:
        active = User.is_active.is_(True)
        total = await session.scalar(select(func.count(User.id)).where(active))
        q = await session.execute(
            select(User)
            .where(active)
            .order_by(User.last_activity.desc().nulls_last(), User.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return q.scalars().all(), total or 0
