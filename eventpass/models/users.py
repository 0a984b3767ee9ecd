from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from . import Base
from .session_tokens import SessionToken
from .login_history import LoginHistory
from ..auth import hash_token

ROLES = ('attendee', 'organizer', 'admin')


def _forward(current: datetime | None, now: datetime) -> datetime:
    """Timestamps on the user only ever move forward."""
    if current is None or now > current:
        return now
    return current


class User(Base):
    """User aggregate. ``active_tokens`` is its session ledger.

    ``session_count`` and ``is_online`` are derived from the ledger and are
    recomputed after every mutation, never adjusted independently.
    """
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(150), nullable=False)
    last_name = Column(String(150), nullable=False)
    name = Column(String(301), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default='attendee')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    last_login = Column(DateTime, nullable=True)
    last_logout = Column(DateTime, nullable=True)
    last_activity = Column(DateTime, nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)
    session_count = Column(Integer, nullable=False, default=0)

    active_tokens = relationship(
        SessionToken, order_by=SessionToken.id, cascade='all, delete-orphan', lazy='selectin'
    )
    login_history = relationship(
        LoginHistory, order_by=LoginHistory.id, cascade='all, delete-orphan', lazy='selectin'
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}', sessions={self.session_count})>"

    # ledger

    def _refresh_status(self):
        self.session_count = len(self.active_tokens)
        self.is_online = self.session_count > 0

    def find_session(self, token: str) -> SessionToken | None:
        token_hash = hash_token(token)
        for session in self.active_tokens:
            if session.token_hash == token_hash:
                return session
        return None

    def has_session(self, token: str) -> bool:
        return self.find_session(token) is not None

    def add_session(self, token: str, expires_at: datetime, now: datetime,
                    user_agent: str = None, ip_address: str = None, max_sessions: int = 0) -> SessionToken:
        session = SessionToken(
            token_hash=hash_token(token),
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=now,
            last_used=now,
            expires_at=expires_at,
        )
        self.active_tokens.append(session)
        if max_sessions and len(self.active_tokens) > max_sessions:
            # oldest first
            del self.active_tokens[:len(self.active_tokens) - max_sessions]
        self.last_activity = _forward(self.last_activity, now)
        self._refresh_status()
        return session

    def touch_session(self, token: str, now: datetime) -> bool:
        session = self.find_session(token)
        if session is None:
            return False
        session.last_used = max(now, session.created_at, session.last_used)
        self.last_activity = _forward(self.last_activity, now)
        return True

    def remove_session(self, token: str) -> bool:
        session = self.find_session(token)
        if session is not None:
            self.active_tokens.remove(session)
        self._refresh_status()
        return session is not None

    def remove_all_sessions(self, now: datetime) -> int:
        removed = len(self.active_tokens)
        del self.active_tokens[:]
        self.last_logout = _forward(self.last_logout, now)
        self._refresh_status()
        return removed

    def prune_expired(self, now: datetime) -> int:
        expired = [s for s in self.active_tokens if now > s.expires_at]
        for session in expired:
            self.active_tokens.remove(session)
        self._refresh_status()
        return len(expired)

    # login bookkeeping

    def record_login(self, now: datetime, user_agent: str = None, ip_address: str = None, history_limit: int = 10):
        self.last_login = _forward(self.last_login, now)
        self.login_history.append(LoginHistory(login_at=now, user_agent=user_agent, ip_address=ip_address))
        if history_limit and len(self.login_history) > history_limit:
            del self.login_history[:len(self.login_history) - history_limit]

    def record_logout(self, now: datetime, close_all: bool = False):
        self.last_logout = _forward(self.last_logout, now)
        for entry in reversed(self.login_history):
            if entry.logout_at is None:
                entry.logout_at = now
                if not close_all:
                    break

    @property
    def auth_status(self) -> dict:
        return {
            'is_online': self.is_online,
            'last_activity': self.last_activity,
            'last_login': self.last_login,
            'last_logout': self.last_logout,
            'session_count': self.session_count,
            'active_tokens_count': len(self.active_tokens),
        }
