from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from . import Base


class SessionToken(Base):
    """One entry of a user's session ledger.

    Only the SHA-256 of the bearer token is stored; ``expires_at`` mirrors the
    expiry embedded in the token so pruning needs no raw token.
    """
    __tablename__ = 'session_tokens'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    token_hash = Column(String(128), unique=True, nullable=False, index=True)
    user_agent = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)
    last_used = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<SessionToken(id={self.id}, user_id={self.user_id}, expires_at={self.expires_at})>"
