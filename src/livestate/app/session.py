"""
Session Management

Resolves the client session for a request, persists sessions in a pluggable
store and issues the nonces that protect the action endpoint.
"""

import hashlib
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from ..config import SecurityConfig
from ..persistence.database import SessionRecord, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    """A resolved client session."""
    session_id: str
    token: str
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    is_new: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) > as_utc(self.expires_at)


class SessionStore(ABC):
    """Where sessions live between requests."""

    @abstractmethod
    def find_by_token(self, token: str) -> Optional[SessionInfo]:
        pass

    @abstractmethod
    def save(self, session: SessionInfo) -> None:
        pass

    @abstractmethod
    def delete(self, session_id: str) -> None:
        pass

    @abstractmethod
    def cleanup(self) -> int:
        """Delete expired sessions, returning how many were removed."""
        pass


class MemorySessionStore(SessionStore):
    """In-memory sessions for development and testing."""

    def __init__(self):
        self._sessions: Dict[str, SessionInfo] = {}

    def find_by_token(self, token: str) -> Optional[SessionInfo]:
        for session in self._sessions.values():
            if hmac.compare_digest(session.token, token):
                return session
        return None

    def save(self, session: SessionInfo) -> None:
        self._sessions[session.session_id] = replace(session, is_new=False)

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def cleanup(self) -> int:
        now = utc_now()
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class DatabaseSessionStore(SessionStore):
    """Sessions in the ``livestate_sessions`` table, shared with ``DatabaseStorage``."""

    def __init__(self, engine: Engine, create_tables: bool = True):
        self.engine = engine
        if create_tables:
            SQLModel.metadata.create_all(engine, tables=[SessionRecord.__table__])

    def find_by_token(self, token: str) -> Optional[SessionInfo]:
        with Session(self.engine) as db:
            record = db.exec(select(SessionRecord).where(SessionRecord.token == token)).first()
        if record is None:
            return None
        return SessionInfo(
            session_id=record.session_id,
            token=record.token,
            user_id=record.user_id,
            created_at=as_utc(record.created_at),
            expires_at=as_utc(record.expires_at),
        )

    def save(self, session: SessionInfo) -> None:
        with Session(self.engine) as db:
            db.merge(SessionRecord(
                session_id=session.session_id,
                token=session.token,
                user_id=session.user_id,
                created_at=session.created_at,
                last_activity=utc_now(),
                expires_at=session.expires_at,
            ))
            db.commit()

    def delete(self, session_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(SessionRecord).where(SessionRecord.session_id == session_id))

    def cleanup(self) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(SessionRecord).where(SessionRecord.expires_at < utc_now()))
            return result.rowcount or 0


class SessionManager:
    """
    Resolves and maintains client sessions.

    The token is looked up in the session header first (API calls), then the
    framework session, then the session cookie. A valid token has its expiry
    extended; anything else gets a fresh session.
    """

    SESSION_KEY = "livestate_session"

    def __init__(self, store: Optional[SessionStore] = None, config: Optional[SecurityConfig] = None, clock=time.time):
        self.store = store if store is not None else MemorySessionStore()
        self.config = config or SecurityConfig()
        self._clock = clock
        if self.config.secret_key:
            self._secret = self.config.secret_key.encode()
        else:
            logger.warning("No secret key configured; nonces will not survive a restart")
            self._secret = secrets.token_bytes(32)

    def token_from_request(self, request) -> Optional[str]:
        token = request.headers.get(self.config.session_header)
        if token:
            return token.strip()
        if "session" in request.scope:
            token = request.session.get(self.SESSION_KEY)
            if token:
                return token
        return request.cookies.get(self.config.cookie_name) or None

    def resume(self, request) -> SessionInfo:
        """Return the request's session, creating one if needed."""
        token = self.token_from_request(request)
        session = self.validate(token) if token else None
        if session is None:
            session = self.create()
        if "session" in request.scope:
            request.session[self.SESSION_KEY] = session.token
        return session

    def validate(self, token: str) -> Optional[SessionInfo]:
        """Look up a token; a live session has its expiry extended."""
        session = self.store.find_by_token(token)
        if session is None or session.is_expired():
            return None
        session.expires_at = self._expiry()
        self.store.save(session)
        return session

    def create(self, user_id: Optional[str] = None) -> SessionInfo:
        session = SessionInfo(
            session_id=f"ls_{secrets.token_hex(16)}",
            token=secrets.token_hex(32),
            user_id=user_id,
            expires_at=self._expiry(),
            is_new=True,
        )
        self.store.save(session)
        logger.debug("Created session %s", session.session_id)
        return session

    def link_user(self, session: SessionInfo, user_id: Optional[str]) -> None:
        session.user_id = user_id
        self.store.save(session)

    def destroy(self, session: SessionInfo, response=None) -> None:
        self.store.delete(session.session_id)
        if response is not None:
            response.delete_cookie(self.config.cookie_name, path="/")

    def set_cookie(self, response, session: SessionInfo, secure: bool = False) -> None:
        response.set_cookie(
            self.config.cookie_name,
            session.token,
            max_age=self.config.session_lifetime,
            path="/",
            httponly=True,
            samesite="lax",
            secure=secure,
        )

    def _expiry(self) -> datetime:
        return utc_now() + timedelta(seconds=self.config.session_lifetime)

    # Nonces

    def _tick(self, offset: int = 0) -> int:
        # Two ticks per lifetime; the previous tick is still accepted.
        span = max(self.config.nonce_lifetime // 2, 1)
        return int(self._clock() // span) + offset

    def _nonce_for(self, session_id: str, tick: int) -> str:
        message = f"{session_id}|{tick}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def generate_nonce(self, session_id: str) -> str:
        return self._nonce_for(session_id, self._tick())

    def verify_nonce(self, session_id: str, nonce: Optional[str]) -> bool:
        if not nonce:
            return False
        for offset in (0, -1):
            if hmac.compare_digest(self._nonce_for(session_id, self._tick(offset)), nonce):
                return True
        return False
