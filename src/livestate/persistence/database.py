"""
LiveState Persistence Layer - Database Storage

Durable storage for ``persist=database`` states on SQLModel tables. One row
per (session, state name) holding the snapshot as JSON text.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from ..errors import PersistError
from .base import SHARED_SESSION_ID, StateStorage, storage_key

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from databases without timezone support."""
    if value is None or value.utcoffset() is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class StateRecord(SQLModel, table=True):
    """Stored snapshot of one state for one session."""
    __tablename__ = "livestate_state"
    __table_args__ = {'extend_existing': True}

    session_id: str = Field(primary_key=True, max_length=64)
    state_name: str = Field(primary_key=True, max_length=255)
    data: str = "{}"
    updated_at: datetime = Field(default_factory=utc_now)


class SessionRecord(SQLModel, table=True):
    """A client session. State rows without a live session are expired."""
    __tablename__ = "livestate_sessions"
    __table_args__ = {'extend_existing': True}

    session_id: str = Field(primary_key=True, max_length=64)
    token: str = Field(index=True, unique=True, max_length=128)
    user_id: Optional[str] = Field(default=None, index=True)
    data: str = "{}"
    created_at: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    expires_at: datetime = Field(default_factory=lambda: utc_now() + timedelta(days=1), index=True)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo)


class DatabaseStorage(StateStorage):
    """
    State storage on a SQL database.

    Args:
        engine: SQLAlchemy engine; tables are created on construction
    """

    durable = True

    def __init__(self, engine: Engine, create_tables: bool = True):
        super().__init__()
        self.engine = engine
        if create_tables:
            SQLModel.metadata.create_all(engine, tables=[StateRecord.__table__, SessionRecord.__table__])

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> 'DatabaseStorage':
        return cls(make_engine(database_url, echo=echo))

    def get(self, session_id: str, name: str) -> Dict[str, Any]:
        try:
            with Session(self.engine) as session:
                record = session.get(StateRecord, (session_id, name))
        except SQLAlchemyError as e:
            raise PersistError(f"Failed to load state '{name}': {e}") from e
        if record is None:
            return {}
        return json.loads(record.data)

    def save(self, session_id: str, name: str, data: Dict[str, Any]) -> None:
        payload = json.dumps(to_jsonable_python(data))
        with self.lock_for(storage_key(session_id, name)):
            try:
                with Session(self.engine) as session:
                    session.merge(StateRecord(
                        session_id=session_id,
                        state_name=name,
                        data=payload,
                        updated_at=utc_now(),
                    ))
                    session.commit()
            except SQLAlchemyError as e:
                raise PersistError(f"Failed to save state '{name}': {e}") from e

    def delete(self, session_id: str, name: str) -> None:
        with self.lock_for(storage_key(session_id, name)):
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        delete(StateRecord)
                        .where(StateRecord.session_id == session_id)
                        .where(StateRecord.state_name == name)
                    )
            except SQLAlchemyError as e:
                raise PersistError(f"Failed to delete state '{name}': {e}") from e

    def delete_expired(self) -> int:
        """Delete rows whose session is missing or expired. Global states are kept."""
        live_sessions = select(SessionRecord.session_id).where(SessionRecord.expires_at >= utc_now())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(StateRecord)
                    .where(StateRecord.session_id != SHARED_SESSION_ID)
                    .where(StateRecord.session_id.not_in(live_sessions))
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistError(f"Failed to delete expired states: {e}") from e
        if deleted:
            logger.debug("Deleted %d state rows for expired sessions", deleted)
        return deleted
