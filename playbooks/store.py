"""
Persistence for playbooks, user data, the action queue and the audit trail.

SQLAlchemy ORM on any SQLAlchemy URL (SQLite locally, PostgreSQL in
production). Every unit of work (one enqueue, one claim, one outcome)
commits on its own, so a killed run loses at most the action in flight.

The queue carries a unique partial index on
(owner_id, target_user_id, playbook_id, step_index) over open rows
(pending or in_progress): a second engine run cannot queue the same
step twice, even when two runs overlap.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Playbook, PlaybookValidationError, UserRecord

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp; the store keeps every datetime in naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


_OPEN_WHERE = text("status IN ('pending', 'in_progress')")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class PlaybookORM(Base):
    __tablename__ = "playbooks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    conditions: Mapped[list] = mapped_column(JSON, default=list)
    actions: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_domain(self) -> Playbook:
        return Playbook.from_dict({
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "is_active": self.is_active,
            "conditions": self.conditions,
            "actions": self.actions,
        })


class UserDataORM(Base):
    """Customer record, including the risk fields written by scoring."""

    __tablename__ = "user_data"

    owner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    churn_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    churn_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_recommended: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    plan: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_login: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    usage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    user_stage: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_domain(self) -> UserRecord:
        return UserRecord(
            user_id=self.user_id,
            owner_id=self.owner_id,
            churn_score=self.churn_score,
            risk_level=self.risk_level,
            plan=self.plan,
            last_login=self.last_login,
            usage=self.usage,
            user_stage=self.user_stage,
            email=self.email,
        )


class QueuedActionORM(Base):
    __tablename__ = "playbook_actions_queue"
    __table_args__ = (
        Index(
            "uq_playbook_actions_queue_open_step",
            "owner_id", "target_user_id", "playbook_id", "step_index",
            unique=True,
            sqlite_where=_OPEN_WHERE,
            postgresql_where=_OPEN_WHERE,
        ),
        Index("ix_playbook_actions_queue_due", "owner_id", "status", "execute_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64))
    target_user_id: Mapped[str] = mapped_column(String(128))
    playbook_id: Mapped[str] = mapped_column(String(64))
    step_index: Mapped[int] = mapped_column(Integer)
    action_type: Mapped[str] = mapped_column(String(32))
    action_data: Mapped[dict] = mapped_column(JSON, default=dict)
    execute_at: Mapped[datetime] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), default=ActionStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def value(self) -> str:
        return str((self.action_data or {}).get("value", ""))

    def __repr__(self):
        return (
            f"<QueuedAction {self.id} {self.action_type} step={self.step_index} "
            f"user={self.target_user_id} status={self.status}>"
        )


class AuditLogEntryORM(Base):
    """Append-only record of one action execution attempt."""

    __tablename__ = "playbook_audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    target_user_id: Mapped[str] = mapped_column(String(128))
    playbook_id: Mapped[str] = mapped_column(String(64))
    queued_action_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    action_type: Mapped[str] = mapped_column(String(32))
    action_data: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16))  # success | failed
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class MatchLogORM(Base):
    __tablename__ = "playbook_match_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    playbook_id: Mapped[str] = mapped_column(String(64))
    target_user_id: Mapped[str] = mapped_column(String(128))
    action_taken: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


def build_engine(database_url: str, echo: bool = False):
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    kwargs: dict = {"echo": echo}
    if database_url.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    return create_engine(database_url, **kwargs)


class PlaybookStore:
    """Repository over the playbook tables."""

    def __init__(self, database_url: str = "sqlite:///playbooks.db", echo: bool = False):
        self.engine = build_engine(database_url, echo=echo)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        with self.session_factory() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    # === Playbooks ===

    def save_playbooks(self, playbooks: Iterable[Playbook]) -> int:
        count = 0
        with self.session() as session:
            for playbook in playbooks:
                data = playbook.to_dict()
                session.merge(PlaybookORM(**data))
                count += 1
        return count

    def save_playbook(self, playbook: Playbook) -> None:
        self.save_playbooks([playbook])

    def list_playbooks(
        self, owner_id: str, playbook_id: Optional[str] = None
    ) -> List[Playbook]:
        """
        Active playbooks of an owner, or one playbook by id whatever its
        active flag. Stored definitions that no longer validate are skipped.
        """
        stmt = select(PlaybookORM).where(PlaybookORM.owner_id == owner_id)
        if playbook_id is not None:
            stmt = stmt.where(PlaybookORM.id == playbook_id)
        else:
            stmt = stmt.where(PlaybookORM.is_active.is_(True))
        stmt = stmt.order_by(PlaybookORM.created_at, PlaybookORM.id)

        with self.session() as session:
            rows = session.scalars(stmt).all()

        playbooks = []
        for row in rows:
            try:
                playbooks.append(row.to_domain())
            except PlaybookValidationError as e:
                logger.warning(f"Skipping invalid stored playbook {row.id}: {e}")
        return playbooks

    # === User data ===

    def upsert_users(self, records: Iterable[Union[UserRecord, Mapping[str, Any]]]) -> int:
        """Insert or update customer records; only the keys given are written."""
        columns = {c.key for c in UserDataORM.__table__.columns}
        count = 0
        with self.session() as session:
            for record in records:
                data = asdict(record) if isinstance(record, UserRecord) else dict(record)
                if "user_id" not in data and "customer_id" in data:
                    data["user_id"] = data["customer_id"]
                if "email" not in data and "customer_email" in data:
                    data["email"] = data["customer_email"]
                key = (str(data["owner_id"]), str(data["user_id"]))
                row = session.get(UserDataORM, key)
                if row is None:
                    row = UserDataORM(owner_id=key[0], user_id=key[1])
                    session.add(row)
                    session.flush()
                for name, value in data.items():
                    if name in columns and name not in ("owner_id", "user_id"):
                        setattr(row, name, value)
                count += 1
        return count

    def list_users(self, owner_id: str) -> List[UserRecord]:
        stmt = (
            select(UserDataORM)
            .where(UserDataORM.owner_id == owner_id, UserDataORM.is_deleted.is_(False))
            .order_by(UserDataORM.user_id)
        )
        with self.session() as session:
            return [row.to_domain() for row in session.scalars(stmt).all()]

    def get_user(self, owner_id: str, user_id: str) -> Optional[UserRecord]:
        with self.session() as session:
            row = session.get(UserDataORM, (owner_id, user_id))
            if row is None or row.is_deleted:
                return None
            return row.to_domain()

    # === Queue ===

    def enqueue(
        self,
        owner_id: str,
        target_user_id: str,
        playbook_id: str,
        step_index: int,
        action_type: str,
        action_data: dict,
        execute_at: datetime,
        now: Optional[datetime] = None,
    ) -> Optional[QueuedActionORM]:
        """
        Queue one playbook step.

        Returns:
            The new row, or None when the step is already open for this user
        """
        now = as_naive_utc(now or utcnow())
        action = QueuedActionORM(
            id=_new_id(),
            owner_id=owner_id,
            target_user_id=target_user_id,
            playbook_id=playbook_id,
            step_index=step_index,
            action_type=action_type,
            action_data=action_data,
            execute_at=as_naive_utc(execute_at),
            status=ActionStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session() as session:
                session.add(action)
        except IntegrityError:
            return None
        return action

    def due_actions(
        self, owner_id: str, now: datetime, limit: Optional[int] = None
    ) -> List[QueuedActionORM]:
        """Pending actions whose time has come, oldest first."""
        stmt = (
            select(QueuedActionORM)
            .where(
                QueuedActionORM.owner_id == owner_id,
                QueuedActionORM.status == ActionStatus.PENDING.value,
                QueuedActionORM.execute_at <= as_naive_utc(now),
            )
            .order_by(QueuedActionORM.execute_at, QueuedActionORM.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session() as session:
            return list(session.scalars(stmt).all())

    def claim(self, action_id: str, now: Optional[datetime] = None) -> bool:
        """Move an action from pending to in_progress; False if another run got it."""
        now = as_naive_utc(now or utcnow())
        stmt = (
            update(QueuedActionORM)
            .where(
                QueuedActionORM.id == action_id,
                QueuedActionORM.status == ActionStatus.PENDING.value,
            )
            .values(status=ActionStatus.IN_PROGRESS.value, claimed_at=now, updated_at=now)
        )
        with self.session() as session:
            claimed = session.execute(stmt).rowcount == 1
        return claimed

    def release_stale_claims(self, owner_id: str, older_than: datetime) -> int:
        """Return claims abandoned by a killed run to pending."""
        stmt = (
            update(QueuedActionORM)
            .where(
                QueuedActionORM.owner_id == owner_id,
                QueuedActionORM.status == ActionStatus.IN_PROGRESS.value,
                QueuedActionORM.claimed_at < as_naive_utc(older_than),
            )
            .values(status=ActionStatus.PENDING.value, claimed_at=None)
        )
        with self.session() as session:
            released = session.execute(stmt).rowcount
        return released

    def finish(
        self,
        action: QueuedActionORM,
        success: bool,
        message: Optional[str],
        now: Optional[datetime] = None,
    ) -> None:
        """Record the outcome of a claimed action and its audit entry together."""
        now = as_naive_utc(now or utcnow())
        status = ActionStatus.COMPLETED if success else ActionStatus.FAILED
        error = None if success else message
        with self.session() as session:
            session.execute(
                update(QueuedActionORM)
                .where(QueuedActionORM.id == action.id)
                .values(
                    status=status.value,
                    error_message=error,
                    executed_at=now,
                    updated_at=now,
                )
            )
            session.add(self._audit_entry(
                owner_id=action.owner_id,
                target_user_id=action.target_user_id,
                playbook_id=action.playbook_id,
                action_type=action.action_type,
                action_data=action.action_data,
                success=success,
                message=message,
                now=now,
                queued_action_id=action.id,
            ))
        action.status = status.value
        action.error_message = error
        action.executed_at = now

    # === Logs ===

    @staticmethod
    def _audit_entry(
        owner_id, target_user_id, playbook_id, action_type, action_data,
        success, message, now, queued_action_id=None,
    ) -> AuditLogEntryORM:
        return AuditLogEntryORM(
            id=_new_id(),
            owner_id=owner_id,
            target_user_id=target_user_id,
            playbook_id=playbook_id,
            queued_action_id=queued_action_id,
            action_type=action_type,
            action_data=action_data or {},
            status="success" if success else "failed",
            error_message=None if success else message,
            created_at=now,
        )

    def record_audit(
        self,
        owner_id: str,
        target_user_id: str,
        playbook_id: str,
        action_type: str,
        action_data: dict,
        success: bool,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = as_naive_utc(now or utcnow())
        with self.session() as session:
            session.add(self._audit_entry(
                owner_id, target_user_id, playbook_id, action_type, action_data,
                success, message, now,
            ))

    def record_match(
        self, owner_id: str, playbook_id: str, target_user_id: str,
        now: Optional[datetime] = None,
    ) -> None:
        with self.session() as session:
            session.add(MatchLogORM(
                id=_new_id(),
                owner_id=owner_id,
                playbook_id=playbook_id,
                target_user_id=target_user_id,
                action_taken=f"Matched conditions for user {target_user_id}",
                created_at=as_naive_utc(now or utcnow()),
            ))

    def list_actions(
        self, owner_id: str, status: Optional[str] = None
    ) -> List[QueuedActionORM]:
        stmt = select(QueuedActionORM).where(QueuedActionORM.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(QueuedActionORM.status == ActionStatus(status).value)
        stmt = stmt.order_by(QueuedActionORM.created_at, QueuedActionORM.step_index)
        with self.session() as session:
            return list(session.scalars(stmt).all())

    def list_audit_log(self, owner_id: str) -> List[AuditLogEntryORM]:
        stmt = (
            select(AuditLogEntryORM)
            .where(AuditLogEntryORM.owner_id == owner_id)
            .order_by(AuditLogEntryORM.created_at)
        )
        with self.session() as session:
            return list(session.scalars(stmt).all())

    def list_matches(self, owner_id: str) -> List[MatchLogORM]:
        stmt = (
            select(MatchLogORM)
            .where(MatchLogORM.owner_id == owner_id)
            .order_by(MatchLogORM.created_at)
        )
        with self.session() as session:
            return list(session.scalars(stmt).all())


__all__ = [
    "ActionStatus",
    "AuditLogEntryORM",
    "Base",
    "MatchLogORM",
    "PlaybookORM",
    "PlaybookStore",
    "QueuedActionORM",
    "UserDataORM",
    "as_naive_utc",
    "build_engine",
    "utcnow",
]
