"""
SQLAlchemy model for the administrative audit log.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from cryptodash.auth.models import utcnow
from cryptodash.shared.database import Base


class AuditAction(str, PyEnum):
    """Kinds of audited actions.

    Only UPDATE_ROLE and DELETE_USER are emitted; the others are reserved.
    """

    UPDATE_ROLE = "UPDATE_ROLE"
    DELETE_USER = "DELETE_USER"
    CREATE_USER = "CREATE_USER"
    RESET_PASSWORD = "RESET_PASSWORD"
    LOGIN_ATTEMPT = "LOGIN_ATTEMPT"
    ACCOUNT_LOCK = "ACCOUNT_LOCK"
    ACCOUNT_UNLOCK = "ACCOUNT_UNLOCK"


class AuditLogEntry(Base):
    """Append-only audit record.

    actor_id and target_user_id are soft references: entries outlive the
    users they mention.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_timestamp_id", "timestamp", "id"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    actor_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    target_user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<AuditLogEntry(id={self.id}, action={self.action}, target={self.target_user_id})>"
