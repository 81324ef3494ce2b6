import enum
from datetime import datetime
from typing import Any

from sqlalchemy import String, ForeignKey, Float, Integer, Text, Enum, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, new_id, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class NextActionPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NextActionStatus(str, enum.Enum):
    QUEUED = "queued"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"
    EXECUTED = "executed"


class ExecutionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SourceType(str, enum.Enum):
    SCORE = "score"
    NOTIFICATION_EVENT = "notification_event"
    REMINDER = "reminder"
    PROPOSAL = "proposal"
    DELIVERY_PROJECT = "delivery_project"
    INTAKE_LEAD = "intake_lead"
    GROWTH_PIPELINE = "growth_pipeline"


class PreferenceStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class NextBestAction(Base, TimestampMixin):
    """Persisted recommendation. Written only by the reconciler and status transitions."""

    __tablename__ = "next_best_action"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    priority: Mapped[NextActionPriority] = mapped_column(
        Enum(NextActionPriority, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[NextActionStatus] = mapped_column(
        Enum(NextActionStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=NextActionStatus.QUEUED,
    )

    source_type: Mapped[SourceType] = mapped_column(
        Enum(SourceType, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
    )
    source_id: Mapped[str | None] = mapped_column(String(128))
    action_url: Mapped[str | None] = mapped_column(String(512))

    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_rule: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)

    payload_json: Mapped[dict[str, Any] | None]
    explanation_json: Mapped[dict[str, Any] | None]

    snoozed_until: Mapped[datetime | None]
    dismissed_at: Mapped[datetime | None]
    last_executed_at: Mapped[datetime | None]
    last_execution_status: Mapped[str | None] = mapped_column(String(16))
    last_execution_error_code: Mapped[str | None] = mapped_column(String(64))
    last_execution_error_message: Mapped[str | None] = mapped_column(String(500))

    executions: Mapped[list["NextActionExecution"]] = relationship(
        back_populates="next_action",
        cascade="all, delete-orphan",
        order_by="NextActionExecution.started_at",
    )

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_next_best_action_dedupe_key"),
        Index("idx_next_best_action_scope_status", "entity_type", "entity_id", "status"),
    )


class NextActionExecution(Base):
    """One row per execution attempt of a persisted action."""

    __tablename__ = "next_action_execution"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    next_action_id: Mapped[str] = mapped_column(
        ForeignKey("next_best_action.id", ondelete="CASCADE"), nullable=False
    )
    action_key: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_user_id: Mapped[str | None] = mapped_column(String(128))

    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=ExecutionStatus.PENDING,
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None]

    error_code: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(String(500))
    meta_json: Mapped[dict[str, Any] | None]

    next_action: Mapped[NextBestAction] = relationship(back_populates="executions")

    __table_args__ = (
        Index("idx_next_action_execution_action", "next_action_id", "action_key", "started_at"),
    )


class NextActionRun(Base):
    """Audit row for one evaluate + reconcile pass."""

    __tablename__ = "next_action_run"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    run_key: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    scope: Mapped[str] = mapped_column(String(64), nullable=False)

    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    candidate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_next_action_run_key", "run_key"),
    )


class NextActionPreference(Base, TimestampMixin):
    """Operator suppression of a rule or a single dedupe key within a scope."""

    __tablename__ = "next_action_preference"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)

    rule_key: Mapped[str | None] = mapped_column(String(128))
    dedupe_key: Mapped[str | None] = mapped_column(String(255))

    suppressed_until: Mapped[datetime | None]
    status: Mapped[PreferenceStatus] = mapped_column(
        Enum(PreferenceStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=PreferenceStatus.ACTIVE,
    )

    __table_args__ = (
        Index("idx_next_action_preference_scope", "entity_type", "entity_id", "status"),
    )
