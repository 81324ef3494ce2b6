import enum
from datetime import datetime
from typing import Any

from sqlalchemy import String, Float, Text, Enum, Index, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JsonType, TimestampMixin, new_id, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class MemorySourceType(str, enum.Enum):
    NBA_EXECUTE = "nba_execute"
    NBA_DISMISS = "nba_dismiss"
    NBA_SNOOZE = "nba_snooze"
    COPILOT_ACTION = "copilot_action"
    FOUNDER_REVIEW = "founder_review"


class MemoryOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NEUTRAL = "neutral"
    IMPROVED = "improved"
    WORSENED = "worsened"


class WeightKind(str, enum.Enum):
    RULE = "rule"
    ACTION = "action"


class ImmutableRowError(RuntimeError):
    pass


class OperatorMemoryEvent(Base):
    """Append-only audit log behind the learned weights."""

    __tablename__ = "operator_memory_event"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_type: Mapped[MemorySourceType] = mapped_column(
        Enum(MemorySourceType, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
    )
    entity_type: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[str | None] = mapped_column(String(128))

    rule_key: Mapped[str | None] = mapped_column(String(128))
    action_key: Mapped[str | None] = mapped_column(String(64))
    outcome: Mapped[MemoryOutcome] = mapped_column(
        Enum(MemoryOutcome, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    meta_json: Mapped[dict[str, Any] | None]

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_operator_memory_event_actor_time", "actor_user_id", "created_at"),
        Index("idx_operator_memory_event_rule", "rule_key"),
    )


@event.listens_for(OperatorMemoryEvent, "before_update")
def _reject_memory_event_update(mapper, connection, target):
    raise ImmutableRowError(f"operator_memory_event {target.id} is append-only")


@event.listens_for(OperatorMemoryEvent, "before_delete")
def _reject_memory_event_delete(mapper, connection, target):
    raise ImmutableRowError(f"operator_memory_event {target.id} is append-only")


class OperatorLearnedWeight(Base):
    """Bounded per-actor weight for a rule key or an action key."""

    __tablename__ = "operator_learned_weight"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[WeightKind] = mapped_column(
        Enum(WeightKind, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    key: Mapped[str] = mapped_column(String(128), nullable=False)

    weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stats_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("actor_user_id", "kind", "key", name="uq_operator_learned_weight_actor_kind_key"),
    )


class CopilotActionLog(Base, TimestampMixin):
    """Action the copilot proposed or executed on the operator's behalf."""

    __tablename__ = "copilot_action_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_id: Mapped[str | None] = mapped_column(String(128))
    actor_user_id: Mapped[str | None] = mapped_column(String(128))

    # "preview" or "execute"; only executed actions feed memory
    mode: Mapped[str] = mapped_column(String(16), nullable=False, default="preview")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    action_key: Mapped[str | None] = mapped_column(String(64))
    next_action_id: Mapped[str | None] = mapped_column(String(36))
    nba_action_key: Mapped[str | None] = mapped_column(String(64))
    result_json: Mapped[dict[str, Any] | None]


class FounderWeekReview(Base, TimestampMixin):
    """Weekly founder retrospective; misses and deltas name recurring rule keys."""

    __tablename__ = "founder_week_review"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    week_id: Mapped[str] = mapped_column(String(32), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    misses_json: Mapped[list[Any] | None] = mapped_column(JsonType)
    deltas_json: Mapped[list[Any] | None] = mapped_column(JsonType)

    __table_args__ = (
        UniqueConstraint("week_id", name="uq_founder_week_review_week_id"),
    )
