import enum
from datetime import datetime
from typing import Any

from sqlalchemy import String, ForeignKey, Integer, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, new_id, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class DealStage(str, enum.Enum):
    NEW = "new"
    CONTACTED = "contacted"
    REPLIED = "replied"
    CALL_SCHEDULED = "call_scheduled"
    PROPOSAL_SENT = "proposal_sent"
    WON = "won"
    LOST = "lost"


CLOSED_DEAL_STAGES = (DealStage.WON, DealStage.LOST)


class ScheduleStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class OutreachEventType(str, enum.Enum):
    SENT = "sent"
    REPLY = "reply"
    BOUNCED = "bounced"
    CALL_BOOKED = "call_booked"
    FOLLOWUP_SCHEDULED = "followup_scheduled"


class Deal(Base, TimestampMixin):
    __tablename__ = "deal"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    prospect_name: Mapped[str | None] = mapped_column(String(255))

    stage: Mapped[DealStage] = mapped_column(
        Enum(DealStage, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
        default=DealStage.NEW,
    )
    next_follow_up_at: Mapped[datetime | None]

    follow_up_schedules: Mapped[list["FollowUpSchedule"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan"
    )
    outreach_events: Mapped[list["OutreachEvent"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_deal_owner_stage", "owner_user_id", "stage"),
    )


class FollowUpSchedule(Base, TimestampMixin):
    __tablename__ = "follow_up_schedule"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_id: Mapped[str] = mapped_column(ForeignKey("deal.id", ondelete="CASCADE"), nullable=False)

    next_follow_up_at: Mapped[datetime] = mapped_column(nullable=False)
    cadence_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    status: Mapped[ScheduleStatus] = mapped_column(
        Enum(ScheduleStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=ScheduleStatus.ACTIVE,
    )

    deal: Mapped[Deal] = relationship(back_populates="follow_up_schedules")

    __table_args__ = (
        Index("idx_follow_up_schedule_status_due", "status", "next_follow_up_at"),
    )


class OutreachEvent(Base):
    __tablename__ = "outreach_event"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_id: Mapped[str] = mapped_column(ForeignKey("deal.id", ondelete="CASCADE"), nullable=False)
    owner_user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    type: Mapped[OutreachEventType] = mapped_column(
        Enum(OutreachEventType, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    meta_json: Mapped[dict[str, Any] | None]

    deal: Mapped[Deal] = relationship(back_populates="outreach_events")
