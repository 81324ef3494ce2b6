"""
Reference snapshot builder.

Growth counters are read from the deal / follow-up / outreach tables.
Command center counters come from a pluggable provider because the systems
that own them (scores, notifications, reminders, delivery) live elsewhere.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy import and_, exists, func, not_, select
from sqlalchemy.orm import Session

from data_models.dbo_growth import (
    CLOSED_DEAL_STAGES,
    Deal,
    DealStage,
    FollowUpSchedule,
    OutreachEvent,
    OutreachEventType,
    ScheduleStatus,
)
from next_actions.types import NextActionContext

logger = logging.getLogger(__name__)


class CommandCenterSignals(BaseModel):
    command_center_band: Optional[str] = None
    failed_delivery_count: int = 0
    overdue_reminders_count: int = 0
    sent_no_followup_date_count: int = 0
    retention_overdue_count: int = 0
    handoff_no_client_confirm_count: int = 0
    won_no_delivery_count: int = 0
    referral_gap_count: int = 0
    stage_stall_count: int = 0


SignalsProvider = Callable[[Session, datetime], CommandCenterSignals]


def empty_command_center_signals(session: Session, now: datetime) -> CommandCenterSignals:
    return CommandCenterSignals()


_signals_provider: SignalsProvider = empty_command_center_signals


def set_signals_provider(provider: SignalsProvider) -> SignalsProvider:
    """Registers the command center provider; returns the previous one."""
    global _signals_provider
    previous = _signals_provider
    _signals_provider = provider
    return previous


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _has_active_schedule():
    return exists().where(
        and_(
            FollowUpSchedule.deal_id == Deal.id,
            FollowUpSchedule.status == ScheduleStatus.ACTIVE,
        )
    )


def _has_sent_outreach():
    return exists().where(
        and_(
            OutreachEvent.deal_id == Deal.id,
            OutreachEvent.type == OutreachEventType.SENT,
        )
    )


def _growth_counters(session: Session, owner_user_id: str, now: datetime) -> dict:
    today = start_of_day(now)
    open_deal = and_(Deal.owner_user_id == owner_user_id, Deal.stage.not_in(CLOSED_DEAL_STAGES))

    # Active schedules that were due before today
    overdue_schedule_rows = session.execute(
        select(FollowUpSchedule.deal_id)
        .join(Deal, Deal.id == FollowUpSchedule.deal_id)
        .where(
            open_deal,
            FollowUpSchedule.status == ScheduleStatus.ACTIVE,
            FollowUpSchedule.next_follow_up_at < today,
        )
        .order_by(FollowUpSchedule.next_follow_up_at.asc(), FollowUpSchedule.deal_id.asc())
    ).scalars().all()

    # Deals without a schedule fall back to their own follow-up date
    overdue_deal_rows = session.execute(
        select(Deal.id)
        .where(
            open_deal,
            not_(_has_active_schedule()),
            Deal.next_follow_up_at.is_not(None),
            Deal.next_follow_up_at < today,
        )
        .order_by(Deal.next_follow_up_at.asc(), Deal.id.asc())
    ).scalars().all()

    overdue_ids = list(dict.fromkeys([*overdue_schedule_rows, *overdue_deal_rows]))

    no_outreach_ids = session.execute(
        select(Deal.id)
        .where(
            Deal.owner_user_id == owner_user_id,
            Deal.stage == DealStage.NEW,
            not_(_has_sent_outreach()),
        )
        .order_by(Deal.created_at.asc(), Deal.id.asc())
    ).scalars().all()

    deal_count = session.scalar(
        select(func.count()).select_from(Deal).where(Deal.owner_user_id == owner_user_id)
    ) or 0

    last_activity_at = session.scalar(
        select(func.max(OutreachEvent.occurred_at)).where(OutreachEvent.owner_user_id == owner_user_id)
    )

    return {
        "growth_owner_user_id": owner_user_id,
        "growth_deal_count": deal_count,
        "growth_overdue_count": len(overdue_ids),
        "growth_no_outreach_count": len(no_outreach_ids),
        "growth_last_activity_at": last_activity_at,
        "growth_first_overdue_deal_id": overdue_ids[0] if overdue_ids else None,
        "growth_first_no_outreach_deal_id": no_outreach_ids[0] if no_outreach_ids else None,
    }


def build_next_action_context(
    session: Session,
    now: datetime,
    owner_user_id: Optional[str] = None,
    signals_provider: Optional[SignalsProvider] = None,
    entity_id: Optional[str] = None,
) -> NextActionContext:
    provider = signals_provider or _signals_provider
    signals = provider(session, now)

    values = signals.model_dump()
    if owner_user_id:
        values.update(_growth_counters(session, owner_user_id, now))
    else:
        logger.debug("No growth owner given; growth counters left at zero")

    return NextActionContext(now=now, entity_id=entity_id, **values)
