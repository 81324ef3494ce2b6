"""End-to-end founder growth flows against the deal / follow-up / outreach tables."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from data_models.dbo_growth import (
    Deal,
    DealStage,
    FollowUpSchedule,
    OutreachEvent,
    OutreachEventType,
    ScheduleStatus,
)
from data_models.dbo_next_action import NextActionStatus, NextBestAction
from next_actions.delivery_actions import run_delivery_action
from next_actions.fetch_context import build_next_action_context
from next_actions.service import run_next_actions

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
OWNER = "founder-1"


def _deal(session, stage=DealStage.CONTACTED, next_follow_up_at=None, owner=OWNER, created_at=None):
    deal = Deal(owner_user_id=owner, prospect_name="Acme", stage=stage, next_follow_up_at=next_follow_up_at)
    if created_at is not None:
        deal.created_at = created_at
    session.add(deal)
    session.flush()
    return deal


def _schedule(session, deal, next_follow_up_at, status=ScheduleStatus.ACTIVE):
    schedule = FollowUpSchedule(deal_id=deal.id, next_follow_up_at=next_follow_up_at, status=status)
    session.add(schedule)
    session.flush()
    return schedule


def _sent(session, deal, occurred_at=NOW - timedelta(days=5)):
    session.add(OutreachEvent(
        deal_id=deal.id, owner_user_id=deal.owner_user_id, type=OutreachEventType.SENT, occurred_at=occurred_at
    ))
    session.flush()


def _growth_actions(session):
    return session.execute(
        select(NextBestAction).where(NextBestAction.entity_type == "founder_growth")
    ).scalars().all()


def test_overdue_followup_becomes_action_with_deal(db_session):
    deal = _deal(db_session)
    _schedule(db_session, deal, NOW - timedelta(days=2))
    _sent(db_session, deal)
    db_session.commit()

    result = run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)

    assert result.created == 1
    [action] = _growth_actions(db_session)
    assert action.created_by_rule == "growth_overdue_followups"
    assert action.dedupe_key == "nba:growth_overdue_followups:founder_growth"
    assert action.payload_json["bucket"] == "overdue"
    assert action.payload_json["dealId"] == deal.id


def test_schedule_followup_executor_moves_due_date(db_session):
    deal = _deal(db_session)
    schedule = _schedule(db_session, deal, NOW - timedelta(days=2))
    _sent(db_session, deal)
    db_session.commit()
    run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)
    [action] = _growth_actions(db_session)

    result = run_delivery_action(
        db_session, action.id, "growth_schedule_followup_3d", actor_user_id=OWNER, now=NOW
    )

    assert result.ok is True
    db_session.refresh(schedule)
    db_session.refresh(deal)
    expected = NOW + timedelta(days=3)
    assert abs((schedule.next_follow_up_at - expected).total_seconds()) <= 60
    assert abs((deal.next_follow_up_at - expected).total_seconds()) <= 60
    assert schedule.cadence_days == 3

    events = db_session.execute(
        select(OutreachEvent.type).where(OutreachEvent.deal_id == deal.id)
    ).scalars().all()
    assert OutreachEventType.FOLLOWUP_SCHEDULED in events

    db_session.refresh(action)
    assert action.status == NextActionStatus.EXECUTED


def test_rerun_after_followup_finds_nothing_overdue(db_session):
    deal = _deal(db_session)
    _schedule(db_session, deal, NOW - timedelta(days=2))
    _sent(db_session, deal)
    db_session.commit()
    run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)
    [action] = _growth_actions(db_session)
    run_delivery_action(db_session, action.id, "growth_schedule_followup_3d", actor_user_id=OWNER, now=NOW)

    context = build_next_action_context(db_session, now=NOW, owner_user_id=OWNER)
    assert context.growth_overdue_count == 0


def test_schedule_followup_creates_schedule_when_missing(db_session):
    deal = _deal(db_session, next_follow_up_at=NOW - timedelta(days=1))
    _sent(db_session, deal)
    db_session.commit()
    run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)
    [action] = _growth_actions(db_session)

    run_delivery_action(db_session, action.id, "growth_schedule_followup_3d", now=NOW)

    schedules = db_session.execute(
        select(FollowUpSchedule).where(FollowUpSchedule.deal_id == deal.id)
    ).scalars().all()
    assert len(schedules) == 1
    assert schedules[0].status == ScheduleStatus.ACTIVE


def test_mark_replied_moves_stage(db_session):
    deal = _deal(db_session)
    _schedule(db_session, deal, NOW - timedelta(days=2))
    _sent(db_session, deal)
    db_session.commit()
    run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)
    [action] = _growth_actions(db_session)

    result = run_delivery_action(db_session, action.id, "growth_mark_replied", actor_user_id=OWNER, now=NOW)

    assert result.ok is True
    db_session.refresh(deal)
    assert deal.stage == DealStage.REPLIED
    replies = db_session.execute(
        select(OutreachEvent).where(OutreachEvent.deal_id == deal.id, OutreachEvent.type == OutreachEventType.REPLY)
    ).scalars().all()
    assert len(replies) == 1


def test_new_deal_without_outreach(db_session):
    quiet = _deal(db_session, stage=DealStage.NEW, created_at=NOW - timedelta(days=3))
    _deal(db_session, stage=DealStage.NEW, created_at=NOW - timedelta(days=1))
    contacted = _deal(db_session, stage=DealStage.NEW, created_at=NOW - timedelta(days=5))
    _sent(db_session, contacted)
    db_session.commit()

    context = build_next_action_context(db_session, now=NOW, owner_user_id=OWNER)

    assert context.growth_no_outreach_count == 2
    assert context.growth_first_no_outreach_deal_id == quiet.id
    assert context.growth_deal_count == 3

    run_next_actions(db_session, entity_type="founder_growth", actor_user_id=OWNER, now=NOW)
    [action] = _growth_actions(db_session)
    assert action.created_by_rule == "growth_no_outreach_sent"
    assert action.payload_json["bucket"] == "no_outreach"


def test_overdue_counting_rules(db_session):
    # due earlier today is not overdue yet
    _deal(db_session, next_follow_up_at=NOW.replace(hour=8))
    # closed deals never count
    won = _deal(db_session, stage=DealStage.WON)
    _schedule(db_session, won, NOW - timedelta(days=4))
    # paused schedules do not count; the deal date is used instead
    paused = _deal(db_session, next_follow_up_at=NOW + timedelta(days=2))
    _schedule(db_session, paused, NOW - timedelta(days=4), status=ScheduleStatus.PAUSED)
    # another owner's pipeline is invisible
    _deal(db_session, owner="someone-else", next_follow_up_at=NOW - timedelta(days=9))
    overdue = _deal(db_session, next_follow_up_at=NOW - timedelta(days=1))
    db_session.commit()

    context = build_next_action_context(db_session, now=NOW, owner_user_id=OWNER)

    assert context.growth_overdue_count == 1
    assert context.growth_first_overdue_deal_id == overdue.id


def test_last_activity_is_latest_outreach(db_session):
    deal = _deal(db_session)
    _sent(db_session, deal, occurred_at=NOW - timedelta(days=6))
    _sent(db_session, deal, occurred_at=NOW - timedelta(days=1))
    db_session.commit()

    context = build_next_action_context(db_session, now=NOW, owner_user_id=OWNER)
    assert context.growth_last_activity_at == NOW - timedelta(days=1)


def test_without_owner_growth_counters_stay_zero(db_session):
    deal = _deal(db_session, next_follow_up_at=NOW - timedelta(days=1))
    db_session.commit()

    result = run_next_actions(db_session, entity_type="founder_growth", now=NOW)

    assert deal.id
    assert result.candidate_count == 0


def test_owners_share_the_scope_wide_growth_row(db_session):
    first = _deal(db_session, owner="founder-1")
    _schedule(db_session, first, NOW - timedelta(days=2))
    _sent(db_session, first)
    second = _deal(db_session, owner="founder-2")
    _schedule(db_session, second, NOW - timedelta(days=1))
    _sent(db_session, second)
    db_session.commit()

    run_next_actions(db_session, entity_type="founder_growth", actor_user_id="founder-1", now=NOW)
    run_next_actions(db_session, entity_type="founder_growth", actor_user_id="founder-2", now=NOW)
    [shared] = _growth_actions(db_session)
    assert shared.dedupe_key == "nba:growth_overdue_followups:founder_growth"
    assert shared.payload_json["dealId"] == second.id

    run_next_actions(
        db_session, entity_type="founder_growth", entity_id="founder-1", actor_user_id="founder-1", now=NOW
    )
    own = db_session.execute(
        select(NextBestAction).where(NextBestAction.entity_id == "founder-1")
    ).scalar_one()
    assert own.dedupe_key == "nba:growth_overdue_followups:founder_growth:founder-1"
    assert own.payload_json["dealId"] == first.id
