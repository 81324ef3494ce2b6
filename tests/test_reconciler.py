from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from data_models.dbo_next_action import NextActionRun, NextActionStatus, NextBestAction
from next_actions import reconciler
from next_actions.errors import UnknownScopeError
from next_actions.preferences import create_suppression
from next_actions.reconciler import upsert_next_actions
from next_actions.rules import produce_next_actions
from next_actions.service import build_run_key, list_next_actions, run_next_actions
from next_actions.status_service import dismiss_next_action, snooze_next_action
from next_actions.types import NextActionContext

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _candidates(**counters):
    return produce_next_actions(NextActionContext(now=NOW, **counters), "command_center")


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


def test_upsert_creates_then_refreshes(db_session):
    first = upsert_next_actions(db_session, _candidates(failed_delivery_count=1, referral_gap_count=1))
    db_session.commit()
    assert (first.created, first.updated) == (2, 0)

    second = upsert_next_actions(db_session, _candidates(failed_delivery_count=4, referral_gap_count=1))
    db_session.commit()
    assert (second.created, second.updated) == (0, 2)
    assert _count(db_session, NextBestAction) == 2

    failed = db_session.execute(
        select(NextBestAction).where(NextBestAction.created_by_rule == "failed_notification_deliveries")
    ).scalar_one()
    assert failed.score == 79
    assert failed.reason == "4 delivery attempt(s) failed"
    assert failed.status == NextActionStatus.QUEUED


def test_upsert_never_changes_id_or_status(db_session):
    upsert_next_actions(db_session, _candidates(failed_delivery_count=1))
    db_session.commit()
    action = db_session.execute(select(NextBestAction)).scalar_one()
    original_id = action.id
    action.status = NextActionStatus.DISMISSED
    db_session.commit()

    result = upsert_next_actions(db_session, _candidates(failed_delivery_count=2))
    db_session.commit()

    assert result.updated == 1
    refreshed = db_session.execute(select(NextBestAction)).scalar_one()
    assert refreshed.id == original_id
    assert refreshed.status == NextActionStatus.DISMISSED
    assert refreshed.dedupe_key == "nba:failed_notification_deliveries:command_center"


def test_concurrent_insert_falls_back_to_update(db_session, monkeypatch):
    upsert_next_actions(db_session, _candidates(failed_delivery_count=1))
    db_session.commit()

    real_find = reconciler._find_by_dedupe_key
    calls = []

    def racing_find(session, dedupe_key):
        # The first lookup misses, as if another run inserted the row in between
        calls.append(dedupe_key)
        if len(calls) == 1:
            return None
        return real_find(session, dedupe_key)

    monkeypatch.setattr(reconciler, "_find_by_dedupe_key", racing_find)
    result = upsert_next_actions(db_session, _candidates(failed_delivery_count=3))
    db_session.commit()

    assert (result.created, result.updated) == (0, 1)
    assert _count(db_session, NextBestAction) == 1
    assert db_session.execute(select(NextBestAction)).scalar_one().score == 78


def test_run_next_actions_records_run(db_session, signals):
    result = run_next_actions(
        db_session,
        entity_type="command_center",
        actor_user_id="op-1",
        now=NOW,
        signals_provider=signals(failed_delivery_count=1, overdue_reminders_count=2),
    )

    assert result.created == 2
    assert result.candidate_count == 2
    assert result.run_key == "nba:op-1:command_center:command_center:2026-03-10"
    assert result.last_run_at == NOW

    run = db_session.execute(select(NextActionRun)).scalar_one()
    assert run.run_key == result.run_key
    assert run.created_count == 2
    assert run.mode == "manual"


def test_second_run_updates_instead_of_duplicating(db_session, signals):
    provider = signals(failed_delivery_count=1)
    run_next_actions(db_session, now=NOW, signals_provider=provider)
    again = run_next_actions(db_session, now=NOW, signals_provider=provider)

    assert (again.created, again.updated) == (0, 1)
    assert _count(db_session, NextBestAction) == 1
    assert _count(db_session, NextActionRun) == 2


def test_run_key_defaults_to_system():
    assert build_run_key(None, "founder_growth", "founder_growth", NOW) == "nba:system:founder_growth:founder_growth:2026-03-10"


def test_unknown_scope(db_session):
    with pytest.raises(UnknownScopeError):
        run_next_actions(db_session, entity_type="billing", now=NOW)


def test_suppressed_rule_is_not_persisted(db_session, signals):
    create_suppression(
        db_session,
        actor_user_id="op-1",
        entity_type="command_center",
        entity_id="command_center",
        now=NOW,
        rule_key="overdue_reminders_high_priority",
    )
    db_session.commit()

    result = run_next_actions(
        db_session, now=NOW, signals_provider=signals(failed_delivery_count=1, overdue_reminders_count=1)
    )

    assert result.candidate_count == 2
    assert result.suppressed_count == 1
    rules = db_session.execute(select(NextBestAction.created_by_rule)).scalars().all()
    assert rules == ["failed_notification_deliveries"]


def test_expired_suppression_is_ignored(db_session, signals):
    create_suppression(
        db_session,
        actor_user_id="op-1",
        entity_type="command_center",
        entity_id="command_center",
        now=NOW - timedelta(days=40),
        rule_key="overdue_reminders_high_priority",
        days=30,
    )
    db_session.commit()

    result = run_next_actions(db_session, now=NOW, signals_provider=signals(overdue_reminders_count=1))
    assert result.suppressed_count == 0
    assert result.created == 1


def test_list_orders_by_score(db_session, signals):
    run_next_actions(
        db_session,
        now=NOW,
        signals_provider=signals(command_center_band="critical", referral_gap_count=1, failed_delivery_count=1),
    )

    rows = list_next_actions(db_session, "command_center", now=NOW)
    assert [r.created_by_rule for r in rows] == [
        "score_in_critical_band",
        "failed_notification_deliveries",
        "flywheel_referral_gap",
    ]


def test_queued_list_hides_snoozed_until_expiry(db_session, signals):
    run_next_actions(db_session, now=NOW, signals_provider=signals(failed_delivery_count=1))
    action = db_session.execute(select(NextBestAction)).scalar_one()
    snooze_next_action(db_session, action.id, now=NOW, days=1)
    db_session.commit()

    assert list_next_actions(db_session, now=NOW) == []
    assert [r.id for r in list_next_actions(db_session, status=NextActionStatus.SNOOZED, now=NOW)] == [action.id]
    later = NOW + timedelta(days=1, minutes=1)
    assert [r.id for r in list_next_actions(db_session, now=later)] == [action.id]


def test_list_is_scoped(db_session, signals):
    run_next_actions(db_session, now=NOW, signals_provider=signals(failed_delivery_count=1))
    assert list_next_actions(db_session, "founder_growth", now=NOW) == []


def test_entity_run_is_listed_for_that_entity(db_session, signals):
    provider = signals(failed_delivery_count=2)
    result = run_next_actions(db_session, entity_type="command_center", entity_id="acct-7", now=NOW, signals_provider=provider)

    assert result.created == 1
    [row] = list_next_actions(db_session, "command_center", "acct-7", now=NOW)
    assert row.entity_id == "acct-7"
    assert row.dedupe_key == "nba:failed_notification_deliveries:command_center:acct-7"
    assert list_next_actions(db_session, "command_center", now=NOW) == []

    run_next_actions(db_session, now=NOW, signals_provider=provider)
    assert _count(db_session, NextBestAction) == 2


def test_entity_suppression_applies_to_entity_runs(db_session, signals):
    provider = signals(failed_delivery_count=2)
    run_next_actions(db_session, entity_type="command_center", entity_id="acct-7", now=NOW, signals_provider=provider)
    [row] = list_next_actions(db_session, "command_center", "acct-7", now=NOW)
    dismiss_next_action(db_session, row.id, now=NOW, actor_user_id="op-1", suppress_days=30)
    db_session.commit()

    again = run_next_actions(db_session, entity_type="command_center", entity_id="acct-7", now=NOW, signals_provider=provider)

    assert again.suppressed_count == 1
    assert (again.created, again.updated) == (0, 0)
