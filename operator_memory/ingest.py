"""
Operator memory ingestion.

Each entry point turns one operator signal (execution, dismiss, snooze,
copilot action, founder week review) into an append-only memory event plus
learned-weight deltas. Public entry points never raise: failures are logged,
reported as a `memory.ingest.failed` ops event and dropped. The raw handlers
in INGEST_HANDLERS do raise, so the Celery task can retry them.
"""

import functools
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_memory import (
    CopilotActionLog,
    FounderWeekReview,
    MemoryOutcome,
    MemorySourceType,
    OperatorMemoryEvent,
    WeightKind,
)
from data_models.dbo_next_action import ExecutionStatus, NextActionExecution, NextBestAction
from data_services.sanitize import sanitize_error_message, sanitize_meta
from data_services.telemetry import log_ops_event_safe
from next_actions.rules import RULE_NAMES
from operator_memory.weights import LearnedWeightStore

logger = logging.getLogger(__name__)

OUTCOME_DELTA = {
    MemoryOutcome.SUCCESS: 1.0,
    MemoryOutcome.IMPROVED: 1.0,
    MemoryOutcome.FAILURE: -1.0,
    MemoryOutcome.WORSENED: -1.0,
    MemoryOutcome.NEUTRAL: 0.0,
}
POSITIVE_OUTCOMES = (MemoryOutcome.SUCCESS, MemoryOutcome.IMPROVED)

DISMISS_DELTA = -0.5
SNOOZE_DELTA = -0.25
FOUNDER_REVIEW_DELTA = -0.25

DISMISS_ACTION_KEY = "dismiss"
SNOOZE_ACTION_KEY = "snooze_1d"

ATTRIBUTION_OUTCOMES = {
    "improved": MemoryOutcome.IMPROVED,
    "neutral": MemoryOutcome.NEUTRAL,
    "worsened": MemoryOutcome.WORSENED,
}


def safe_ingest(label: str):
    """
    Runs the wrapped handler inside a savepoint and commits on success.
    Any exception rolls the savepoint back and is swallowed.
    """

    def decorator(fn: Callable[..., None]) -> Callable[..., None]:
        @functools.wraps(fn)
        def wrapper(session: Session, *args, **kwargs) -> None:
            try:
                with session.begin_nested():
                    fn(session, *args, **kwargs)
                session.commit()
            except Exception as e:
                if not session.is_active:
                    session.rollback()
                logger.error(f"[memory.ingest] {label}: {sanitize_error_message(e)}")
                log_ops_event_safe(
                    category="system",
                    event_key="memory.ingest.failed",
                    status="failure",
                    error_message=e,
                    meta={"label": label},
                )

        return wrapper

    return decorator


def _record_event(
    session: Session,
    actor_user_id: str,
    source_type: MemorySourceType,
    outcome: MemoryOutcome,
    rule_key: Optional[str] = None,
    action_key: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> OperatorMemoryEvent:
    event = OperatorMemoryEvent(
        actor_user_id=actor_user_id,
        source_type=source_type,
        entity_type=entity_type,
        entity_id=entity_id,
        rule_key=rule_key,
        action_key=action_key,
        outcome=outcome,
        meta_json=sanitize_meta(meta),
    )
    session.add(event)
    session.flush()
    return event


def _apply_weights(
    session: Session,
    actor_user_id: str,
    rule_key: Optional[str],
    action_key: Optional[str],
    delta: float,
    success: bool = False,
    seen_at=None,
) -> None:
    store = LearnedWeightStore(session)
    if rule_key:
        store.apply_delta(actor_user_id, WeightKind.RULE, rule_key, delta, success=success, seen_at=seen_at)
    if action_key:
        store.apply_delta(actor_user_id, WeightKind.ACTION, action_key, delta, success=success, seen_at=seen_at)


def _status_outcome(status: Any) -> MemoryOutcome:
    value = getattr(status, "value", status)
    if value == ExecutionStatus.SUCCESS.value:
        return MemoryOutcome.SUCCESS
    if value == ExecutionStatus.FAILED.value:
        return MemoryOutcome.FAILURE
    return MemoryOutcome.NEUTRAL


# ---------------------------------------------------------------------------
# Raw handlers (raise on failure)
# ---------------------------------------------------------------------------

def ingest_execution(
    session: Session,
    execution_id: str,
    actor_user_id: Optional[str] = None,
    attribution_outcome: Optional[str] = None,
) -> None:
    execution = session.get(NextActionExecution, execution_id)
    if execution is None:
        logger.info(f"Execution {execution_id} not found, nothing to ingest")
        return

    actor = actor_user_id or execution.actor_user_id
    if not actor:
        logger.debug(f"Execution {execution_id} has no actor, skipping memory")
        return

    if attribution_outcome is not None:
        if attribution_outcome not in ATTRIBUTION_OUTCOMES:
            raise ValueError(f"Unknown attribution outcome '{attribution_outcome}'")
        outcome = ATTRIBUTION_OUTCOMES[attribution_outcome]
    else:
        outcome = _status_outcome(execution.status)

    action = execution.next_action
    rule_key = action.created_by_rule if action is not None else (execution.meta_json or {}).get("ruleKey")

    _record_event(
        session,
        actor,
        MemorySourceType.NBA_EXECUTE,
        outcome,
        rule_key=rule_key,
        action_key=execution.action_key,
        meta={
            "executionId": execution.id,
            "nextActionId": execution.next_action_id,
            "dedupeKey": action.dedupe_key if action is not None else None,
            "attribution": attribution_outcome,
        },
    )

    delta = OUTCOME_DELTA[outcome]
    if delta:
        _apply_weights(
            session,
            actor,
            rule_key,
            execution.action_key,
            delta,
            success=outcome in POSITIVE_OUTCOMES,
            seen_at=execution.started_at,
        )


def ingest_dismiss(
    session: Session,
    next_action_id: str,
    actor_user_id: str,
    preference_id: Optional[str] = None,
) -> None:
    action = session.get(NextBestAction, next_action_id)
    if action is None:
        return

    rule_key = action.created_by_rule or "unknown"
    _record_event(
        session,
        actor_user_id,
        MemorySourceType.NBA_DISMISS,
        MemoryOutcome.NEUTRAL,
        rule_key=rule_key,
        action_key=DISMISS_ACTION_KEY,
        entity_type=action.entity_type,
        entity_id=action.entity_id,
        meta={"nextActionId": next_action_id, "preferenceId": preference_id, "dedupeKey": action.dedupe_key},
    )
    _apply_weights(session, actor_user_id, rule_key, DISMISS_ACTION_KEY, DISMISS_DELTA)


def ingest_snooze(
    session: Session,
    next_action_id: str,
    actor_user_id: str,
    rule_key: Optional[str] = None,
) -> None:
    if rule_key is None:
        action = session.get(NextBestAction, next_action_id)
        if action is None:
            return
        rule_key = action.created_by_rule

    rule_key = rule_key or "unknown"
    _record_event(
        session,
        actor_user_id,
        MemorySourceType.NBA_SNOOZE,
        MemoryOutcome.NEUTRAL,
        rule_key=rule_key,
        action_key=SNOOZE_ACTION_KEY,
        meta={"nextActionId": next_action_id},
    )
    _apply_weights(session, actor_user_id, rule_key, SNOOZE_ACTION_KEY, SNOOZE_DELTA)


def ingest_copilot_action(
    session: Session,
    action_log_id: str,
    actor_user_id: Optional[str] = None,
) -> None:
    log = session.get(CopilotActionLog, action_log_id)
    # Previews never touched anything, so they teach nothing
    if log is None or log.mode != "execute":
        return

    actor = actor_user_id or log.actor_user_id
    if not actor:
        return

    outcome = _status_outcome(log.status)
    result = log.result_json or {}
    rule_key = result.get("ruleKey") or result.get("createdByRule")
    action_key = log.action_key or log.nba_action_key

    _record_event(
        session,
        actor,
        MemorySourceType.COPILOT_ACTION,
        outcome,
        rule_key=rule_key,
        action_key=action_key,
        meta={
            "actionLogId": log.id,
            "sessionId": log.session_id,
            "nextActionId": log.next_action_id,
            "nbaActionKey": log.nba_action_key,
        },
    )

    delta = OUTCOME_DELTA[outcome]
    if delta:
        _apply_weights(
            session,
            actor,
            rule_key,
            action_key,
            delta,
            success=outcome in POSITIVE_OUTCOMES,
            seen_at=log.created_at,
        )


def _review_item_keys(items: Iterable[Any], fields: tuple) -> List[str]:
    keys = []
    for item in items or []:
        if isinstance(item, str):
            value = item
        elif isinstance(item, dict):
            value = next((item.get(f) for f in fields if item.get(f)), None)
        else:
            value = None
        if isinstance(value, str) and value.strip():
            keys.append(value.strip())
    return keys


def extract_review_rule_keys(review: FounderWeekReview) -> List[str]:
    """Rule keys named by the review's misses, deltas or free-text summary, first mention first."""
    keys = _review_item_keys(review.misses_json, ("ruleKey", "title"))
    keys += _review_item_keys(review.deltas_json, ("ruleKey", "key"))

    summary = review.summary or ""
    for name in RULE_NAMES:
        if re.search(rf"\b{re.escape(name)}\b", summary):
            keys.append(name)

    return list(dict.fromkeys(keys))


def ingest_founder_review(session: Session, week_id: str, actor_user_id: str) -> None:
    review = session.execute(
        select(FounderWeekReview).where(FounderWeekReview.week_id == week_id)
    ).scalar_one_or_none()
    if review is None:
        return

    rule_keys = extract_review_rule_keys(review)
    _record_event(
        session,
        actor_user_id,
        MemorySourceType.FOUNDER_REVIEW,
        MemoryOutcome.NEUTRAL,
        entity_type="founder_week",
        entity_id=week_id,
        meta={
            "weekId": week_id,
            "ruleKeys": rule_keys,
            "missesCount": len(review.misses_json or []),
            "deltasCount": len(review.deltas_json or []),
        },
    )

    seen_at = utcnow()
    for rule_key in rule_keys:
        _apply_weights(session, actor_user_id, rule_key, None, FOUNDER_REVIEW_DELTA, seen_at=seen_at)


INGEST_HANDLERS: Dict[str, Callable[..., None]] = {
    "execution": ingest_execution,
    "dismiss": ingest_dismiss,
    "snooze": ingest_snooze,
    "copilot_action": ingest_copilot_action,
    "founder_review": ingest_founder_review,
}


# ---------------------------------------------------------------------------
# Public entry points (never raise)
# ---------------------------------------------------------------------------

@safe_ingest("ingestFromNextActionExecution")
def ingest_from_next_action_execution(session, execution_id, actor_user_id=None, attribution_outcome=None):
    ingest_execution(session, execution_id, actor_user_id, attribution_outcome)


@safe_ingest("ingestFromNextActionDismiss")
def ingest_from_next_action_dismiss(session, next_action_id, actor_user_id, preference_id=None):
    ingest_dismiss(session, next_action_id, actor_user_id, preference_id)


@safe_ingest("ingestFromNextActionSnooze")
def ingest_from_next_action_snooze(session, next_action_id, actor_user_id, rule_key=None):
    ingest_snooze(session, next_action_id, actor_user_id, rule_key)


@safe_ingest("ingestFromCopilotActionLog")
def ingest_from_copilot_action_log(session, action_log_id, actor_user_id=None):
    ingest_copilot_action(session, action_log_id, actor_user_id)


@safe_ingest("ingestFromFounderWeekReview")
def ingest_from_founder_week_review(session, week_id, actor_user_id):
    ingest_founder_review(session, week_id, actor_user_id)


SAFE_INGEST_ENTRY_POINTS: Dict[str, Callable[..., None]] = {
    "execution": ingest_from_next_action_execution,
    "dismiss": ingest_from_next_action_dismiss,
    "snooze": ingest_from_next_action_snooze,
    "copilot_action": ingest_from_copilot_action_log,
    "founder_review": ingest_from_founder_week_review,
}
