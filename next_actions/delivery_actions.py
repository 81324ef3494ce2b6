"""
Execution runner for persisted actions.

An operator approves an action with an action key; the runner validates the
key against the creating rule, records a pending execution, calls the
executor and writes the outcome back onto both rows. Executor failures come
back as `ok=False` results, never as exceptions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_growth import (
    CLOSED_DEAL_STAGES,
    Deal,
    DealStage,
    FollowUpSchedule,
    OutreachEvent,
    OutreachEventType,
    ScheduleStatus,
)
from data_models.dbo_next_action import (
    ExecutionStatus,
    NextActionExecution,
    NextActionStatus,
    NextBestAction,
)
from data_services.sanitize import sanitize_error_message, sanitize_meta
from data_services.telemetry import log_ops_event_safe
from data_workers.ingest_outbox import enqueue_memory_ingest
from next_actions.errors import NextActionError
from next_actions.payloads import GrowthActionPayload, merge_payload
from next_actions.rules import legal_action_keys
from next_actions.service import run_next_actions
from next_actions.status_service import EXECUTABLE_STATUSES, complete_next_action, snooze_next_action

logger = logging.getLogger(__name__)

FOLLOWUP_CADENCE_DAYS = 3

# A repeat of a successful (action, key) inside this window returns the earlier execution
REPEAT_WINDOW_SECONDS = 60


@dataclass
class ExecutionRequest:
    session: Session
    next_action: NextBestAction
    payload: Any
    actor_user_id: Optional[str]
    now: datetime


@dataclass
class ExecutorResult:
    success: bool
    summary: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryActionResult:
    ok: bool
    execution_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result_summary: Optional[str] = None


@dataclass(frozen=True)
class DeliveryActionDefinition:
    label: str
    run: Callable[[ExecutionRequest], ExecutorResult]
    # False when the executor sets the action status itself
    marks_executed: bool = True
    confirm_text: Optional[str] = None


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

def _mark_done(request: ExecutionRequest) -> ExecutorResult:
    complete_next_action(request.session, request.next_action)
    return ExecutorResult(success=True, summary="Marked done")


def _snooze_1d(request: ExecutionRequest) -> ExecutorResult:
    action = snooze_next_action(request.session, request.next_action.id, now=request.now, days=1)
    return ExecutorResult(
        success=True,
        summary="Snoozed for 1 day",
        meta={"snoozedUntil": action.snoozed_until.isoformat()},
    )


def _growth_deal(request: ExecutionRequest) -> tuple[Optional[Deal], Optional[ExecutorResult]]:
    payload = request.payload
    deal_id = payload.deal_id if isinstance(payload, GrowthActionPayload) else None
    if not deal_id:
        return None, ExecutorResult(
            success=False, error_code="missing_deal_id", error_message="Action payload has no dealId"
        )
    deal = request.session.get(Deal, deal_id)
    if deal is None:
        return None, ExecutorResult(
            success=False, error_code="deal_not_found", error_message=f"Deal {deal_id} not found"
        )
    return deal, None


def _growth_schedule_followup_3d(request: ExecutionRequest) -> ExecutorResult:
    deal, failure = _growth_deal(request)
    if failure is not None:
        return failure

    session = request.session
    next_at = request.now + timedelta(days=FOLLOWUP_CADENCE_DAYS)

    schedule = session.execute(
        select(FollowUpSchedule)
        .where(FollowUpSchedule.deal_id == deal.id, FollowUpSchedule.status == ScheduleStatus.ACTIVE)
        .order_by(FollowUpSchedule.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if schedule is None:
        schedule = FollowUpSchedule(deal_id=deal.id, status=ScheduleStatus.ACTIVE)
        session.add(schedule)

    schedule.next_follow_up_at = next_at
    schedule.cadence_days = FOLLOWUP_CADENCE_DAYS
    deal.next_follow_up_at = next_at

    session.add(OutreachEvent(
        deal_id=deal.id,
        owner_user_id=deal.owner_user_id,
        channel="other",
        type=OutreachEventType.FOLLOWUP_SCHEDULED,
        occurred_at=request.now,
        meta_json={"nextFollowUpAt": next_at.isoformat(), "cadenceDays": FOLLOWUP_CADENCE_DAYS},
    ))
    session.flush()

    return ExecutorResult(
        success=True,
        summary=f"Follow-up scheduled for {next_at.date().isoformat()}",
        meta={"dealId": deal.id, "scheduleId": schedule.id, "nextFollowUpAt": next_at.isoformat()},
    )


def _growth_mark_replied(request: ExecutionRequest) -> ExecutorResult:
    deal, failure = _growth_deal(request)
    if failure is not None:
        return failure

    session = request.session
    session.add(OutreachEvent(
        deal_id=deal.id,
        owner_user_id=deal.owner_user_id,
        channel="other",
        type=OutreachEventType.REPLY,
        occurred_at=request.now,
    ))
    if deal.stage not in CLOSED_DEAL_STAGES:
        deal.stage = DealStage.REPLIED
    session.flush()

    return ExecutorResult(success=True, summary="Reply logged", meta={"dealId": deal.id, "stage": deal.stage.value})


def _run_next_actions(request: ExecutionRequest) -> ExecutorResult:
    action = request.next_action
    result = run_next_actions(
        request.session,
        entity_type=action.entity_type,
        entity_id=action.entity_id,
        actor_user_id=request.actor_user_id,
        now=request.now,
        commit=False,
    )
    return ExecutorResult(
        success=True,
        summary=f"Re-ran {result.scope}: {result.created} created, {result.updated} updated",
        meta={"runKey": result.run_key, "created": result.created, "updated": result.updated},
    )


DELIVERY_ACTIONS: Dict[str, DeliveryActionDefinition] = {
    "mark_done": DeliveryActionDefinition(label="Mark done", run=_mark_done),
    "snooze_1d": DeliveryActionDefinition(label="Snooze 1 day", run=_snooze_1d, marks_executed=False),
    "growth_schedule_followup_3d": DeliveryActionDefinition(
        label="Schedule follow-up in 3 days",
        run=_growth_schedule_followup_3d,
        confirm_text="Schedule the next follow-up for this deal in 3 days?",
    ),
    "growth_mark_replied": DeliveryActionDefinition(
        label="Mark replied",
        run=_growth_mark_replied,
        confirm_text="Log a reply and move this deal to replied?",
    ),
    "run_next_actions": DeliveryActionDefinition(label="Re-run next actions", run=_run_next_actions),
}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def _failure(error_code: str, error_message: str) -> DeliveryActionResult:
    return DeliveryActionResult(ok=False, error_code=error_code, error_message=error_message)


def _recent_success(
    session: Session, next_action_id: str, action_key: str, now: datetime
) -> Optional[NextActionExecution]:
    since = now - timedelta(seconds=REPEAT_WINDOW_SECONDS)
    return session.execute(
        select(NextActionExecution)
        .where(
            NextActionExecution.next_action_id == next_action_id,
            NextActionExecution.action_key == action_key,
            NextActionExecution.status == ExecutionStatus.SUCCESS,
            NextActionExecution.started_at >= since,
        )
        .order_by(NextActionExecution.started_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def run_delivery_action(
    session: Session,
    next_action_id: str,
    action_key: str,
    actor_user_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    attribution_outcome: Optional[str] = None,
) -> DeliveryActionResult:
    now = now or utcnow()

    definition = DELIVERY_ACTIONS.get(action_key)
    if definition is None:
        return _failure("unknown_action", f"Unknown action key '{action_key}'")

    action = session.get(NextBestAction, next_action_id)
    if action is None:
        return _failure("not_found", f"Next action {next_action_id} not found")

    if action_key not in legal_action_keys(action.created_by_rule):
        return _failure(
            "invalid_action", f"Action '{action_key}' is not allowed for rule '{action.created_by_rule}'"
        )

    if action.status not in EXECUTABLE_STATUSES:
        return _failure("invalid_state", f"Next action is {action.status.value}")

    recent = _recent_success(session, action.id, action_key, now)
    if recent is not None:
        logger.info(f"Action '{action_key}' on {action.id} already succeeded as {recent.id}; not re-running")
        return DeliveryActionResult(ok=True, execution_id=recent.id)

    try:
        typed_payload = merge_payload(action.payload_json, payload)
    except NextActionError as e:
        return _failure(e.error_code, e.message)

    execution = NextActionExecution(
        next_action_id=action.id,
        action_key=action_key,
        actor_user_id=actor_user_id,
        status=ExecutionStatus.PENDING,
        started_at=now,
    )
    session.add(execution)
    session.commit()

    request = ExecutionRequest(
        session=session, next_action=action, payload=typed_payload, actor_user_id=actor_user_id, now=now
    )
    try:
        with session.begin_nested():
            outcome = definition.run(request)
            if not outcome.success:
                raise _ExecutorFailed(outcome)
    except _ExecutorFailed as e:
        outcome = e.outcome
    except NextActionError as e:
        outcome = ExecutorResult(success=False, error_code=e.error_code, error_message=e.message)
    except Exception as e:
        logger.exception(f"Executor '{action_key}' raised for next action {action.id}")
        outcome = ExecutorResult(
            success=False, error_code="internal_error", error_message=sanitize_error_message(e)
        )

    finished_at = utcnow()
    execution.finished_at = finished_at
    execution.meta_json = sanitize_meta(outcome.meta) or None
    action.last_executed_at = finished_at

    if outcome.success:
        execution.status = ExecutionStatus.SUCCESS
        action.last_execution_status = ExecutionStatus.SUCCESS.value
        action.last_execution_error_code = None
        action.last_execution_error_message = None
        if definition.marks_executed:
            action.status = NextActionStatus.EXECUTED
    else:
        error_message = sanitize_error_message(outcome.error_message)
        execution.status = ExecutionStatus.FAILED
        execution.error_code = outcome.error_code or "executor_failed"
        execution.error_message = error_message
        action.last_execution_status = ExecutionStatus.FAILED.value
        action.last_execution_error_code = execution.error_code
        action.last_execution_error_message = error_message

    execution_id = execution.id
    telemetry_meta = {
        "nextActionId": action.id,
        "actionKey": action_key,
        "ruleKey": action.created_by_rule,
        "executionId": execution_id,
        "errorCode": execution.error_code,
    }
    error_code, error_message = execution.error_code, execution.error_message
    session.commit()

    enqueue_memory_ingest(
        "execution",
        execution_id=execution_id,
        actor_user_id=actor_user_id,
        attribution_outcome=attribution_outcome,
    )

    log_ops_event_safe(
        category="nba",
        event_key="nba.execute.success" if outcome.success else "nba.execute.failure",
        status="success" if outcome.success else "failure",
        actor_type="user" if actor_user_id else "system",
        actor_id=actor_user_id,
        error_message=error_message,
        meta=telemetry_meta,
    )

    if outcome.success:
        return DeliveryActionResult(ok=True, execution_id=execution_id, result_summary=outcome.summary)
    return DeliveryActionResult(
        ok=False,
        execution_id=execution_id,
        error_code=error_code,
        error_message=error_message,
    )


class _ExecutorFailed(Exception):
    """Rolls back the executor's savepoint when it reports a failure."""

    def __init__(self, outcome: ExecutorResult):
        super().__init__(outcome.error_code)
        self.outcome = outcome
