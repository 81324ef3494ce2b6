"""
Status transitions for persisted actions.

    queued  -> dismissed | snoozed | executed
    snoozed -> dismissed | snoozed | executed

Dismissed is terminal. Functions flush; the caller commits and then enqueues
the memory ingest so the ingest never sees uncommitted state.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from data_models.dbo_next_action import NextActionPreference, NextActionStatus, NextBestAction
from next_actions.errors import InvalidTransitionError, NextActionNotFoundError
from next_actions.preferences import create_suppression

logger = logging.getLogger(__name__)

OPEN_STATUSES = (NextActionStatus.QUEUED, NextActionStatus.SNOOZED)
EXECUTABLE_STATUSES = (NextActionStatus.QUEUED, NextActionStatus.SNOOZED, NextActionStatus.EXECUTED)

DEFAULT_SNOOZE_DAYS = 1
MAX_SNOOZE_DAYS = 90


def get_next_action(session: Session, next_action_id: str) -> NextBestAction:
    action = session.get(NextBestAction, next_action_id)
    if action is None:
        raise NextActionNotFoundError(f"Next action {next_action_id} not found")
    return action


def _require_open(action: NextBestAction, target: NextActionStatus) -> None:
    if action.status not in OPEN_STATUSES:
        raise InvalidTransitionError(
            f"Cannot move next action {action.id} from {action.status.value} to {target.value}"
        )


def dismiss_next_action(
    session: Session,
    next_action_id: str,
    now: datetime,
    actor_user_id: Optional[str] = None,
    suppress_days: Optional[int] = None,
) -> tuple[NextBestAction, Optional[NextActionPreference]]:
    """Dismisses an action; with `suppress_days` the rule is also muted for the scope."""
    action = get_next_action(session, next_action_id)
    _require_open(action, NextActionStatus.DISMISSED)

    action.status = NextActionStatus.DISMISSED
    action.dismissed_at = now
    action.snoozed_until = None

    preference = None
    if suppress_days:
        preference = create_suppression(
            session,
            actor_user_id=actor_user_id or "anonymous",
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            now=now,
            rule_key=action.created_by_rule,
            days=suppress_days,
        )
        logger.info(f"Suppressed rule '{action.created_by_rule}' for {suppress_days} day(s)")

    session.flush()
    return action, preference


def snooze_next_action(
    session: Session,
    next_action_id: str,
    now: datetime,
    days: float = DEFAULT_SNOOZE_DAYS,
) -> NextBestAction:
    if days <= 0 or days > MAX_SNOOZE_DAYS:
        raise InvalidTransitionError(f"Snooze must be between 0 and {MAX_SNOOZE_DAYS} days")

    action = get_next_action(session, next_action_id)
    _require_open(action, NextActionStatus.SNOOZED)

    action.status = NextActionStatus.SNOOZED
    action.snoozed_until = now + timedelta(days=days)
    session.flush()
    return action


def complete_next_action(session: Session, next_action: NextBestAction) -> NextBestAction:
    if next_action.status not in EXECUTABLE_STATUSES:
        raise InvalidTransitionError(f"Next action {next_action.id} is {next_action.status.value}")
    next_action.status = NextActionStatus.EXECUTED
    next_action.snoozed_until = None
    session.flush()
    return next_action
