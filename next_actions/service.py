import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_next_action import NextActionStatus, NextBestAction
from data_services.telemetry import log_ops_event_safe
from main_configs import NBA_USE_LEARNED_WEIGHTS
from next_actions.fetch_context import SignalsProvider, build_next_action_context
from next_actions.preferences import filter_by_preferences, load_active_suppressions
from next_actions.reconciler import record_next_action_run, upsert_next_actions
from next_actions.rules import produce_next_actions
from next_actions.scopes import FOUNDER_GROWTH, parse_scope
from operator_memory.weights import LearnedWeightStore

logger = logging.getLogger(__name__)


@dataclass
class RunNextActionsResult:
    run_key: str
    scope: str
    created: int
    updated: int
    candidate_count: int
    suppressed_count: int
    last_run_at: datetime


def build_run_key(actor_user_id: Optional[str], scope: str, entity_id: str, now: datetime) -> str:
    return f"nba:{actor_user_id or 'system'}:{scope}:{entity_id}:{now.date().isoformat()}"


def run_next_actions(
    session: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    mode: str = "manual",
    now: Optional[datetime] = None,
    growth_owner_user_id: Optional[str] = None,
    signals_provider: Optional[SignalsProvider] = None,
    use_learned_weights: Optional[bool] = None,
    commit: bool = True,
) -> RunNextActionsResult:
    """
    One evaluate + reconcile pass for a scope:
    snapshot -> rules -> suppressions -> upsert -> run log.
    """
    scope, entity_id = parse_scope(entity_type, entity_id)
    now = now or utcnow()

    owner = growth_owner_user_id or (actor_user_id if scope == FOUNDER_GROWTH else None)
    context = build_next_action_context(
        session, now=now, owner_user_id=owner, signals_provider=signals_provider, entity_id=entity_id
    )

    learned_weights = None
    if use_learned_weights is None:
        use_learned_weights = NBA_USE_LEARNED_WEIGHTS
    if use_learned_weights and actor_user_id:
        learned_weights = LearnedWeightStore(session).load_learned_weights(actor_user_id)

    candidates = produce_next_actions(context, scope, learned_weights)
    suppressions = load_active_suppressions(session, scope, entity_id, now)
    kept = filter_by_preferences(candidates, suppressions)

    result = upsert_next_actions(session, kept)
    run_key = build_run_key(actor_user_id, scope, entity_id, now)
    record_next_action_run(
        session, run_key, scope, result, candidate_count=len(candidates), mode=mode, now=now
    )

    if commit:
        session.commit()

    logger.info(
        f"NBA run {run_key}: {len(candidates)} candidate(s), "
        f"created={result.created} updated={result.updated} suppressed={len(candidates) - len(kept)}"
    )
    log_ops_event_safe(
        category="nba",
        event_key="nba.run.completed",
        actor_type="user" if actor_user_id else "system",
        actor_id=actor_user_id,
        meta={
            "runKey": run_key,
            "scope": scope,
            "mode": mode,
            "created": result.created,
            "updated": result.updated,
            "candidateCount": len(candidates),
        },
    )

    return RunNextActionsResult(
        run_key=run_key,
        scope=scope,
        created=result.created,
        updated=result.updated,
        candidate_count=len(candidates),
        suppressed_count=len(candidates) - len(kept),
        last_run_at=now,
    )


def list_next_actions(
    session: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    status: Optional[NextActionStatus] = NextActionStatus.QUEUED,
    now: Optional[datetime] = None,
    limit: int = 50,
) -> List[NextBestAction]:
    """
    Persisted actions ordered by (score desc, created_at desc).
    The queued view also surfaces snoozed actions whose snooze has expired.
    """
    scope, entity_id = parse_scope(entity_type, entity_id)
    now = now or utcnow()

    stmt = select(NextBestAction).where(
        NextBestAction.entity_type == scope,
        NextBestAction.entity_id == entity_id,
    )
    if status == NextActionStatus.QUEUED:
        stmt = stmt.where(
            or_(
                NextBestAction.status == NextActionStatus.QUEUED,
                (NextBestAction.status == NextActionStatus.SNOOZED) & (NextBestAction.snoozed_until <= now),
            )
        )
    elif status is not None:
        stmt = stmt.where(NextBestAction.status == status)

    stmt = stmt.order_by(NextBestAction.score.desc(), NextBestAction.created_at.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())
