"""
Candidate reconciler: folds rule output into next_best_action rows.

The unique index on dedupe_key is the only idempotency guarantee. Two runs
racing on the same key both try to insert; the loser hits IntegrityError
inside its savepoint and falls back to an update.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_next_action import NextActionRun, NextActionStatus, NextBestAction
from next_actions.types import NextActionCandidate

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    created: int = 0
    updated: int = 0


def _find_by_dedupe_key(session: Session, dedupe_key: str) -> Optional[NextBestAction]:
    return session.execute(
        select(NextBestAction).where(NextBestAction.dedupe_key == dedupe_key)
    ).scalar_one_or_none()


def _new_action(candidate: NextActionCandidate) -> NextBestAction:
    return NextBestAction(
        title=candidate.title,
        reason=candidate.reason,
        priority=candidate.priority,
        score=candidate.score,
        status=NextActionStatus.QUEUED,
        source_type=candidate.source_type,
        source_id=candidate.source_id,
        action_url=candidate.action_url,
        dedupe_key=candidate.dedupe_key,
        created_by_rule=candidate.created_by_rule,
        entity_type=candidate.entity_type,
        entity_id=candidate.entity_id,
        payload_json=candidate.payload_json,
        explanation_json=candidate.explanation,
    )


def _refresh_action(action: NextBestAction, candidate: NextActionCandidate) -> None:
    # id, dedupe_key and status are never touched here
    action.title = candidate.title
    action.reason = candidate.reason
    action.priority = candidate.priority
    action.score = candidate.score
    action.source_id = candidate.source_id
    action.action_url = candidate.action_url
    action.payload_json = candidate.payload_json
    action.explanation_json = candidate.explanation


def upsert_next_actions(session: Session, candidates: Iterable[NextActionCandidate]) -> UpsertResult:
    """Inserts new dedupe keys as queued and refreshes existing ones. Flushes, does not commit."""
    result = UpsertResult()

    for candidate in candidates:
        existing = _find_by_dedupe_key(session, candidate.dedupe_key)
        if existing is None:
            try:
                with session.begin_nested():
                    session.add(_new_action(candidate))
                result.created += 1
                continue
            except IntegrityError:
                logger.info(f"Concurrent insert for '{candidate.dedupe_key}', updating instead")
                existing = _find_by_dedupe_key(session, candidate.dedupe_key)
                if existing is None:
                    raise

        _refresh_action(existing, candidate)
        result.updated += 1

    session.flush()
    return result


def record_next_action_run(
    session: Session,
    run_key: str,
    scope: str,
    result: UpsertResult,
    candidate_count: int,
    mode: str = "manual",
    now: Optional[datetime] = None,
) -> NextActionRun:
    run = NextActionRun(
        run_key=run_key,
        mode=mode,
        scope=scope,
        created_count=result.created,
        updated_count=result.updated,
        candidate_count=candidate_count,
        created_at=now or utcnow(),
    )
    session.add(run)
    session.flush()
    return run
