from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from data_models.dbo_next_action import NextActionPreference, PreferenceStatus
from next_actions.types import NextActionCandidate

DEFAULT_SUPPRESS_DAYS = 30


@dataclass(frozen=True)
class Suppression:
    rule_key: Optional[str] = None
    dedupe_key: Optional[str] = None


def load_active_suppressions(
    session: Session, entity_type: str, entity_id: str, now: datetime
) -> List[Suppression]:
    rows = session.execute(
        select(NextActionPreference).where(
            NextActionPreference.entity_type == entity_type,
            NextActionPreference.entity_id == entity_id,
            NextActionPreference.status == PreferenceStatus.ACTIVE,
            or_(
                NextActionPreference.suppressed_until.is_(None),
                NextActionPreference.suppressed_until > now,
            ),
        )
    ).scalars().all()
    return [Suppression(rule_key=r.rule_key, dedupe_key=r.dedupe_key) for r in rows]


def is_suppressed(candidate: NextActionCandidate, suppressions: Sequence[Suppression]) -> bool:
    for s in suppressions:
        if s.dedupe_key and s.dedupe_key == candidate.dedupe_key:
            return True
        if s.rule_key and s.rule_key == candidate.created_by_rule:
            return True
    return False


def filter_by_preferences(
    candidates: Sequence[NextActionCandidate], suppressions: Sequence[Suppression]
) -> List[NextActionCandidate]:
    """Drops candidates whose rule or dedupe key the operator has suppressed."""
    if not suppressions:
        return list(candidates)
    return [c for c in candidates if not is_suppressed(c, suppressions)]


def create_suppression(
    session: Session,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    now: datetime,
    rule_key: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    days: int = DEFAULT_SUPPRESS_DAYS,
) -> NextActionPreference:
    if not rule_key and not dedupe_key:
        raise ValueError("A suppression needs a rule_key or a dedupe_key")

    preference = NextActionPreference(
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        rule_key=rule_key,
        dedupe_key=dedupe_key,
        suppressed_until=now + timedelta(days=days),
        status=PreferenceStatus.ACTIVE,
    )
    session.add(preference)
    session.flush()
    return preference
