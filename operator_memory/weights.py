"""
Learned weight store.

This is the only code that writes operator_learned_weight rows. Clamping and
stats accumulation live here so no caller can push a weight out of bounds.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_memory import OperatorLearnedWeight, WeightKind
from next_actions.ranking import LearnedWeights

logger = logging.getLogger(__name__)

WEIGHT_MIN = -10.0
WEIGHT_MAX = 10.0


def clamp_weight(weight: float) -> float:
    return max(WEIGHT_MIN, min(WEIGHT_MAX, weight))


@dataclass
class LearnedWeightView:
    actor_user_id: str
    kind: WeightKind
    key: str
    weight: float
    stats_json: Dict[str, Any]
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: OperatorLearnedWeight) -> "LearnedWeightView":
        return cls(
            actor_user_id=row.actor_user_id,
            kind=row.kind,
            key=row.key,
            weight=row.weight,
            stats_json=dict(row.stats_json or {}),
            updated_at=row.updated_at,
        )


class LearnedWeightStore:
    def __init__(self, session: Session):
        self.session = session

    def _row(self, actor_user_id: str, kind: WeightKind, key: str) -> Optional[OperatorLearnedWeight]:
        return self.session.execute(
            select(OperatorLearnedWeight).where(
                OperatorLearnedWeight.actor_user_id == actor_user_id,
                OperatorLearnedWeight.kind == kind,
                OperatorLearnedWeight.key == key,
            )
        ).scalar_one_or_none()

    def get_weight(self, actor_user_id: str, kind: WeightKind, key: str) -> Optional[LearnedWeightView]:
        row = self._row(actor_user_id, WeightKind(kind), key)
        return LearnedWeightView.from_row(row) if row is not None else None

    def list_weights(self, actor_user_id: str, kind: Optional[WeightKind] = None) -> List[LearnedWeightView]:
        stmt = select(OperatorLearnedWeight).where(OperatorLearnedWeight.actor_user_id == actor_user_id)
        if kind is not None:
            stmt = stmt.where(OperatorLearnedWeight.kind == WeightKind(kind))
        stmt = stmt.order_by(OperatorLearnedWeight.kind, OperatorLearnedWeight.key)
        return [LearnedWeightView.from_row(r) for r in self.session.execute(stmt).scalars().all()]

    def load_learned_weights(self, actor_user_id: str) -> LearnedWeights:
        rule_weights: Dict[str, float] = {}
        action_weights: Dict[str, float] = {}
        for view in self.list_weights(actor_user_id):
            target = rule_weights if view.kind == WeightKind.RULE else action_weights
            target[view.key] = view.weight
        return LearnedWeights(rule_weights=rule_weights, action_weights=action_weights)

    def apply_delta(
        self,
        actor_user_id: str,
        kind: WeightKind,
        key: str,
        delta: float,
        success: bool = False,
        seen_at: Optional[datetime] = None,
    ) -> LearnedWeightView:
        """
        Adds `delta` to the weight, clamped to [WEIGHT_MIN, WEIGHT_MAX].
        stats_json.total always grows by one; successCount only when `success`.
        """
        kind = WeightKind(kind)
        seen_at = seen_at or utcnow()

        row = self._row(actor_user_id, kind, key)
        if row is None:
            row = self._insert(actor_user_id, kind, key)

        stats = dict(row.stats_json or {})
        row.weight = clamp_weight((row.weight or 0.0) + delta)
        # New dict so the JSON column registers the change
        row.stats_json = {
            "total": int(stats.get("total", 0)) + 1,
            "successCount": int(stats.get("successCount", 0)) + (1 if success else 0),
            "lastSeenAt": seen_at.isoformat(),
        }
        row.updated_at = utcnow()
        self.session.flush()

        logger.debug(f"Weight {actor_user_id}/{kind.value}/{key} -> {row.weight}")
        return LearnedWeightView.from_row(row)

    def _insert(self, actor_user_id: str, kind: WeightKind, key: str) -> OperatorLearnedWeight:
        row = OperatorLearnedWeight(
            actor_user_id=actor_user_id, kind=kind, key=key, weight=0.0, stats_json={}
        )
        try:
            with self.session.begin_nested():
                self.session.add(row)
            return row
        except IntegrityError:
            existing = self._row(actor_user_id, kind, key)
            if existing is None:
                raise
            return existing
