from dataclasses import dataclass, field
from typing import Mapping, Optional

from pydantic import BaseModel

from data_models.dbo_next_action import NextActionPriority

PRIORITY_BASE = {
    NextActionPriority.CRITICAL: 90,
    NextActionPriority.HIGH: 75,
    NextActionPriority.MEDIUM: 55,
    NextActionPriority.LOW: 30,
}

MAX_COUNT_BOOST = 10
CRITICAL_IMPACT_BOOST = 5
RULE_WEIGHT_FACTOR = 2
ACTION_WEIGHT_FACTOR = 1
# Action key whose learned weight feeds every candidate's bias
BIAS_ACTION_KEY = "mark_done"
LOW_RULE_WEIGHT_THRESHOLD = -3
LOW_RULE_WEIGHT_PENALTY = 3

SCORE_MIN = 0
SCORE_MAX = 100


@dataclass(frozen=True)
class LearnedWeights:
    rule_weights: Mapping[str, float] = field(default_factory=dict)
    action_weights: Mapping[str, float] = field(default_factory=dict)


class ScoreFactors(BaseModel):
    base: int
    count_boost: int
    impact_boost: int
    learned_boost: float
    total: int


def compute_next_action_score(
    priority: NextActionPriority,
    rule_key: str,
    count_boost: int = 0,
    learned_weights: Optional[LearnedWeights] = None,
) -> ScoreFactors:
    """Rule-local score. Nothing here looks at other candidates."""
    base = PRIORITY_BASE[priority]
    boost = min(MAX_COUNT_BOOST, max(0, count_boost))
    impact = CRITICAL_IMPACT_BOOST if priority == NextActionPriority.CRITICAL else 0

    learned = 0.0
    if learned_weights is not None:
        rule_weight = learned_weights.rule_weights.get(rule_key, 0.0)
        action_weight = learned_weights.action_weights.get(BIAS_ACTION_KEY, 0.0)
        learned = rule_weight * RULE_WEIGHT_FACTOR + action_weight * ACTION_WEIGHT_FACTOR
        if rule_weight <= LOW_RULE_WEIGHT_THRESHOLD:
            learned -= LOW_RULE_WEIGHT_PENALTY

    total = max(SCORE_MIN, min(SCORE_MAX, round(base + boost + impact + learned)))
    return ScoreFactors(
        base=base,
        count_boost=boost,
        impact_boost=impact,
        learned_boost=learned,
        total=total,
    )
