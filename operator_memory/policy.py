"""
Memory policy: window stats over memory events, trend diffs between two
windows, suppression / risk suggestions and pattern alerts.
Everything except compute_window_stats is a pure function.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from data_models.base import utcnow
from data_models.dbo_memory import MemoryOutcome, MemorySourceType, OperatorMemoryEvent

SUPPRESSION_DISMISS_MIN = 3
SUPPRESSION_SUCCESS_RATE_MAX = 0.25
SUPPRESSION_CONFIDENCE_DIVISOR = 6
ALERT_FAILURE_MIN = 2
ALERT_DELTA_HIGH = 5
ALERT_DELTA_MEDIUM = 3
RISK_CONFIDENCE_DIVISOR = 10
TREND_LIMIT = 10

CRITICAL_RULE_KEYS = frozenset({
    "score_in_critical_band",
    "failed_notification_deliveries",
    "flywheel_won_no_delivery",
})

UNKNOWN_RULE_KEY = "unknown"

Severity = Literal["medium", "high", "critical"]


class RuleWindowStats(BaseModel):
    execute_success: int = 0
    execute_failure: int = 0
    dismiss: int = 0
    snooze: int = 0
    total: int = 0
    dismiss_rate: float = 0.0
    success_rate: float = 0.0


class WindowStats(BaseModel):
    by_rule_key: Dict[str, RuleWindowStats] = Field(default_factory=dict)


class TrendDiff(BaseModel):
    rule_key: str
    current_count: int
    prior_count: int
    delta: int
    direction: Literal["up", "down", "unchanged"]


class TrendDiffs(BaseModel):
    recurring: List[TrendDiff] = Field(default_factory=list)
    dismissed: List[TrendDiff] = Field(default_factory=list)
    successful: List[TrendDiff] = Field(default_factory=list)


class SuggestionEvidence(BaseModel):
    key: str
    value: float


class PolicySuggestion(BaseModel):
    type: Literal["suppression_30d", "raise_risk"]
    rule_key: str
    confidence: float
    reasons: List[str]
    evidence: List[SuggestionEvidence]
    severity: Optional[Severity] = None


class PatternAlert(BaseModel):
    rule_key: str
    severity: Severity
    title: str
    description: str
    dedupe_key: str


def compute_window_stats(session: Session, actor_user_id: str, start: datetime, end: datetime) -> WindowStats:
    """Per-rule counters for memory events in [start, end)."""
    rows = session.execute(
        select(
            OperatorMemoryEvent.rule_key,
            OperatorMemoryEvent.source_type,
            OperatorMemoryEvent.outcome,
        ).where(
            OperatorMemoryEvent.actor_user_id == actor_user_id,
            OperatorMemoryEvent.created_at >= start,
            OperatorMemoryEvent.created_at < end,
        )
    ).all()

    by_rule: Dict[str, RuleWindowStats] = defaultdict(RuleWindowStats)
    for rule_key, source_type, outcome in rows:
        s = by_rule[rule_key or UNKNOWN_RULE_KEY]
        s.total += 1
        if source_type == MemorySourceType.NBA_EXECUTE:
            if outcome == MemoryOutcome.SUCCESS:
                s.execute_success += 1
            elif outcome == MemoryOutcome.FAILURE:
                s.execute_failure += 1
        elif source_type == MemorySourceType.NBA_DISMISS:
            s.dismiss += 1
        elif source_type == MemorySourceType.NBA_SNOOZE:
            s.snooze += 1

    for s in by_rule.values():
        executed = s.execute_success + s.execute_failure
        s.dismiss_rate = s.dismiss / s.total if s.total else 0.0
        s.success_rate = s.execute_success / executed if executed else 0.0

    return WindowStats(by_rule_key=dict(by_rule))


def _by_abs_delta(diff: TrendDiff) -> int:
    return -abs(diff.delta)


def compute_trend_diffs(current: WindowStats, prior: WindowStats) -> TrendDiffs:
    diffs = TrendDiffs()
    for rule_key in sorted(set(current.by_rule_key) | set(prior.by_rule_key)):
        curr = current.by_rule_key.get(rule_key)
        prev = prior.by_rule_key.get(rule_key)
        current_count = curr.total if curr else 0
        prior_count = prev.total if prev else 0
        delta = current_count - prior_count
        direction = "up" if delta > 0 else "down" if delta < 0 else "unchanged"
        diff = TrendDiff(
            rule_key=rule_key,
            current_count=current_count,
            prior_count=prior_count,
            delta=delta,
            direction=direction,
        )

        diffs.recurring.append(diff)
        if (curr and curr.dismiss) or (prev and prev.dismiss):
            diffs.dismissed.append(diff)
        if (curr and curr.execute_success) or (prev and prev.execute_success):
            diffs.successful.append(diff)

    # Stable sort keeps rule-key order among equal deltas
    diffs.recurring = sorted(diffs.recurring, key=_by_abs_delta)[:TREND_LIMIT]
    diffs.dismissed = sorted(diffs.dismissed, key=_by_abs_delta)[:TREND_LIMIT]
    diffs.successful = sorted(diffs.successful, key=_by_abs_delta)[:TREND_LIMIT]
    return diffs


def _risk_severity(rule_key: str, failures: int, delta: int) -> Severity:
    if rule_key in CRITICAL_RULE_KEYS and (failures >= ALERT_FAILURE_MIN or delta >= ALERT_DELTA_MEDIUM):
        return "critical"
    if delta >= ALERT_DELTA_HIGH:
        return "high"
    return "medium"


def derive_policy_suggestions(stats: WindowStats, diffs: TrendDiffs) -> List[PolicySuggestion]:
    deltas = {d.rule_key: d.delta for d in diffs.recurring}
    suggestions: List[PolicySuggestion] = []

    for rule_key, s in stats.by_rule_key.items():
        if rule_key == UNKNOWN_RULE_KEY:
            continue

        if s.dismiss >= SUPPRESSION_DISMISS_MIN and s.success_rate <= SUPPRESSION_SUCCESS_RATE_MAX:
            suggestions.append(PolicySuggestion(
                type="suppression_30d",
                rule_key=rule_key,
                confidence=min(1.0, s.dismiss / SUPPRESSION_CONFIDENCE_DIVISOR),
                reasons=[
                    f"{s.dismiss} dismissals in window",
                    f"Success rate {s.success_rate * 100:.0f}% <= {SUPPRESSION_SUCCESS_RATE_MAX * 100:.0f}%",
                ],
                evidence=[
                    SuggestionEvidence(key="dismissCount", value=s.dismiss),
                    SuggestionEvidence(key="successRate", value=s.success_rate),
                    SuggestionEvidence(key="total", value=s.total),
                ],
            ))

        failures = s.execute_failure
        delta = deltas.get(rule_key, 0)
        if failures >= ALERT_FAILURE_MIN or delta >= ALERT_DELTA_MEDIUM:
            reasons = []
            if failures >= ALERT_FAILURE_MIN:
                reasons.append(f"{failures} failures in window")
            if delta >= ALERT_DELTA_MEDIUM:
                reasons.append(f"Delta +{delta} vs prior period")
            suggestions.append(PolicySuggestion(
                type="raise_risk",
                rule_key=rule_key,
                confidence=min(1.0, (failures + max(0, delta)) / RISK_CONFIDENCE_DIVISOR),
                reasons=reasons,
                evidence=[
                    SuggestionEvidence(key="failureCount", value=failures),
                    SuggestionEvidence(key="delta", value=delta),
                ],
                severity=_risk_severity(rule_key, failures, delta),
            ))

    return sorted(suggestions, key=lambda x: -x.confidence)


def build_pattern_alerts(suggestions: List[PolicySuggestion], now: Optional[datetime] = None) -> List[PatternAlert]:
    """One alert per rule with a raise_risk suggestion, deduped per day."""
    window_key = (now or utcnow()).date().isoformat()
    alerts: List[PatternAlert] = []
    seen = set()

    for s in suggestions:
        if s.type != "raise_risk" or s.rule_key in seen:
            continue
        seen.add(s.rule_key)
        alerts.append(PatternAlert(
            rule_key=s.rule_key,
            severity=s.severity or "medium",
            title=f"Pattern alert: {s.rule_key}",
            description=". ".join(s.reasons),
            dedupe_key=f"pattern:{s.rule_key}:{window_key}",
        ))

    return alerts


class MemorySummary(BaseModel):
    actor_user_id: str
    window_days: int
    window_start: datetime
    window_end: datetime
    current: WindowStats
    prior: WindowStats
    trends: TrendDiffs
    suggestions: List[PolicySuggestion]
    alerts: List[PatternAlert]


def build_memory_summary(
    session: Session, actor_user_id: str, days: int, now: Optional[datetime] = None
) -> MemorySummary:
    """Compares the last `days` days with the `days` before them."""
    end = now or utcnow()
    start = end - timedelta(days=days)
    prior_start = start - timedelta(days=days)

    current = compute_window_stats(session, actor_user_id, start, end)
    prior = compute_window_stats(session, actor_user_id, prior_start, start)
    trends = compute_trend_diffs(current, prior)
    suggestions = derive_policy_suggestions(current, trends)

    return MemorySummary(
        actor_user_id=actor_user_id,
        window_days=days,
        window_start=start,
        window_end=end,
        current=current,
        prior=prior,
        trends=trends,
        suggestions=suggestions,
        alerts=build_pattern_alerts(suggestions, now=end),
    )
