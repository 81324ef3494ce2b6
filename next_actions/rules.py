"""
Next Best Action rules.

Each rule is a small class: it looks at a read-only NextActionContext and
returns zero or more candidates. Rules never talk to the database and never
read the wall clock; the context carries `now`.
"""

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from data_models.dbo_next_action import NextActionPriority, SourceType
from next_actions.errors import UnknownScopeError
from next_actions.explanations import build_next_action_explanation
from next_actions.payloads import GrowthActionPayload, OpsActionPayload, ScoreActionPayload
from next_actions.ranking import LearnedWeights, compute_next_action_score
from next_actions.scopes import COMMAND_CENTER, FOUNDER_GROWTH
from next_actions.types import NextActionCandidate, NextActionContext

logger = logging.getLogger(__name__)

# Legal for every rule
GENERIC_ACTION_KEYS: FrozenSet[str] = frozenset({"mark_done", "snooze_1d"})

STALL_HIGH_PRIORITY_MIN = 3


def build_dedupe_key(rule_name: str, scope: str, discriminator: Optional[str] = None) -> str:
    key = f"nba:{rule_name}:{scope}"
    if discriminator:
        key = f"{key}:{discriminator}"
    return key


class Rule:
    """Base class. Subclasses set `name`, `action_keys` and implement `evaluate`."""

    name: str = ""
    action_keys: Tuple[str, ...] = ()

    def __init__(self, scope: str):
        self.scope = scope

    def evaluate(self, context: NextActionContext) -> List[NextActionCandidate]:
        raise NotImplementedError

    def candidate(
        self,
        context: NextActionContext,
        *,
        title: str,
        reason: str,
        priority: NextActionPriority,
        source_type: SourceType,
        payload,
        action_url: Optional[str] = None,
        source_id: Optional[str] = None,
        count_boost: int = 0,
        discriminator: Optional[str] = None,
    ) -> NextActionCandidate:
        entity_id = context.entity_id or self.scope
        if entity_id != self.scope:
            # Rows for a specific entity must not collide with the scope-wide row
            discriminator = ":".join(p for p in (entity_id, discriminator) if p)

        return NextActionCandidate(
            title=title,
            reason=reason,
            priority=priority,
            source_type=source_type,
            source_id=source_id,
            action_url=action_url,
            dedupe_key=build_dedupe_key(self.name, self.scope, discriminator),
            created_by_rule=self.name,
            entity_type=self.scope,
            entity_id=entity_id,
            payload=payload,
            explanation=build_next_action_explanation(self.name, context),
            count_boost=count_boost,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(scope={self.scope!r})"


# ---------------------------------------------------------------------------
# command_center
# ---------------------------------------------------------------------------

class ScoreInCriticalBandRule(Rule):
    name = "score_in_critical_band"
    action_keys = ("run_next_actions",)

    def evaluate(self, context):
        if context.command_center_band != "critical":
            return []
        return [self.candidate(
            context,
            title="Investigate top score reasons",
            reason="Command center score in critical band",
            priority=NextActionPriority.CRITICAL,
            source_type=SourceType.SCORE,
            source_id="command_center",
            action_url="/dashboard/internal/scoreboard",
            payload=ScoreActionPayload(entity_type="command_center"),
        )]


class FailedNotificationDeliveriesRule(Rule):
    name = "failed_notification_deliveries"
    action_keys = ("run_next_actions",)

    def evaluate(self, context):
        count = context.failed_delivery_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Retry failed deliveries",
            reason=f"{count} delivery attempt(s) failed",
            priority=NextActionPriority.HIGH,
            source_type=SourceType.NOTIFICATION_EVENT,
            action_url="/dashboard/notifications?filter=failed",
            payload=OpsActionPayload(action="retry_failed"),
            count_boost=count,
        )]


class OverdueRemindersRule(Rule):
    name = "overdue_reminders_high_priority"

    def evaluate(self, context):
        count = context.overdue_reminders_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Clear overdue reminders",
            reason=f"{count} reminder(s) overdue",
            priority=NextActionPriority.MEDIUM,
            source_type=SourceType.REMINDER,
            action_url="/dashboard/reminders?bucket=overdue",
            payload=OpsActionPayload(bucket="overdue"),
            count_boost=count,
        )]


class ProposalsNoFollowupDateRule(Rule):
    name = "proposals_sent_no_followup_date"

    def evaluate(self, context):
        count = context.sent_no_followup_date_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Schedule follow-up dates",
            reason=f"{count} proposal(s) need follow-up date",
            priority=NextActionPriority.MEDIUM,
            source_type=SourceType.PROPOSAL,
            action_url="/dashboard/proposal-followups?bucket=no_followup",
            payload=OpsActionPayload(bucket="no_followup"),
            count_boost=count,
        )]


class RetentionOverdueRule(Rule):
    name = "retention_overdue"

    def evaluate(self, context):
        count = context.retention_overdue_count
        if count <= 0:
            return []
        priority = NextActionPriority.HIGH if count >= STALL_HIGH_PRIORITY_MIN else NextActionPriority.MEDIUM
        return [self.candidate(
            context,
            title="Contact retention clients",
            reason=f"{count} retention task(s) overdue",
            priority=priority,
            source_type=SourceType.DELIVERY_PROJECT,
            action_url="/dashboard/retention?bucket=overdue",
            payload=OpsActionPayload(bucket="overdue"),
            count_boost=count,
        )]


class HandoffNoClientConfirmRule(Rule):
    name = "handoff_no_client_confirm"

    def evaluate(self, context):
        count = context.handoff_no_client_confirm_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Request client confirmation",
            reason=f"{count} handoff(s) awaiting client confirm",
            priority=NextActionPriority.MEDIUM,
            source_type=SourceType.DELIVERY_PROJECT,
            action_url="/dashboard/handoffs?bucket=awaiting_confirm",
            payload=OpsActionPayload(bucket="awaiting_confirm"),
            count_boost=count,
        )]


class WonNoDeliveryRule(Rule):
    name = "flywheel_won_no_delivery"

    def evaluate(self, context):
        count = context.won_no_delivery_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Create delivery projects for won deals",
            reason=f"{count} won deal(s) have no delivery project",
            priority=NextActionPriority.HIGH,
            source_type=SourceType.INTAKE_LEAD,
            action_url="/dashboard/delivery/new",
            payload=OpsActionPayload(gap="won_no_delivery"),
            count_boost=count * 3,
        )]


class ReferralGapRule(Rule):
    name = "flywheel_referral_gap"

    def evaluate(self, context):
        count = context.referral_gap_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Ask for referrals on won deals",
            reason=f"{count} won deal(s) with no referral request",
            priority=NextActionPriority.MEDIUM,
            source_type=SourceType.INTAKE_LEAD,
            action_url="/dashboard/leads",
            payload=OpsActionPayload(gap="referral_not_asked"),
            count_boost=count * 2,
        )]


class StageStallRule(Rule):
    name = "flywheel_stage_stall"

    def evaluate(self, context):
        count = context.stage_stall_count
        if count <= 0:
            return []
        priority = NextActionPriority.HIGH if count >= STALL_HIGH_PRIORITY_MIN else NextActionPriority.MEDIUM
        return [self.candidate(
            context,
            title="Re-engage stalled leads",
            reason=f"{count} active lead(s) with no contact 10+ days",
            priority=priority,
            source_type=SourceType.INTAKE_LEAD,
            action_url="/dashboard/leads",
            payload=OpsActionPayload(gap="stage_stall"),
            count_boost=count * 2,
        )]


# ---------------------------------------------------------------------------
# founder_growth
# ---------------------------------------------------------------------------
# Keys carry no owner: a deployment has one founder pipeline, so owners share
# the scope-wide row. Runs that pass an entity id get their own rows.

class GrowthOverdueFollowupsRule(Rule):
    name = "growth_overdue_followups"
    action_keys = ("growth_schedule_followup_3d", "growth_mark_replied")

    def evaluate(self, context):
        count = context.growth_overdue_count
        if count <= 0:
            return []
        priority = NextActionPriority.HIGH if count >= STALL_HIGH_PRIORITY_MIN else NextActionPriority.MEDIUM
        return [self.candidate(
            context,
            title="Follow up on growth pipeline",
            reason=f"{count} deal(s) with overdue follow-up",
            priority=priority,
            source_type=SourceType.GROWTH_PIPELINE,
            action_url="/dashboard/growth",
            payload=GrowthActionPayload(bucket="overdue", deal_id=context.growth_first_overdue_deal_id),
            count_boost=count,
        )]


class GrowthNoOutreachRule(Rule):
    name = "growth_no_outreach_sent"
    action_keys = ("growth_schedule_followup_3d",)

    def evaluate(self, context):
        count = context.growth_no_outreach_count
        if count <= 0:
            return []
        return [self.candidate(
            context,
            title="Send outreach to new prospects",
            reason=f"{count} new deal(s) with no outreach sent",
            priority=NextActionPriority.MEDIUM,
            source_type=SourceType.GROWTH_PIPELINE,
            action_url="/dashboard/growth",
            payload=GrowthActionPayload(bucket="no_outreach", deal_id=context.growth_first_no_outreach_deal_id),
            count_boost=count,
        )]


SCOPE_RULES: Dict[str, Tuple[Rule, ...]] = {
    COMMAND_CENTER: (
        ScoreInCriticalBandRule(COMMAND_CENTER),
        FailedNotificationDeliveriesRule(COMMAND_CENTER),
        OverdueRemindersRule(COMMAND_CENTER),
        ProposalsNoFollowupDateRule(COMMAND_CENTER),
        RetentionOverdueRule(COMMAND_CENTER),
        HandoffNoClientConfirmRule(COMMAND_CENTER),
        WonNoDeliveryRule(COMMAND_CENTER),
        ReferralGapRule(COMMAND_CENTER),
        StageStallRule(COMMAND_CENTER),
    ),
    FOUNDER_GROWTH: (
        GrowthOverdueFollowupsRule(FOUNDER_GROWTH),
        GrowthNoOutreachRule(FOUNDER_GROWTH),
    ),
}

RULE_ACTION_KEYS: Dict[str, FrozenSet[str]] = {
    rule.name: frozenset(rule.action_keys) | GENERIC_ACTION_KEYS
    for rules in SCOPE_RULES.values()
    for rule in rules
}

RULE_NAMES: Tuple[str, ...] = tuple(RULE_ACTION_KEYS)


def legal_action_keys(rule_name: str) -> FrozenSet[str]:
    """Action keys the creating rule allows. Unknown rules only get the generic keys."""
    return RULE_ACTION_KEYS.get(rule_name, GENERIC_ACTION_KEYS)


def produce_next_actions(
    context: NextActionContext,
    scope: str,
    learned_weights: Optional[LearnedWeights] = None,
) -> List[NextActionCandidate]:
    """
    Evaluates every rule of `scope` against the snapshot.

    Output follows the scope's rule order. Each candidate is scored on its own;
    ranking across candidates happens when persisted actions are listed.
    """
    rules: Optional[Sequence[Rule]] = SCOPE_RULES.get(scope)
    if rules is None:
        raise UnknownScopeError(f"Unknown scope '{scope}'")

    out: List[NextActionCandidate] = []
    for rule in rules:
        for candidate in rule.evaluate(context):
            factors = compute_next_action_score(
                candidate.priority,
                candidate.created_by_rule,
                count_boost=candidate.count_boost,
                learned_weights=learned_weights,
            )
            out.append(candidate.model_copy(update={"score": float(factors.total)}))

    logger.debug(f"Scope '{scope}' produced {len(out)} candidate(s)")
    return out
