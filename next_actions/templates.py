"""
Playbooks for persisted actions.

A playbook says why an action matters, what done looks like and which
steps get there. The suggested actions are the executor keys the creating
rule allows, labelled from the delivery action registry, so the dashboard
never offers a key the runner would reject.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from data_models.dbo_next_action import NextBestAction
from next_actions.delivery_actions import DELIVERY_ACTIONS
from next_actions.rules import GENERIC_ACTION_KEYS, legal_action_keys


@dataclass(frozen=True)
class Playbook:
    why: str
    outcome: str
    checklist: Tuple[str, ...]


@dataclass
class SuggestedAction:
    action_key: str
    label: str
    confirm_text: Optional[str] = None


@dataclass
class NextActionTemplate:
    rule_key: str
    title: str
    why: str
    outcome: str
    checklist: List[str] = field(default_factory=list)
    suggested_actions: List[SuggestedAction] = field(default_factory=list)


PLAYBOOKS: Dict[str, Playbook] = {
    "score_in_critical_band": Playbook(
        why="Command center health is in the critical band.",
        outcome="Score moves out of the critical band.",
        checklist=(
            "Open the scoreboard and review the top negative factors",
            "Check recent score events for sharp drops",
            "Address the highest-impact factors first",
        ),
    ),
    "failed_notification_deliveries": Playbook(
        why="Recipients may miss alerts while deliveries keep failing.",
        outcome="Failed deliveries retried or channel config fixed.",
        checklist=(
            "Filter notifications by failed",
            "Retry the deliveries or fix the channel config",
            "Read the delivery logs for error details",
        ),
    ),
    "overdue_reminders_high_priority": Playbook(
        why="Overdue high-priority reminders push other work back.",
        outcome="Overdue reminders completed or rescheduled.",
        checklist=("Filter reminders by overdue", "Complete or reschedule each one"),
    ),
    "proposals_sent_no_followup_date": Playbook(
        why="Proposals without a follow-up date fall through the cracks.",
        outcome="Every sent proposal has a next follow-up date.",
        checklist=("Open proposal follow-ups", "Set a follow-up date on each sent proposal"),
    ),
    "retention_overdue": Playbook(
        why="Finished clients need check-ins to stay warm.",
        outcome="Retention check-ins done and next dates set.",
        checklist=(
            "Filter retention by overdue",
            "Contact each client",
            "Set the next retention date",
        ),
    ),
    "handoff_no_client_confirm": Playbook(
        why="Without client confirmation the delivery status stays unclear.",
        outcome="Handoffs confirmed by clients.",
        checklist=("Open the handoff queue", "Ask each client to confirm", "Record the confirmation"),
    ),
    "flywheel_won_no_delivery": Playbook(
        why="Won deals without a delivery project delay kickoff.",
        outcome="Every won deal has a delivery project.",
        checklist=(
            "Create a delivery project for each won deal",
            "Link it to the lead and set milestones",
            "Schedule the kickoff",
        ),
    ),
    "flywheel_referral_gap": Playbook(
        why="Happy clients are the cheapest source of new leads.",
        outcome="Referral asks sent on recent wins.",
        checklist=("Review deals won 7+ days ago", "Ask for a referral", "Update the referral status"),
    ),
    "flywheel_stage_stall": Playbook(
        why="Leads with no contact for 10+ days go cold.",
        outcome="Stalled leads re-engaged.",
        checklist=("Review stalled leads", "Send a light check-in", "Update the last contact date"),
    ),
    "growth_overdue_followups": Playbook(
        why="Prospects waiting past their follow-up date are slipping.",
        outcome="Each overdue deal has a reply logged or a new follow-up date.",
        checklist=(
            "Open the growth pipeline",
            "Follow up on the oldest overdue deal",
            "Log the reply or schedule the next follow-up",
        ),
    ),
    "growth_no_outreach_sent": Playbook(
        why="New prospects with no outreach never enter the pipeline.",
        outcome="First outreach sent to every new deal.",
        checklist=("Draft outreach for the new deal", "Send it", "Schedule the first follow-up"),
    ),
}

DEFAULT_PLAYBOOK = Playbook(
    why="Recommended from the current system state.",
    outcome="Action completed and marked done.",
    checklist=("Review the action", "Take the recommended step", "Mark done when complete"),
)


def suggested_actions(rule_name: str) -> List[SuggestedAction]:
    """Rule-specific keys first, then the generic ones."""
    keys = sorted(legal_action_keys(rule_name), key=lambda k: (k in GENERIC_ACTION_KEYS, k))
    return [
        SuggestedAction(
            action_key=key,
            label=DELIVERY_ACTIONS[key].label,
            confirm_text=DELIVERY_ACTIONS[key].confirm_text,
        )
        for key in keys
        if key in DELIVERY_ACTIONS
    ]


def build_next_action_template(action: NextBestAction) -> NextActionTemplate:
    playbook = PLAYBOOKS.get(action.created_by_rule, DEFAULT_PLAYBOOK)
    return NextActionTemplate(
        rule_key=action.created_by_rule,
        title=action.title,
        why=playbook.why,
        outcome=playbook.outcome,
        checklist=list(playbook.checklist),
        suggested_actions=suggested_actions(action.created_by_rule),
    )
