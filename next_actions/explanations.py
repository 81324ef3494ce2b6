"""
"Why this action" explanations stored alongside each persisted action.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from next_actions.types import NextActionContext


class ExplanationEvidence(BaseModel):
    label: str
    value: Any
    source: str


class ExplanationLink(BaseModel):
    label: str
    href: str


class NextActionExplanation(BaseModel):
    rule_key: str = Field(alias="ruleKey")
    summary: str
    evidence: List[ExplanationEvidence] = Field(default_factory=list)
    recommended_steps: List[str] = Field(default_factory=list, alias="recommendedSteps")
    links: List[ExplanationLink] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


# rule key -> (summary, evidence(label, context getter, source), steps, links)
_Template = Tuple[
    str,
    List[Tuple[str, Callable[[NextActionContext], Any], str]],
    List[str],
    List[Tuple[str, str]],
]

_TEMPLATES: Dict[str, _Template] = {
    "score_in_critical_band": (
        "Command center health score is in the critical band and needs investigation.",
        [("Score band", lambda c: c.command_center_band or "unknown", "db:score_snapshot")],
        [
            "Open the scoreboard and review top negative factors",
            "Check recent score events for sharp drops",
            "Address highest-impact factors first",
        ],
        [("Scoreboard", "/dashboard/internal/scoreboard")],
    ),
    "failed_notification_deliveries": (
        "One or more notification deliveries failed in the last 24 hours.",
        [("Failed count", lambda c: c.failed_delivery_count, "db:notification_delivery")],
        [
            "Open Notifications and filter by failed",
            "Retry failed deliveries or fix channel config",
            "Check delivery logs for error details",
        ],
        [("Notifications", "/dashboard/notifications?filter=failed")],
    ),
    "overdue_reminders_high_priority": (
        "High-priority reminders are overdue and need attention.",
        [("Overdue count", lambda c: c.overdue_reminders_count, "db:ops_reminder")],
        [
            "Open Reminders and filter by overdue",
            "Complete or reschedule each overdue reminder",
        ],
        [("Reminders", "/dashboard/reminders?bucket=overdue")],
    ),
    "proposals_sent_no_followup_date": (
        "Proposals have been sent but have no follow-up date scheduled.",
        [("Count", lambda c: c.sent_no_followup_date_count, "db:proposal")],
        [
            "Open Proposal Follow-ups",
            "Set the next follow-up date for each sent proposal",
        ],
        [("Proposal Follow-ups", "/dashboard/proposal-followups?bucket=no_followup")],
    ),
    "retention_overdue": (
        "Retention follow-ups for completed projects are overdue.",
        [("Overdue count", lambda c: c.retention_overdue_count, "db:delivery_project")],
        [
            "Open Retention and filter by overdue",
            "Contact each client for a check-in",
            "Update the retention follow-up date",
        ],
        [("Retention", "/dashboard/retention?bucket=overdue")],
    ),
    "handoff_no_client_confirm": (
        "Handoffs are complete but awaiting client confirmation.",
        [("Awaiting count", lambda c: c.handoff_no_client_confirm_count, "db:delivery_project")],
        [
            "Request client confirmation for each handoff",
            "Record the confirmation when received",
        ],
        [("Handoffs", "/dashboard/handoffs?bucket=awaiting_confirm")],
    ),
    "flywheel_won_no_delivery": (
        "Won deals have no delivery project created.",
        [("Gap count", lambda c: c.won_no_delivery_count, "db:lead")],
        [
            "Create a delivery project for each won deal",
            "Schedule kickoff with the client",
        ],
        [("New Delivery", "/dashboard/delivery/new")],
    ),
    "flywheel_referral_gap": (
        "Won deals have not had a referral request.",
        [("Gap count", lambda c: c.referral_gap_count, "db:lead")],
        [
            "Review won deals from the last 7+ days",
            "Ask satisfied clients for referrals",
        ],
        [("Leads", "/dashboard/leads")],
    ),
    "flywheel_stage_stall": (
        "Active leads have had no contact for 10+ days.",
        [("Stalled count", lambda c: c.stage_stall_count, "db:lead")],
        [
            "Review stalled leads",
            "Re-engage with a light touch",
        ],
        [("Leads", "/dashboard/leads")],
    ),
    "growth_overdue_followups": (
        "Deals in the growth pipeline are past their follow-up date.",
        [
            ("Overdue deals", lambda c: c.growth_overdue_count, "db:follow_up_schedule"),
            ("Pipeline deals", lambda c: c.growth_deal_count, "db:deal"),
        ],
        [
            "Open the growth pipeline and sort by follow-up date",
            "Send a follow-up or schedule the next touch in 3 days",
        ],
        [("Growth", "/dashboard/growth")],
    ),
    "growth_no_outreach_sent": (
        "New deals have not received any outreach yet.",
        [("Deals without outreach", lambda c: c.growth_no_outreach_count, "db:outreach_event")],
        [
            "Draft a first-touch message for each new deal",
            "Log the outreach once sent",
        ],
        [("Growth", "/dashboard/growth")],
    ),
}

_DEFAULT_STEPS = ["Review the action", "Take the recommended step", "Mark done when complete"]


def build_next_action_explanation(
    rule_key: str,
    context: NextActionContext,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    template = _TEMPLATES.get(rule_key)
    if template is None:
        explanation = NextActionExplanation(
            rule_key=rule_key,
            summary="Action recommended based on current system state.",
            recommended_steps=list(_DEFAULT_STEPS),
        )
    else:
        summary, evidence, steps, links = template
        explanation = NextActionExplanation(
            rule_key=rule_key,
            summary=summary,
            evidence=[ExplanationEvidence(label=l, value=get(context), source=s) for l, get, s in evidence],
            recommended_steps=list(steps),
            links=[ExplanationLink(label=l, href=h) for l, h in links],
        )

    data = explanation.model_dump(mode="json", by_alias=True)
    if overrides:
        data.update(overrides)
    return data
