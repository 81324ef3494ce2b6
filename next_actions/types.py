from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from data_models.dbo_next_action import NextActionPriority, SourceType
from next_actions.payloads import (
    GrowthActionPayload,
    OpsActionPayload,
    ScoreActionPayload,
    dump_payload,
)


class NextActionContext(BaseModel):
    """
    Read-only snapshot the rules evaluate against.
    `now` is the only clock a rule may look at.
    """

    model_config = ConfigDict(frozen=True)

    now: datetime
    # Entity the run was requested for; None means the scope itself
    entity_id: Optional[str] = None

    # command_center
    command_center_band: Optional[str] = None
    failed_delivery_count: int = 0
    overdue_reminders_count: int = 0
    sent_no_followup_date_count: int = 0
    retention_overdue_count: int = 0
    handoff_no_client_confirm_count: int = 0
    won_no_delivery_count: int = 0
    referral_gap_count: int = 0
    stage_stall_count: int = 0

    # founder_growth
    growth_owner_user_id: Optional[str] = None
    growth_deal_count: int = 0
    growth_overdue_count: int = 0
    growth_no_outreach_count: int = 0
    growth_last_activity_at: Optional[datetime] = None
    growth_first_overdue_deal_id: Optional[str] = None
    growth_first_no_outreach_deal_id: Optional[str] = None


class NextActionCandidate(BaseModel):
    """Ephemeral rule output, reconciled into NextBestAction rows by dedupe_key."""

    title: str
    reason: str
    priority: NextActionPriority
    score: float = 0.0
    source_type: SourceType
    source_id: Optional[str] = None
    action_url: Optional[str] = None

    dedupe_key: str
    created_by_rule: str
    entity_type: str
    entity_id: str

    payload: Union[GrowthActionPayload, OpsActionPayload, ScoreActionPayload] = Field(discriminator="family")
    explanation: Dict[str, Any] = Field(default_factory=dict)
    count_boost: int = 0

    @property
    def payload_json(self) -> Dict[str, Any]:
        return dump_payload(self.payload)
