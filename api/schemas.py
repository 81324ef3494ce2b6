"""Request / response schemas. JSON uses camelCase, Python uses snake_case."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from data_models.dbo_memory import WeightKind
from data_models.dbo_next_action import NextActionPriority, NextActionStatus, SourceType
from operator_memory.attribution import AttributionContext


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================
# Next Actions
# ============================================================

class RunNextActionsResponse(ApiModel):
    created: int
    updated: int
    run_key: str
    candidate_count: int
    suppressed_count: int = 0
    last_run_at: datetime


class NextActionOut(ApiModel):
    id: str
    title: str
    reason: Optional[str] = None
    priority: NextActionPriority
    score: float
    status: NextActionStatus
    source_type: SourceType
    source_id: Optional[str] = None
    action_url: Optional[str] = None
    dedupe_key: str
    created_by_rule: str
    entity_type: str
    entity_id: str
    payload_json: Optional[Dict[str, Any]] = None
    explanation_json: Optional[Dict[str, Any]] = None
    snoozed_until: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    last_execution_status: Optional[str] = None
    last_execution_error_code: Optional[str] = None
    last_execution_error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AttributionSnapshots(ApiModel):
    before: AttributionContext
    after: AttributionContext


class ExecuteRequest(ApiModel):
    action_key: Optional[str] = Field(default=None, description="Executor key, e.g. mark_done")
    payload: Optional[Dict[str, Any]] = None
    attribution: Optional[AttributionSnapshots] = None


class ExecuteResponse(ApiModel):
    ok: bool
    execution_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result_summary: Optional[str] = None


class DismissRequest(ApiModel):
    suppress_days: Optional[int] = Field(default=None, ge=1, le=365)


class SnoozeRequest(ApiModel):
    days: float = Field(default=1, gt=0, le=90)


class SuggestedActionOut(ApiModel):
    action_key: str
    label: str
    confirm_text: Optional[str] = None


class NextActionTemplateOut(ApiModel):
    rule_key: str
    title: str
    why: str
    outcome: str
    checklist: List[str]
    suggested_actions: List[SuggestedActionOut]


class StatusChangeResponse(ApiModel):
    id: str
    status: NextActionStatus
    snoozed_until: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    preference_id: Optional[str] = None


# ============================================================
# Operator Memory
# ============================================================

class LearnedWeightOut(ApiModel):
    actor_user_id: str
    kind: WeightKind
    key: str
    weight: float
    stats_json: Dict[str, Any]
    updated_at: Optional[datetime] = None


class FounderReviewIngestResponse(ApiModel):
    week_id: str
    status: str


class MemorySummaryResponse(ApiModel):
    actor_user_id: str
    window_days: int
    window_start: datetime
    window_end: datetime
    current: Dict[str, Any]
    prior: Dict[str, Any]
    trends: Dict[str, Any]
    suggestions: List[Dict[str, Any]]
    alerts: List[Dict[str, Any]]
