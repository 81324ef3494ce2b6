"""
Before/after attribution for executed actions.

Callers capture an AttributionContext before and after an action; the delta
is mapped to improved / neutral / worsened and overrides the raw execution
status when memory is ingested.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

AttributionOutcome = Literal["improved", "neutral", "worsened"]

SCORE_IMPROVED_THRESHOLD = 5
SCORE_WORSENED_THRESHOLD = -5
RISK_OPEN_WORSENED_THRESHOLD = 2
# Lower index is a worse band
BAND_ORDER = ("critical", "warning", "healthy")


class ScoreSummary(BaseModel):
    band: str
    score: float


class RiskSummary(BaseModel):
    open_count: int = Field(default=0, alias="openCount")
    critical_count: int = Field(default=0, alias="criticalCount")
    top_keys: List[str] = Field(default_factory=list, alias="topKeys")

    model_config = ConfigDict(populate_by_name=True)


class NbaSummary(BaseModel):
    queued_count: int = Field(default=0, alias="queuedCount")
    top_rule_keys: List[str] = Field(default_factory=list, alias="topRuleKeys")

    model_config = ConfigDict(populate_by_name=True)


class AttributionContext(BaseModel):
    score: Optional[ScoreSummary] = None
    risk: RiskSummary = Field(default_factory=RiskSummary)
    nba: NbaSummary = Field(default_factory=NbaSummary)
    error: Optional[str] = None


class BandChange(BaseModel):
    from_band: str = Field(alias="from")
    to_band: str = Field(alias="to")

    model_config = ConfigDict(populate_by_name=True)


class AttributionDelta(BaseModel):
    score_delta: Optional[float] = None
    band_change: Optional[BandChange] = None
    risk_open_delta: int = 0
    risk_critical_delta: int = 0
    nba_queued_delta: int = 0
    error: Optional[str] = None


def _band_rank(band: str) -> int:
    return BAND_ORDER.index(band) if band in BAND_ORDER else 0


def compute_attribution_delta(before: AttributionContext, after: AttributionContext) -> AttributionDelta:
    score_delta = None
    band_change = None
    if before.score is not None and after.score is not None:
        score_delta = after.score.score - before.score.score
        if before.score.band != after.score.band:
            band_change = BandChange(from_band=before.score.band, to_band=after.score.band)

    return AttributionDelta(
        score_delta=score_delta,
        band_change=band_change,
        risk_open_delta=after.risk.open_count - before.risk.open_count,
        risk_critical_delta=after.risk.critical_count - before.risk.critical_count,
        nba_queued_delta=after.nba.queued_count - before.nba.queued_count,
        error=before.error or after.error,
    )


def delta_to_outcome(delta: AttributionDelta) -> AttributionOutcome:
    """
    Checks, in order: band movement, critical risk count, score delta (+/-5),
    open risk count. A context that failed to load is always neutral.
    """
    if delta.error:
        return "neutral"

    if delta.band_change is not None:
        from_rank = _band_rank(delta.band_change.from_band)
        to_rank = _band_rank(delta.band_change.to_band)
        if to_rank > from_rank:
            return "improved"
        if to_rank < from_rank:
            return "worsened"

    if delta.risk_critical_delta < 0:
        return "improved"
    if delta.risk_critical_delta > 0:
        return "worsened"

    if delta.score_delta is not None:
        if delta.score_delta >= SCORE_IMPROVED_THRESHOLD:
            return "improved"
        if delta.score_delta <= SCORE_WORSENED_THRESHOLD:
            return "worsened"

    if delta.risk_open_delta < 0:
        return "improved"
    if delta.risk_open_delta > RISK_OPEN_WORSENED_THRESHOLD:
        return "worsened"

    return "neutral"


def resolve_attribution_outcome(
    before: Optional[AttributionContext], after: Optional[AttributionContext]
) -> Optional[AttributionOutcome]:
    if before is None or after is None:
        return None
    return delta_to_outcome(compute_attribution_delta(before, after))
