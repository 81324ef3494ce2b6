"""
Typed action payloads.

Each rule family owns one payload variant, tagged by `family`, so executors
can match on the variant instead of digging through an untyped dict.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from next_actions.errors import InvalidPayloadError


class _PayloadBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


class GrowthActionPayload(_PayloadBase):
    family: Literal["growth"] = "growth"
    bucket: Optional[Literal["overdue", "no_outreach"]] = None
    deal_id: Optional[str] = Field(default=None, alias="dealId")
    # Passed through to executors that need exactly-once semantics
    idempotency_token: Optional[str] = Field(default=None, alias="idempotencyToken")


class OpsActionPayload(_PayloadBase):
    family: Literal["ops"] = "ops"
    bucket: Optional[str] = None
    gap: Optional[str] = None
    action: Optional[str] = None
    idempotency_token: Optional[str] = Field(default=None, alias="idempotencyToken")


class ScoreActionPayload(_PayloadBase):
    family: Literal["score"] = "score"
    entity_type: str = Field(default="command_center", alias="entityType")
    idempotency_token: Optional[str] = Field(default=None, alias="idempotencyToken")


ActionPayload = Annotated[
    Union[GrowthActionPayload, OpsActionPayload, ScoreActionPayload],
    Field(discriminator="family"),
]

_payload_adapter: TypeAdapter = TypeAdapter(ActionPayload)


def _infer_family(raw: Dict[str, Any]) -> str:
    if "dealId" in raw or "deal_id" in raw:
        return "growth"
    if "entityType" in raw or "entity_type" in raw:
        return "score"
    return "ops"


def parse_payload(raw: Optional[Dict[str, Any]]) -> Union[GrowthActionPayload, OpsActionPayload, ScoreActionPayload]:
    """Parses a stored payload_json back into its variant. Untagged rows are inferred."""
    data = dict(raw or {})
    data.setdefault("family", _infer_family(data))
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidPayloadError(f"Invalid action payload ({fields})")


def merge_payload(stored: Optional[Dict[str, Any]], override: Optional[Dict[str, Any]]):
    """Caller-supplied keys win over the stored payload; the family tag cannot change."""
    merged = dict(stored or {})
    for key, value in (override or {}).items():
        if key == "family":
            continue
        merged[key] = value
    return parse_payload(merged)


def dump_payload(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)
