"""
API Route Handlers for the Next Best Action engine.
"""

import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query
from sqlalchemy.orm import Session

from api.schemas import (
    DismissRequest,
    ExecuteRequest,
    ExecuteResponse,
    NextActionOut,
    NextActionTemplateOut,
    RunNextActionsResponse,
    SnoozeRequest,
    StatusChangeResponse,
)
from data_models.base import utcnow
from data_models.dbo_next_action import NextActionStatus
from data_services.sanitize import sanitize_error_message
from data_utils.db_factory import get_db
from data_workers.ingest_outbox import enqueue_memory_ingest
from main_configs import ACTOR_HEADER, DEFAULT_ACTOR_USER_ID
from next_actions.delivery_actions import run_delivery_action
from next_actions.errors import NextActionError, NextActionNotFoundError
from next_actions.service import list_next_actions, run_next_actions
from next_actions.status_service import dismiss_next_action, get_next_action, snooze_next_action
from next_actions.templates import build_next_action_template
from operator_memory.attribution import resolve_attribution_outcome

logger = logging.getLogger("NBA Engine API")

# Result codes that mean the request itself was wrong
VALIDATION_ERROR_CODES = {"unknown_action", "invalid_action", "invalid_payload"}


# --- Request Identity ---
def get_actor_user_id(
    actor_user_id: Optional[str] = Header(default=None, alias=ACTOR_HEADER),
) -> str:
    return (actor_user_id or "").strip() or DEFAULT_ACTOR_USER_ID


def raise_for_engine_error(e: NextActionError):
    status_code = 404 if isinstance(e, NextActionNotFoundError) else 400
    if e.error_code == "invalid_state":
        status_code = 409
    raise HTTPException(status_code=status_code, detail={"errorCode": e.error_code, "message": e.message})


def raise_internal_error(context: str, e: Exception):
    logger.exception(f"{context} failed")
    raise HTTPException(status_code=500, detail=sanitize_error_message(e))


# ============================================================
# Router Setup
# ============================================================

def create_api_router() -> APIRouter:
    router = APIRouter(tags=["Next Best Actions"])

    # --------------------------------------------------------
    # 1. Evaluate + reconcile a scope
    # --------------------------------------------------------
    @router.post("/run-next-actions", response_model=RunNextActionsResponse)
    def run_next_actions_endpoint(
        entity_type: Optional[str] = Query(None, alias="entityType"),
        entity_id: Optional[str] = Query(None, alias="entityId"),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        try:
            result = run_next_actions(
                db, entity_type=entity_type, entity_id=entity_id, actor_user_id=actor_user_id
            )
        except NextActionError as e:
            raise_for_engine_error(e)
        except Exception as e:
            db.rollback()
            raise_internal_error("run-next-actions", e)

        return RunNextActionsResponse(
            created=result.created,
            updated=result.updated,
            run_key=result.run_key,
            candidate_count=result.candidate_count,
            suppressed_count=result.suppressed_count,
            last_run_at=result.last_run_at,
        )

    # --------------------------------------------------------
    # 2. List persisted actions
    # --------------------------------------------------------
    @router.get("/next-actions", response_model=List[NextActionOut])
    def list_next_actions_endpoint(
        entity_type: Optional[str] = Query(None, alias="entityType"),
        entity_id: Optional[str] = Query(None, alias="entityId"),
        status: Optional[NextActionStatus] = Query(NextActionStatus.QUEUED),
        limit: int = Query(50, ge=1, le=200),
        db: Session = Depends(get_db),
    ):
        try:
            rows = list_next_actions(db, entity_type=entity_type, entity_id=entity_id, status=status, limit=limit)
        except NextActionError as e:
            raise_for_engine_error(e)
        return [NextActionOut.model_validate(r) for r in rows]

    # --------------------------------------------------------
    # 2b. Playbook + legal action keys for one action
    # --------------------------------------------------------
    @router.get("/next-actions/{next_action_id}/template", response_model=NextActionTemplateOut)
    def next_action_template_endpoint(
        next_action_id: str = Path(...),
        db: Session = Depends(get_db),
    ):
        try:
            action = get_next_action(db, next_action_id)
        except NextActionError as e:
            raise_for_engine_error(e)
        return NextActionTemplateOut(**asdict(build_next_action_template(action)))

    # --------------------------------------------------------
    # 3. Execute
    # --------------------------------------------------------
    @router.post("/next-actions/{next_action_id}/execute", response_model=ExecuteResponse)
    def execute_next_action_endpoint(
        next_action_id: str = Path(...),
        payload: ExecuteRequest = Body(...),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        action_key = (payload.action_key or "").strip()
        if not action_key:
            raise HTTPException(status_code=400, detail={"errorCode": "invalid_request", "message": "actionKey is required"})

        attribution_outcome = None
        if payload.attribution is not None:
            attribution_outcome = resolve_attribution_outcome(payload.attribution.before, payload.attribution.after)

        try:
            result = run_delivery_action(
                db,
                next_action_id,
                action_key,
                actor_user_id=actor_user_id,
                payload=payload.payload,
                attribution_outcome=attribution_outcome,
            )
        except Exception as e:
            db.rollback()
            raise_internal_error("execute", e)

        if result.error_code == "not_found":
            raise HTTPException(status_code=404, detail={"errorCode": result.error_code, "message": result.error_message})
        if result.error_code == "invalid_state":
            raise HTTPException(status_code=409, detail={"errorCode": result.error_code, "message": result.error_message})
        if result.error_code in VALIDATION_ERROR_CODES and result.execution_id is None:
            raise HTTPException(status_code=400, detail={"errorCode": result.error_code, "message": result.error_message})

        return ExecuteResponse(
            ok=result.ok,
            execution_id=result.execution_id,
            error_code=result.error_code,
            error_message=result.error_message,
            result_summary=result.result_summary,
        )

    # --------------------------------------------------------
    # 4. Dismiss
    # --------------------------------------------------------
    @router.post("/next-actions/{next_action_id}/dismiss", response_model=StatusChangeResponse)
    def dismiss_next_action_endpoint(
        next_action_id: str = Path(...),
        payload: Optional[DismissRequest] = Body(None),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        suppress_days = payload.suppress_days if payload else None
        try:
            action, preference = dismiss_next_action(
                db, next_action_id, now=utcnow(), actor_user_id=actor_user_id, suppress_days=suppress_days
            )
            response = StatusChangeResponse(
                id=action.id,
                status=action.status,
                dismissed_at=action.dismissed_at,
                preference_id=preference.id if preference else None,
            )
            db.commit()
        except NextActionError as e:
            db.rollback()
            raise_for_engine_error(e)

        enqueue_memory_ingest(
            "dismiss",
            next_action_id=response.id,
            actor_user_id=actor_user_id,
            preference_id=response.preference_id,
        )
        return response

    # --------------------------------------------------------
    # 5. Snooze
    # --------------------------------------------------------
    @router.post("/next-actions/{next_action_id}/snooze", response_model=StatusChangeResponse)
    def snooze_next_action_endpoint(
        next_action_id: str = Path(...),
        payload: Optional[SnoozeRequest] = Body(None),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        days = payload.days if payload else 1
        try:
            action = snooze_next_action(db, next_action_id, now=utcnow(), days=days)
            response = StatusChangeResponse(id=action.id, status=action.status, snoozed_until=action.snoozed_until)
            rule_key = action.created_by_rule
            db.commit()
        except NextActionError as e:
            db.rollback()
            raise_for_engine_error(e)

        enqueue_memory_ingest("snooze", next_action_id=response.id, actor_user_id=actor_user_id, rule_key=rule_key)
        return response

    return router
