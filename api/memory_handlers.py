"""
Operator memory endpoints: learned weights lookups, the memory summary
and the founder review ingest trigger.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from api.handlers import get_actor_user_id
from api.schemas import FounderReviewIngestResponse, LearnedWeightOut, MemorySummaryResponse
from data_models.dbo_memory import FounderWeekReview, WeightKind
from data_utils.db_factory import get_db
from data_workers.ingest_outbox import enqueue_memory_ingest
from main_configs import NBA_MEMORY_SUMMARY_DAYS
from operator_memory.policy import build_memory_summary
from operator_memory.weights import LearnedWeightStore

logger = logging.getLogger("NBA Engine API")


def create_memory_router() -> APIRouter:
    router = APIRouter(tags=["Operator Memory"])

    # --------------------------------------------------------
    # Learned weights
    # --------------------------------------------------------
    @router.get("/learned-weights/{actor_user_id}", response_model=List[LearnedWeightOut])
    def list_learned_weights_endpoint(
        actor_user_id: str = Path(...),
        kind: Optional[WeightKind] = Query(None),
        db: Session = Depends(get_db),
    ):
        views = LearnedWeightStore(db).list_weights(actor_user_id, kind=kind)
        return [LearnedWeightOut.model_validate(v) for v in views]

    @router.get("/learned-weights/{actor_user_id}/{kind}/{key}", response_model=LearnedWeightOut)
    def get_learned_weight_endpoint(
        actor_user_id: str = Path(...),
        kind: WeightKind = Path(...),
        key: str = Path(...),
        db: Session = Depends(get_db),
    ):
        view = LearnedWeightStore(db).get_weight(actor_user_id, kind, key)
        if view is None:
            raise HTTPException(status_code=404, detail="Learned weight not found")
        return LearnedWeightOut.model_validate(view)

    # --------------------------------------------------------
    # Memory summary
    # --------------------------------------------------------
    @router.get("/internal/memory/summary", response_model=MemorySummaryResponse)
    def memory_summary_endpoint(
        days: int = Query(NBA_MEMORY_SUMMARY_DAYS, ge=1, le=90),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        summary = build_memory_summary(db, actor_user_id, days)
        return MemorySummaryResponse(**summary.model_dump(mode="json"))

    # --------------------------------------------------------
    # Founder review ingest
    # --------------------------------------------------------
    @router.post("/internal/memory/founder-review/{week_id}", response_model=FounderReviewIngestResponse)
    def founder_review_ingest_endpoint(
        week_id: str = Path(...),
        actor_user_id: str = Depends(get_actor_user_id),
        db: Session = Depends(get_db),
    ):
        review_id = db.scalar(select(FounderWeekReview.id).where(FounderWeekReview.week_id == week_id))
        if review_id is None:
            raise HTTPException(status_code=404, detail=f"No founder review for week {week_id}")

        # Release the request connection before the ingest opens its own session
        db.rollback()
        enqueue_memory_ingest("founder_review", week_id=week_id, actor_user_id=actor_user_id)
        logger.info(f"Founder review {week_id} queued for memory ingest")
        return FounderReviewIngestResponse(week_id=week_id, status="queued")

    return router
