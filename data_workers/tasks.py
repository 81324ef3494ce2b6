import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis
from celery import Task, shared_task

from data_services.telemetry import log_ops_event_safe
from data_utils.db_factory import get_db_context
from main_configs import (
    CELERY_REDIS_URL,
    INGEST_MAX_RETRIES,
    INGEST_RETRY_BACKOFF_MAX,
    NBA_SCHEDULED_MIN_INTERVAL_SECONDS,
    SCHEDULED_GROWTH_OWNER_ID,
)
from next_actions.scopes import parse_scope
from next_actions.service import run_next_actions
from operator_memory.ingest import INGEST_HANDLERS

# Setup Logger
logger = logging.getLogger(__name__)

# Redis for storing the "last scheduled run" checkpoint per scope
redis_client = redis.from_url(CELERY_REDIS_URL)
LAST_RUN_KEY = "nba:last_scheduled_run:{scope}:{entity_id}"


class MemoryIngestTask(Task):
    """Reports ingest work that exhausted its retries."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Memory ingest task {task_id} gave up: {exc!r}")
        log_ops_event_safe(
            category="system",
            event_key="memory.ingest.failed",
            status="failure",
            error_message=exc,
            meta={"label": "memory_ingest_task", "kind": kwargs.get("kind"), "taskId": task_id},
        )


@shared_task(
    name="tasks.memory_ingest_task",
    base=MemoryIngestTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=INGEST_RETRY_BACKOFF_MAX,
    retry_jitter=True,
    max_retries=INGEST_MAX_RETRIES,
)
def memory_ingest_task(kind: str, **kwargs):
    """
    Runs one raw ingest handler in its own session. Exceptions propagate so
    Celery retries with exponential backoff.
    """
    handler = INGEST_HANDLERS.get(kind)
    if handler is None:
        logger.error(f"Unknown memory ingest kind '{kind}', dropping")
        return "unknown kind"

    with get_db_context() as session:
        handler(session, **kwargs)

    logger.info(f"Memory ingest '{kind}' done")
    return "ok"


def get_last_scheduled_run(scope: str, entity_id: str) -> Optional[datetime]:
    """Reads the checkpoint written by the last scheduled run, if any."""
    raw = redis_client.get(LAST_RUN_KEY.format(scope=scope, entity_id=entity_id))
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed last run checkpoint '{raw}'")
        return None


@shared_task(name="tasks.run_next_actions_task")
def run_next_actions_task(entity_type: str = "founder_growth", entity_id: str | None = None):
    """
    Scheduled evaluate + reconcile pass. Growth counters are read for
    SCHEDULED_GROWTH_OWNER_ID when set.
    """
    scope, entity_id = parse_scope(entity_type, entity_id)
    current_run_time = datetime.now(timezone.utc)

    # 1. Skip if the last scheduled run is still fresh
    try:
        last_run_at = get_last_scheduled_run(scope, entity_id)
    except redis.RedisError as e:
        logger.warning(f"Could not read last run checkpoint: {e}")
        last_run_at = None

    if last_run_at and current_run_time - last_run_at < timedelta(seconds=NBA_SCHEDULED_MIN_INTERVAL_SECONDS):
        logger.info(f"Skipping scheduled NBA run for {scope}:{entity_id}; last run at {last_run_at.isoformat()}")
        return {"skipped": True, "lastRunAt": last_run_at.isoformat()}

    # 2. Evaluate + reconcile
    logger.info(f"Starting scheduled NBA run for {scope}:{entity_id}...")
    with get_db_context() as session:
        result = run_next_actions(
            session,
            entity_type=scope,
            entity_id=entity_id,
            mode="scheduled",
            now=current_run_time,
            growth_owner_user_id=SCHEDULED_GROWTH_OWNER_ID,
        )

    # 3. Store the checkpoint for the next tick
    try:
        redis_client.set(LAST_RUN_KEY.format(scope=scope, entity_id=entity_id), current_run_time.isoformat())
    except redis.RedisError as e:
        logger.warning(f"Could not store last run checkpoint: {e}")

    return {"skipped": False, "runKey": result.run_key, "created": result.created, "updated": result.updated}
