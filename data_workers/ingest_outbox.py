"""
Memory ingest outbox.

Called after the primary transaction has committed. In "celery" mode the
ingest is queued on the worker and retried there; in "inline" mode it runs
right away in a fresh session. Either way the caller never sees an error.
"""

import logging

from data_services.sanitize import sanitize_error_message
from data_services.telemetry import log_ops_event_safe
from data_utils.db_factory import get_session
from data_workers.celery_app import worker
from main_configs import INGEST_MODE
from operator_memory.ingest import SAFE_INGEST_ENTRY_POINTS

logger = logging.getLogger(__name__)

INGEST_KINDS = tuple(SAFE_INGEST_ENTRY_POINTS)
MEMORY_INGEST_TASK = "tasks.memory_ingest_task"


def run_ingest_inline(kind: str, **kwargs) -> None:
    session = get_session()
    try:
        SAFE_INGEST_ENTRY_POINTS[kind](session, **kwargs)
    finally:
        session.close()


def enqueue_memory_ingest(kind: str, **kwargs) -> None:
    if kind not in SAFE_INGEST_ENTRY_POINTS:
        raise ValueError(f"Unknown memory ingest kind '{kind}'")

    try:
        if INGEST_MODE == "celery":
            worker.send_task(MEMORY_INGEST_TASK, kwargs={"kind": kind, **kwargs})
            logger.debug(f"Queued memory ingest '{kind}'")
        else:
            run_ingest_inline(kind, **kwargs)
    except Exception as e:
        logger.warning(f"Memory ingest '{kind}' not delivered: {sanitize_error_message(e)}")
        log_ops_event_safe(
            category="system",
            event_key="memory.ingest.enqueue_failed",
            status="failure",
            error_message=e,
            meta={"kind": kind, "mode": INGEST_MODE},
        )
