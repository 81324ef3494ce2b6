from celery import Celery
from celery.schedules import crontab
from main_configs import CELERY_REDIS_URL, CELERY_RUN_NEXT_ACTIONS_CRON


def cron_from_expr(expr: str):
    """
    Convert standard 5-field cron string into celery crontab.
    Example: "*/30 * * * *"
    """
    minute, hour, day, month, weekday = expr.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day,
        month_of_year=month,
        day_of_week=weekday,
    )

RUN_NEXT_ACTIONS_CRON = cron_from_expr(CELERY_RUN_NEXT_ACTIONS_CRON)

# ---------------------------------------------------------
# Celery Worker Instance
# ---------------------------------------------------------
worker = Celery(
    "nba_worker",
    broker=CELERY_REDIS_URL,
    backend=CELERY_REDIS_URL,
    include=["data_workers.tasks"],
)

# ---------------------------------------------------------
# Core Configuration
# ---------------------------------------------------------
worker.conf.update(
    timezone="UTC",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Ingest tasks must survive a worker crash mid-task
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# ---------------------------------------------------------
# Beat Schedule
# ---------------------------------------------------------
worker.conf.beat_schedule = {
    "run-founder-growth-next-actions": {
        "task": "tasks.run_next_actions_task",
        "schedule": RUN_NEXT_ACTIONS_CRON,
        "kwargs": {"entity_type": "founder_growth"},
    },
    "run-command-center-next-actions": {
        "task": "tasks.run_next_actions_task",
        "schedule": RUN_NEXT_ACTIONS_CRON,
        "kwargs": {"entity_type": "command_center"},
    },
}
