import logging
import os

from dotenv import load_dotenv


# ============================================================
# Environment bootstrap
# ============================================================
# Load variables from .env early.
# override=True allows local dev to intentionally shadow system envs.
load_dotenv(override=True)


# ============================================================
# Logging Configuration
# ============================================================
# LOG_LEVEL is expected to be something like: DEBUG, INFO, WARNING, ERROR
# Default to INFO if missing or invalid.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


# ============================================================
# Application Metadata
# ============================================================
# Network binding
MAIN_APP_HOST: str = os.getenv("MAIN_APP_HOST", "0.0.0.0")

# Port parsing should be strict: invalid values must fail fast
try:
    MAIN_APP_PORT: int = int(os.getenv("MAIN_APP_PORT", "8000"))
except ValueError:
    raise RuntimeError("MAIN_APP_PORT must be a valid integer")

# Descriptive metadata (used by FastAPI / OpenAPI)
MAIN_APP_TITLE: str = os.getenv("MAIN_APP_TITLE", "Operator NBA Engine API")
MAIN_APP_DESCRIPTION: str = os.getenv(
    "MAIN_APP_DESCRIPTION",
    "Next-Best-Action evaluation, execution and operator memory",
)
MAIN_APP_VERSION: str = os.getenv("MAIN_APP_VERSION", "1.0.0")


# ============================================================
# CORS Configuration
# ============================================================
# ⚠️ SECURITY NOTE
# Using "*" with credentials=True is NOT allowed by browsers
# and should never be used in production.
# Replace "*" with explicit origins when deploying.
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]

CORS_ALLOW_CREDENTIALS: bool = True
CORS_ALLOW_METHODS = ["*"]
CORS_ALLOW_HEADERS = ["*"]


# ============================================================
# Request Identity
# ============================================================
# Authorization happens upstream; the dashboard forwards the operator id.
ACTOR_HEADER: str = os.getenv("ACTOR_HEADER", "X-Actor-User-Id")
DEFAULT_ACTOR_USER_ID: str = os.getenv("DEFAULT_ACTOR_USER_ID", "anonymous")


# ============================================================
# Celery / Background Workers
# ============================================================
CELERY_REDIS_URL: str = os.getenv("CELERY_REDIS_URL", "redis://localhost:6379/0")

# Standard 5-field cron expression for the periodic founder_growth evaluation
CELERY_RUN_NEXT_ACTIONS_CRON: str = os.getenv("CELERY_RUN_NEXT_ACTIONS_CRON", "*/30 * * * *")

# Owner whose growth pipeline the scheduled evaluation reads
SCHEDULED_GROWTH_OWNER_ID: str | None = os.getenv("SCHEDULED_GROWTH_OWNER_ID")


# ============================================================
# Operator Memory Ingest
# ============================================================
# "celery": enqueue ingest tasks on the worker (production)
# "inline": run ingest right after the primary commit in-process
INGEST_MODE: str = os.getenv("INGEST_MODE", "inline").lower()
if INGEST_MODE not in ("celery", "inline"):
    raise RuntimeError("INGEST_MODE must be 'celery' or 'inline'")

try:
    INGEST_MAX_RETRIES: int = int(os.getenv("INGEST_MAX_RETRIES", "5"))
except ValueError:
    INGEST_MAX_RETRIES = 5

try:
    INGEST_RETRY_BACKOFF_MAX: int = int(os.getenv("INGEST_RETRY_BACKOFF_MAX", "600"))
except ValueError:
    INGEST_RETRY_BACKOFF_MAX = 600


# ============================================================
# Next Best Action Tuning
# ============================================================
# Opt-in: bias candidate scores with the actor's learned weights
NBA_USE_LEARNED_WEIGHTS: bool = os.getenv("NBA_USE_LEARNED_WEIGHTS", "0").lower() in (
    "1",
    "true",
    "yes",
)  # Accept common truthy values to reduce config friction

try:
    NBA_MEMORY_SUMMARY_DAYS: int = int(os.getenv("NBA_MEMORY_SUMMARY_DAYS", "7"))
except ValueError:
    NBA_MEMORY_SUMMARY_DAYS = 7

# A scheduled run within this many seconds of the last one is skipped
try:
    NBA_SCHEDULED_MIN_INTERVAL_SECONDS: int = int(os.getenv("NBA_SCHEDULED_MIN_INTERVAL_SECONDS", "300"))
except ValueError:
    NBA_SCHEDULED_MIN_INTERVAL_SECONDS = 300
