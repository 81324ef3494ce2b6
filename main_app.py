import logging

import uvicorn

from api.app_factory import create_app
from data_models.base import Base
from data_utils.db_factory import get_engine, init_db
from main_configs import MAIN_APP_HOST, MAIN_APP_PORT

logger = logging.getLogger("NBA Engine API")


# ============================================================
# App instance (used by uvicorn & tests)
# ============================================================
app = create_app()


if __name__ == "__main__":
    init_db()
    # Local runs only; deployed databases are migrated out of band
    Base.metadata.create_all(get_engine())
    logger.info(f"Starting NBA engine on {MAIN_APP_HOST}:{MAIN_APP_PORT}")
    uvicorn.run("main_app:app", host=MAIN_APP_HOST, port=MAIN_APP_PORT)
