import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from dotenv import load_dotenv

# Load env from quotagate/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from quotagate.core.config import settings, validate_config  # noqa: E402
from quotagate.core.database import create_all_tables, get_db_session  # noqa: E402
from quotagate.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from quotagate.core.logging import configure_logging  # noqa: E402
from quotagate.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from quotagate.api import admin_billing, entitlements, health  # noqa: E402
from quotagate.features.catalog.service import seed_catalog  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("quotagate")
    logger.info("Starting quotagate...")
    if settings.AUTO_SEED_CATALOG:
        create_all_tables()
        with get_db_session() as session:
            seed_catalog(session)
        logger.info("Default catalog seeded")
    try:
        yield
    finally:
        logging.getLogger("quotagate").info("Stopping quotagate...")


app = FastAPI(title="quotagate - entitlements and usage metering", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(entitlements.router, tags=["entitlements"])
app.include_router(admin_billing.router, tags=["admin-billing"])
app.include_router(health.root_router, tags=["health"])
