import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

# Load env from stepcoin/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from stepcoin.core.config import settings, validate_config
from stepcoin.core.database import create_all_tables, dispose_engine
from stepcoin.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from stepcoin.core.logging import configure_logging
from stepcoin.core.middleware.metrics import MetricsMiddleware
from stepcoin.core.middleware.request_id import RequestIdMiddleware
from stepcoin.api import events, health, metrics, rates, steps, streaks, tiers, wallet

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("stepcoin")
    logger.info("Starting stepcoin...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping stepcoin...")
        dispose_engine()


app = FastAPI(title="stepcoin", lifespan=lifespan)

# Middlewares
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(steps.router)
app.include_router(wallet.router)
app.include_router(tiers.router)
app.include_router(rates.router)
app.include_router(streaks.router)
app.include_router(events.router)
app.include_router(health.root_router)
app.include_router(metrics.router)
