import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the package directory .env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from sovrn.core.config import settings, validate_config  # noqa: E402
from sovrn.core.logging import configure_logging  # noqa: E402
from sovrn.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from sovrn.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from sovrn.api import checkout, contributions, health, webhooks  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("sovrn")
    logger.info("Starting Sovrn backend...")
    try:
        yield
    finally:
        logging.getLogger("sovrn").info("Stopping Sovrn backend...")


app = FastAPI(title="Sovrn - Marketplace Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.SITE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(health.root_router, tags=["health"])
app.include_router(webhooks.router, tags=["webhooks"])
app.include_router(checkout.router, tags=["checkout"])
app.include_router(contributions.router, tags=["contributions"])
