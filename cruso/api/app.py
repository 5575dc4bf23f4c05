import argparse
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from googleapiclient.errors import HttpError
from starlette.exceptions import HTTPException as StarletteHTTPException

from cruso.api.deps import state
from cruso.api.routes import (
    availability,
    connections,
    events,
    exchanges,
    inbox,
    preferences,
    recurring_events,
    scheduling,
    schedules,
    search,
)
from cruso.config import load_config
from cruso.db import create_database
from cruso.errors import CrusoError
from cruso.services.email import MailgunClient

logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting cruso...")

    state.config = load_config(os.environ.get("CONFIG_PATH"))
    state.database = create_database(state.config.database)
    state.database.initialize()
    logger.info(f"Database initialized: {type(state.database).__name__}")

    state.mailer = MailgunClient(state.config.mailgun)
    if not state.config.mailgun.can_send:
        logger.warning("Mailgun is not configured; outbound email is disabled")

    yield

    logger.info("Shutting down cruso...")
    if state.mailer:
        state.mailer.close()
    if state.database:
        state.database.close()


app = FastAPI(title="Cruso", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(CrusoError)
async def cruso_error_handler(request: Request, exc: CrusoError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(HttpError)
async def google_error_handler(request: Request, exc: HttpError):
    code = int(exc.resp.status) if exc.resp is not None else 502
    message = getattr(exc, "reason", None) or str(exc)
    logger.warning(f"Google API error {code} on {request.url.path}: {message}")
    return JSONResponse(status_code=code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "; ".join(messages) or "Invalid request"},
    )


app.include_router(connections.router)
app.include_router(availability.router)
app.include_router(events.router)
app.include_router(recurring_events.router)
app.include_router(search.router)
app.include_router(scheduling.router)
app.include_router(schedules.working_hours_router)
app.include_router(schedules.availability_router)
app.include_router(preferences.router)
app.include_router(exchanges.router)
app.include_router(inbox.router)


def run():
    parser = argparse.ArgumentParser(description="Cruso calendar assistant API")
    parser.add_argument(
        "--host", type=str, default=os.environ.get("HOST", "127.0.0.1"), help="Host to bind to"
    )
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("PORT", "8000")), help="Port to bind to"
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if args.config:
        os.environ["CONFIG_PATH"] = args.config

    logger.info(f"Starting Cruso API on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
