"""
AutoRFP — procurement request pipeline

Builds the engine, services, notification worker and scheduler once in the
lifespan and mounts the routers. Every AutoRfpError becomes a JSON
ErrorResponse with the error's HTTP status.
"""

import asyncio
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from .config import settings
from .database import create_db_engine, make_session_factory
from .errors import AutoRfpError
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import mailbox, notifications, offers, participants, requests
from .scheduler import start_scheduler
from .schemas.errors import ErrorResponse
from .services.award import AwardService
from .services.delivery import DecisionNoticeDelivery, InvitationDelivery
from .services.inbound_poller import InboundPoller
from .services.invitations import InvitationService
from .services.mailer import SmtpMailer
from .services.notifications import NotificationChannel, NotificationWorker
from .services.participant_rating import RatingService
from .services.reconciliation import ReconciliationService


def build_services(app: FastAPI, session_factory) -> None:
    """Wire every service onto app.state. Split out so tests can reuse it."""
    channel = NotificationChannel()
    mailer = SmtpMailer()

    app.state.session_factory = session_factory
    app.state.channel = channel
    app.state.poller = InboundPoller(session_factory)
    app.state.invitation_service = InvitationService(session_factory, channel)
    app.state.reconciliation_service = ReconciliationService(session_factory)
    app.state.award_service = AwardService(session_factory, channel)
    app.state.rating_service = RatingService(session_factory)
    app.state.notification_worker = NotificationWorker(
        channel,
        invitations=InvitationDelivery(session_factory, mailer),
        notices=DecisionNoticeDelivery(session_factory, mailer),
        ratings=app.state.rating_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    engine = create_db_engine(settings.database_url)
    build_services(app, make_session_factory(engine))

    tasks = [asyncio.create_task(app.state.notification_worker.run())]
    if os.getenv("SCHEDULER_DISABLED", "").lower() not in ("1", "true", "yes"):
        tasks.append(asyncio.create_task(start_scheduler(app.state.poller)))
    logger.info("AutoRFP started")
    yield
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await close_clients()
    engine.dispose()


app = FastAPI(title="AutoRFP", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AutoRfpError)
async def autorfp_error_handler(request: Request, exc: AutoRfpError):
    if exc.http_status >= 500:
        logger.error("{} {} → {}: {}", request.method, request.url.path, exc.code, exc.message)
    body = ErrorResponse(
        error=exc.message, code=exc.code, status_code=exc.http_status, detail=exc.payload or None
    )
    return JSONResponse(status_code=exc.http_status, content=body.model_dump(mode="json"))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = ErrorResponse(
        error="Invalid request", code="validation_error", status_code=400,
        detail=[{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()],
    )
    return JSONResponse(status_code=400, content=body.model_dump(mode="json"))


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(requests.router)
app.include_router(mailbox.router)
app.include_router(offers.router)
app.include_router(participants.router)
app.include_router(notifications.router)
