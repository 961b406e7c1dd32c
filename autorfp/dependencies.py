"""
dependencies.py — Shared FastAPI Dependencies

Hands routers the services built once in the app lifespan (main.py) and
stored on app.state. Routers never construct services themselves.

Called by: all routers
Depends on: main.py (lifespan populates app.state)
"""

from fastapi import Request

from .services.award import AwardService
from .services.inbound_poller import InboundPoller
from .services.invitations import InvitationService
from .services.notifications import NotificationWorker
from .services.reconciliation import ReconciliationService


def get_invitation_service(request: Request) -> InvitationService:
    return request.app.state.invitation_service


def get_poller(request: Request) -> InboundPoller:
    return request.app.state.poller


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return request.app.state.reconciliation_service


def get_award_service(request: Request) -> AwardService:
    return request.app.state.award_service


def get_notification_worker(request: Request) -> NotificationWorker:
    return request.app.state.notification_worker
