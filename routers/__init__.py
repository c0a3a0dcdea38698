# Workflow Routers Module
# Exports all API routers for the proposal and payment workflow

from routers.proposals import router as proposals_router
from routers.payments import router as payments_router
from routers.milestones import router as milestones_router
from routers.content import router as content_router
from routers.webhooks import router as webhooks_router
from routers.audit import router as audit_router

__all__ = [
    'proposals_router',
    'payments_router',
    'milestones_router',
    'content_router',
    'webhooks_router',
    'audit_router',
]
