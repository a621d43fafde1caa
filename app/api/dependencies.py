"""
Service Dependencies

Services are constructed once in the application lifespan and kept on
app.state; routes receive them through these accessors.
"""

from fastapi import Request

from app.services.project_state_machine import ProjectStateMachine
from app.services.project_store import ProjectStore
from app.services.rate_limiter import WebhookRateLimiter
from app.services.webhook_dispatcher import WebhookDispatcher


def get_project_store(request: Request) -> ProjectStore:
    return request.app.state.project_store


def get_state_machine(request: Request) -> ProjectStateMachine:
    return request.app.state.state_machine


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


def get_rate_limiter(request: Request) -> WebhookRateLimiter:
    return request.app.state.rate_limiter
