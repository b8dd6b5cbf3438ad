"""FastAPI dependencies backed by the objects ``create_app`` puts on ``app.state``.

Nothing here is module-level state; tests swap collaborators by building the
app with their own store/http client or through ``app.dependency_overrides``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from adscronos_core.config import AdscronosSettings
from adscronos_core.exceptions import AdscronosAuthenticationError, AdscronosAuthorizationError
from adscronos_core.repositories import Store
from adscronos_core.webhooks import WebhookDeliveryService
from adscronos_protocol.x402_settlement import X402Settler


@dataclass(frozen=True)
class Principal:
    """Already-authenticated caller, as asserted by the upstream auth proxy."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_settings(request: Request) -> AdscronosSettings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_webhook_service(request: Request) -> WebhookDeliveryService:
    return request.app.state.webhook_service


def get_settler(request: Request) -> X402Settler:
    return request.app.state.settler


async def get_principal(
    principal_id: Optional[str] = Header(default=None, alias="X-Principal-Id"),
    principal_role: Optional[str] = Header(default=None, alias="X-Principal-Role"),
) -> Principal:
    if not principal_id or not principal_role:
        raise AdscronosAuthenticationError("Authentication required")
    return Principal(id=principal_id, role=principal_role.lower())


def require_publisher_access(principal: Principal, publisher_id: str) -> None:
    """Admins see everything; publishers only their own records."""
    if principal.is_admin:
        return
    if principal.role == "publisher" and principal.id == publisher_id:
        return
    raise AdscronosAuthorizationError("Not allowed to act on this publisher's deliveries")
