"""Who may read or mutate a given order.

Read access is granted to admins, to the owning user, and to guests that
present the order's capability token. Guest orders that predate token
issuance (``access_token`` is null) stay readable by order number while
``GUEST_LEGACY_ACCESS_ENABLED`` is on. Every lifecycle mutation is admin-only.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from storefront.core import config
from storefront.core.errors import ForbiddenError, NotFoundError, UnauthenticatedError
from storefront.models.order import Order
from storefront.models.user import ROLE_ADMIN

logger = logging.getLogger(__name__)

ACCESS_ADMIN = "admin"
ACCESS_OWNER = "owner"
ACCESS_GUEST_TOKEN = "guest_token"
ACCESS_LEGACY_GUEST = "legacy_guest"


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() == ROLE_ADMIN


def generate_access_token() -> str:
    return secrets.token_hex(32)


def tokens_match(stored: str, presented: Optional[str]) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), presented.strip().encode("utf-8"))


def authorize_order_read(order: Order, principal: Optional[Principal], presented_token: Optional[str]) -> str:
    if principal is not None and principal.is_admin:
        return ACCESS_ADMIN

    if order.user_id is not None:
        if principal is None:
            raise UnauthenticatedError()
        if principal.user_id == order.user_id:
            return ACCESS_OWNER
        raise ForbiddenError("Accesso non autorizzato")

    if order.access_token:
        if tokens_match(order.access_token, presented_token):
            return ACCESS_GUEST_TOKEN
        raise ForbiddenError("Accesso non autorizzato")

    if not config.GUEST_LEGACY_ACCESS_ENABLED:
        # Same answer as a missing order so legacy numbers can't be probed.
        raise NotFoundError("Ordine non trovato")

    logger.warning(
        "Legacy guest order read without access token order_number=%s",
        order.order_number,
        extra={"order_id": order.id},
    )
    return ACCESS_LEGACY_GUEST


def authorize_order_mutation(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise UnauthenticatedError()
    if not principal.is_admin:
        raise ForbiddenError()
    return principal


def can_view_order_history(order: Order, principal: Optional[Principal]) -> bool:
    if principal is None:
        return False
    return principal.is_admin or (order.user_id is not None and principal.user_id == order.user_id)
