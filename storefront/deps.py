from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import ForbiddenError, UnauthenticatedError
from storefront.core.request_context import set_request_context
from storefront.models.user import User
from storefront.services.access_control import Principal
from storefront.services.auth import decode_access_token, extract_user_id

bearer_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


def get_optional_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[Principal]:
    """Caller identity from the bearer token, or None for anonymous calls.

    A token that is present but invalid is rejected rather than treated as
    anonymous.
    """
    if credentials is None or not credentials.credentials:
        return None

    try:
        payload = decode_access_token(credentials.credentials)
    except ValueError:
        raise UnauthenticatedError("Sessione non valida o scaduta") from None

    user_id = extract_user_id(payload)
    if user_id is None:
        raise UnauthenticatedError("Sessione non valida")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UnauthenticatedError("Utente non trovato")

    principal = Principal(user_id=user.id, role=user.role, email=user.email)
    request.state.principal = principal
    set_request_context(user_id=str(user.id))
    return principal


def get_current_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise UnauthenticatedError()
    return principal


def require_admin(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        logger.warning(
            "Access denied (role_denied): user_id=%s role=%s endpoint=%s %s",
            principal.user_id,
            principal.role,
            request.method,
            request.url.path,
        )
        raise ForbiddenError()
    return principal


def get_order_access_token(
    x_order_access_token: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None, max_length=128),
) -> Optional[str]:
    return x_order_access_token or token
