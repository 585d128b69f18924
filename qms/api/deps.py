from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Annotated, Any, NoReturn

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from qms.domain.errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    QmsError,
    ValidationError,
)
from qms.domain.permissions import authorize
from qms.infra.auth import decode_access_token
from qms.infra.context import RequestContext, context_from_claims

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

_ERROR_STATUS: dict[type[QmsError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
}


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_request_context(
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> RequestContext:
    try:
        return context_from_claims(claims)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc


def require_perm(permission: str) -> Callable[[RequestContext], RequestContext]:
    def _checker(
        context: Annotated[RequestContext, Depends(get_request_context)],
    ) -> RequestContext:
        decision = authorize(context, permission)
        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return context

    return _checker


def handle_service_error(exc: QmsError) -> NoReturn:
    """Translate a service error into the matching HTTP response."""
    if isinstance(exc, InternalError):
        logger.error("internal error: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc
