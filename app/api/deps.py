from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.domain.errors import ConflictError, InvalidArgumentError, NotFoundError, WorkflowError
from app.domain.permissions import has_permission
from app.infra.auth import decode_access_token
from app.infra.realtime import notification_hub

bearer_scheme = HTTPBearer()


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def require_perm(permission: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_permission(claims, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return claims

    return _checker


def require_any_perm(*permissions: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    expected = [item for item in permissions if item]

    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not expected:
            return claims
        if any(has_permission(claims, permission) for permission in expected):
            return claims
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing any permission: {', '.join(expected)}",
        )

    return _checker


def handle_workflow_error(exc: WorkflowError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, InvalidArgumentError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise exc


def owned_channel_ref(channel_ref: str | None, claims: dict[str, Any]) -> str | None:
    if not channel_ref:
        return None
    if notification_hub.owner_of(channel_ref) != claims.get("sub"):
        return None
    return channel_ref
