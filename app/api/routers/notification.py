from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from app.api.deps import get_current_claims, handle_workflow_error, require_perm
from app.domain.errors import WorkflowError
from app.domain.models import NotificationRead
from app.domain.permissions import PERM_NOTIFICATION_READ, has_permission
from app.infra.auth import decode_access_token
from app.infra.realtime import notification_hub
from app.services.notification_service import NotificationService

router = APIRouter()
ws_router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


def _extract_ws_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    auth_header = websocket.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


@router.get(
    "",
    response_model=list[NotificationRead],
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def list_notifications(claims: Claims, service: Service) -> list[NotificationRead]:
    return [NotificationRead.model_validate(item) for item in service.list_notifications(claims["sub"])]


@router.post(
    "/read-all",
    response_model=list[NotificationRead],
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def mark_all_as_read(claims: Claims, service: Service) -> list[NotificationRead]:
    return [NotificationRead.model_validate(item) for item in service.mark_all_as_read(claims["sub"])]


@router.post(
    "/{notification_id}/read",
    response_model=NotificationRead,
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def mark_as_read(notification_id: str, claims: Claims, service: Service) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.mark_as_read(notification_id, claims["sub"]))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@ws_router.websocket("/ws/notifications")
async def ws_notifications(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    resolved_token = _extract_ws_token(websocket, token)
    if not resolved_token:
        await websocket.close(code=4401)
        return
    try:
        claims = decode_access_token(resolved_token)
    except Exception:
        await websocket.close(code=4401)
        return
    if not has_permission(claims, PERM_NOTIFICATION_READ):
        await websocket.close(code=4403)
        return

    channel_ref = await notification_hub.connect(websocket, claims["sub"])
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        notification_hub.disconnect(channel_ref)
