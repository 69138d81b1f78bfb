from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from app.api.deps import get_current_claims, handle_workflow_error, owned_channel_ref, require_any_perm, require_perm
from app.domain.errors import WorkflowError
from app.domain.models import (
    ClientTasksRead,
    ProcedureCancelRequest,
    ProcedureInstanceRead,
    ProcedureStartRequest,
    ProcedureStatusRead,
    TaskDocumentSubmitRequest,
    TaskInstanceRead,
)
from app.domain.permissions import PERM_PROCEDURE_CLIENT, PERM_TASK_REVIEW
from app.services.workflow_service import WorkflowService

router = APIRouter()


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[WorkflowService, Depends(get_workflow_service)]


@router.post(
    "/templates/{template_id}/start",
    response_model=ProcedureInstanceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PROCEDURE_CLIENT))],
)
def start_procedure(
    template_id: str,
    payload: ProcedureStartRequest,
    claims: Claims,
    service: Service,
) -> ProcedureInstanceRead:
    try:
        instance = service.start_procedure(
            template_id,
            claims["sub"],
            owned_channel_ref(payload.channel_ref, claims),
        )
        return ProcedureInstanceRead.model_validate(instance)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "",
    response_model=list[ProcedureInstanceRead],
    dependencies=[Depends(require_perm(PERM_PROCEDURE_CLIENT))],
)
def list_my_procedures(claims: Claims, service: Service) -> list[ProcedureInstanceRead]:
    return [ProcedureInstanceRead.model_validate(item) for item in service.list_client_procedures(claims["sub"])]


@router.get(
    "/{procedure_instance_id}/status",
    response_model=ProcedureStatusRead,
    dependencies=[Depends(require_any_perm(PERM_PROCEDURE_CLIENT, PERM_TASK_REVIEW))],
)
def get_procedure_status(procedure_instance_id: str, claims: Claims, service: Service) -> ProcedureStatusRead:
    # Clients only see their own procedures; staff may inspect any.
    client_id = claims["sub"] if claims.get("kind") == "client" else None
    try:
        return service.get_procedure_status(procedure_instance_id, client_id=client_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/{procedure_instance_id}/cancel",
    response_model=ProcedureInstanceRead,
    dependencies=[Depends(require_perm(PERM_PROCEDURE_CLIENT))],
)
def cancel_procedure(
    procedure_instance_id: str,
    payload: ProcedureCancelRequest,
    claims: Claims,
    service: Service,
) -> ProcedureInstanceRead:
    try:
        instance = service.cancel_procedure(
            procedure_instance_id,
            claims["sub"],
            owned_channel_ref(payload.channel_ref, claims),
        )
        return ProcedureInstanceRead.model_validate(instance)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/{procedure_instance_id}/tasks",
    response_model=ClientTasksRead,
    dependencies=[Depends(require_perm(PERM_PROCEDURE_CLIENT))],
)
def list_client_tasks(procedure_instance_id: str, claims: Claims, service: Service) -> ClientTasksRead:
    try:
        return service.list_client_tasks(procedure_instance_id, claims["sub"])
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/{procedure_instance_id}/tasks/{task_template_id}/document",
    response_model=TaskInstanceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PROCEDURE_CLIENT))],
)
def submit_task_document(
    procedure_instance_id: str,
    task_template_id: str,
    payload: TaskDocumentSubmitRequest,
    claims: Claims,
    service: Service,
) -> TaskInstanceRead:
    try:
        task = service.submit_task_document(
            procedure_instance_id,
            task_template_id,
            claims["sub"],
            payload.document_ref,
        )
        return TaskInstanceRead.model_validate(task)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise
