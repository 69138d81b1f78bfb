from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_claims, handle_workflow_error, owned_channel_ref, require_perm
from app.domain.errors import WorkflowError
from app.domain.models import EmployeeTaskItemRead, TaskAcceptRequest, TaskInstanceRead, TaskRejectRequest
from app.domain.permissions import PERM_TASK_REVIEW
from app.services.workflow_service import EmployeeTaskView, WorkflowService

router = APIRouter()


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[WorkflowService, Depends(get_workflow_service)]


@router.get(
    "/assigned",
    response_model=list[EmployeeTaskItemRead],
    dependencies=[Depends(require_perm(PERM_TASK_REVIEW))],
)
def list_assigned_tasks(
    claims: Claims,
    service: Service,
    view: Annotated[EmployeeTaskView, Query(alias="status")] = EmployeeTaskView.PENDING,
) -> list[EmployeeTaskItemRead]:
    return service.list_employee_tasks(claims["sub"], view)


@router.get(
    "/procedures/{procedure_instance_id}",
    response_model=list[TaskInstanceRead],
    dependencies=[Depends(require_perm(PERM_TASK_REVIEW))],
)
def list_procedure_tasks(procedure_instance_id: str, service: Service) -> list[TaskInstanceRead]:
    try:
        return [TaskInstanceRead.model_validate(item) for item in service.list_procedure_tasks(procedure_instance_id)]
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/{task_instance_id}/accept",
    response_model=TaskInstanceRead,
    dependencies=[Depends(require_perm(PERM_TASK_REVIEW))],
)
def accept_task(
    task_instance_id: str,
    payload: TaskAcceptRequest,
    claims: Claims,
    service: Service,
) -> TaskInstanceRead:
    try:
        task = service.accept_task(
            task_instance_id,
            claims["sub"],
            owned_channel_ref(payload.channel_ref, claims),
        )
        return TaskInstanceRead.model_validate(task)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/{task_instance_id}/reject",
    response_model=TaskInstanceRead,
    dependencies=[Depends(require_perm(PERM_TASK_REVIEW))],
)
def reject_task(
    task_instance_id: str,
    payload: TaskRejectRequest,
    claims: Claims,
    service: Service,
) -> TaskInstanceRead:
    try:
        task = service.reject_task(
            task_instance_id,
            claims["sub"],
            payload.reason,
            owned_channel_ref(payload.channel_ref, claims),
        )
        return TaskInstanceRead.model_validate(task)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise
