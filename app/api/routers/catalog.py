from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.deps import handle_workflow_error, require_perm
from app.domain.errors import WorkflowError
from app.domain.models import (
    ClientCreate,
    ClientRead,
    EmployeeCreate,
    EmployeeRead,
    ProcedureTemplateCreate,
    ProcedureTemplateDetailRead,
    ProcedureTemplateRead,
    RoleCreate,
    RoleRead,
    TaskTemplateCreate,
    TaskTemplateRead,
)
from app.domain.permissions import PERM_CATALOG_READ, PERM_CATALOG_WRITE
from app.services.catalog_service import CatalogService

router = APIRouter()


def get_catalog_service() -> CatalogService:
    return CatalogService()


Service = Annotated[CatalogService, Depends(get_catalog_service)]


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CATALOG_WRITE))],
)
def create_role(payload: RoleCreate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def list_roles(service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles()]


@router.post(
    "/clients",
    response_model=ClientRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CATALOG_WRITE))],
)
def register_client(payload: ClientCreate, service: Service) -> ClientRead:
    try:
        return ClientRead.model_validate(service.register_client(payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/clients/{client_id}",
    response_model=ClientRead,
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def get_client(client_id: str, service: Service) -> ClientRead:
    try:
        return ClientRead.model_validate(service.get_client(client_id))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/employees",
    response_model=EmployeeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CATALOG_WRITE))],
)
def onboard_employee(payload: EmployeeCreate, service: Service) -> EmployeeRead:
    try:
        return EmployeeRead.model_validate(service.onboard_employee(payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/employees/{employee_id}",
    response_model=EmployeeRead,
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def get_employee(employee_id: str, service: Service) -> EmployeeRead:
    try:
        return EmployeeRead.model_validate(service.get_employee(employee_id))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.post(
    "/procedures",
    response_model=ProcedureTemplateRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CATALOG_WRITE))],
)
def create_procedure_template(payload: ProcedureTemplateCreate, service: Service) -> ProcedureTemplateRead:
    try:
        return ProcedureTemplateRead.model_validate(service.create_procedure_template(payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/procedures",
    response_model=list[ProcedureTemplateRead],
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def list_procedure_templates(service: Service) -> list[ProcedureTemplateRead]:
    return [ProcedureTemplateRead.model_validate(item) for item in service.list_procedure_templates()]


@router.get(
    "/procedures/{procedure_template_id}",
    response_model=ProcedureTemplateDetailRead,
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def get_procedure_template(procedure_template_id: str, service: Service) -> ProcedureTemplateDetailRead:
    try:
        template, tasks = service.get_procedure_with_tasks(procedure_template_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise
    return ProcedureTemplateDetailRead(
        procedure=ProcedureTemplateRead.model_validate(template),
        tasks=[TaskTemplateRead.model_validate(item) for item in tasks],
    )


@router.post(
    "/procedures/{procedure_template_id}/tasks",
    response_model=TaskTemplateRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CATALOG_WRITE))],
)
def create_task_template(
    procedure_template_id: str,
    payload: TaskTemplateCreate,
    service: Service,
) -> TaskTemplateRead:
    try:
        return TaskTemplateRead.model_validate(service.create_task_template(procedure_template_id, payload))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/tasks/{task_template_id}",
    response_model=TaskTemplateRead,
    dependencies=[Depends(require_perm(PERM_CATALOG_READ))],
)
def get_task_template(task_template_id: str, service: Service) -> TaskTemplateRead:
    try:
        return TaskTemplateRead.model_validate(service.get_task_template(task_template_id))
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise
