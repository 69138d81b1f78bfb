from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, InvalidArgumentError, NotFoundError
from app.domain.models import (
    Client,
    ClientCreate,
    Employee,
    EmployeeCreate,
    GamificationProfile,
    ProcedureTemplate,
    ProcedureTemplateCreate,
    Role,
    RoleCreate,
    TaskTemplate,
    TaskTemplateCreate,
)
from app.infra.db import get_engine


class CatalogService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @staticmethod
    def _commit_or_conflict(session: Session, message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(message) from exc

    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _get_procedure_template(self, session: Session, template_id: str) -> ProcedureTemplate:
        template = session.get(ProcedureTemplate, template_id)
        if template is None:
            raise NotFoundError("procedure template not found")
        return template

    def create_role(self, payload: RoleCreate) -> Role:
        with self._session() as session:
            duplicate = session.exec(select(Role).where(Role.name == payload.name)).first()
            if duplicate is not None:
                raise ConflictError("role already exists")
            role = Role(name=payload.name, description=payload.description)
            session.add(role)
            self._commit_or_conflict(session, "role already exists")
            session.refresh(role)
            return role

    def list_roles(self) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.name))).all())

    def register_client(self, payload: ClientCreate) -> Client:
        with self._session() as session:
            client = Client(username=payload.username, email=payload.email)
            session.add(client)
            self._commit_or_conflict(session, "email already registered")
            session.refresh(client)
            return client

    def get_client(self, client_id: str) -> Client:
        with self._session() as session:
            client = session.get(Client, client_id)
            if client is None:
                raise NotFoundError("client not found")
            return client

    def onboard_employee(self, payload: EmployeeCreate) -> Employee:
        with self._session() as session:
            self._get_role(session, payload.role_id)
            employee = Employee(username=payload.username, email=payload.email, role_id=payload.role_id)
            session.add(employee)
            session.add(GamificationProfile(employee_id=employee.id))
            self._commit_or_conflict(session, "email already registered")
            session.refresh(employee)
            return employee

    def get_employee(self, employee_id: str) -> Employee:
        with self._session() as session:
            employee = session.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("employee not found")
            return employee

    def employees_with_role(self, role_id: str) -> list[str]:
        with self._session() as session:
            rows = session.exec(
                select(Employee.id).where(Employee.role_id == role_id).order_by(col(Employee.id))
            ).all()
            return list(rows)

    def create_procedure_template(self, payload: ProcedureTemplateCreate) -> ProcedureTemplate:
        with self._session() as session:
            duplicate = session.exec(
                select(ProcedureTemplate).where(ProcedureTemplate.name == payload.name)
            ).first()
            if duplicate is not None:
                raise ConflictError("a procedure with this name already exists")
            template = ProcedureTemplate(name=payload.name, description=payload.description)
            session.add(template)
            self._commit_or_conflict(session, "a procedure with this name already exists")
            session.refresh(template)
            return template

    def list_procedure_templates(self) -> list[ProcedureTemplate]:
        with self._session() as session:
            return list(session.exec(select(ProcedureTemplate).order_by(col(ProcedureTemplate.name))).all())

    def get_procedure_template(self, template_id: str) -> ProcedureTemplate:
        with self._session() as session:
            return self._get_procedure_template(session, template_id)

    def create_task_template(self, procedure_template_id: str, payload: TaskTemplateCreate) -> TaskTemplate:
        if payload.xp_base < 0:
            raise InvalidArgumentError("xp base must not be negative")
        if payload.estimated_duration_days <= 0:
            raise InvalidArgumentError("estimated duration must be at least one day")
        with self._session() as session:
            self._get_procedure_template(session, procedure_template_id)
            self._get_role(session, payload.required_role_id)
            duplicate = session.exec(
                select(TaskTemplate)
                .where(TaskTemplate.procedure_template_id == procedure_template_id)
                .where(TaskTemplate.name == payload.name)
            ).first()
            if duplicate is not None:
                raise ConflictError("a task with this name already exists for this procedure")
            task = TaskTemplate(
                procedure_template_id=procedure_template_id,
                name=payload.name,
                description=payload.description,
                xp_base=payload.xp_base,
                required_role_id=payload.required_role_id,
                estimated_duration_days=payload.estimated_duration_days,
                difficulty=payload.difficulty,
            )
            session.add(task)
            self._commit_or_conflict(session, "a task with this name already exists for this procedure")
            session.refresh(task)
            return task

    def get_task_template(self, task_template_id: str) -> TaskTemplate:
        with self._session() as session:
            task = session.get(TaskTemplate, task_template_id)
            if task is None:
                raise NotFoundError("task template not found")
            return task

    def list_task_templates(self, procedure_template_id: str) -> list[TaskTemplate]:
        with self._session() as session:
            self._get_procedure_template(session, procedure_template_id)
            return list(
                session.exec(
                    select(TaskTemplate)
                    .where(TaskTemplate.procedure_template_id == procedure_template_id)
                    .order_by(col(TaskTemplate.created_at), col(TaskTemplate.name))
                ).all()
            )

    def get_procedure_with_tasks(self, procedure_template_id: str) -> tuple[ProcedureTemplate, list[TaskTemplate]]:
        template = self.get_procedure_template(procedure_template_id)
        return template, self.list_task_templates(procedure_template_id)
