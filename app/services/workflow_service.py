from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, InvalidArgumentError, NotFoundError
from app.domain.models import (
    Client,
    ClientTaskItemRead,
    ClientTasksRead,
    EmployeeTaskItemRead,
    EventEnvelope,
    ProcedureInstance,
    ProcedureInstanceRead,
    ProcedureStatusRead,
    ProcedureTemplate,
    TaskInstance,
    TaskInstanceRead,
    TaskTemplate,
    TaskTemplateRead,
    now_utc,
)
from app.domain.state_machine import (
    TASK_SLOT_HOLDING_STATES,
    ProcedureStatus,
    TaskStatus,
    can_procedure_transition,
    can_task_transition,
    derive_procedure_status,
    is_cancellable,
)
from app.domain.xp import SECONDS_PER_DAY, ensure_utc
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.assignment_service import AssignmentService
from app.services.gamification_service import GamificationService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class EmployeeTaskView(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class WorkflowService:
    def __init__(
        self,
        notifications: NotificationService | None = None,
        gamification: GamificationService | None = None,
        assignment: AssignmentService | None = None,
    ) -> None:
        self._notifications = notifications if notifications is not None else NotificationService()
        self._gamification = (
            gamification if gamification is not None else GamificationService(self._notifications)
        )
        self._assignment = assignment if assignment is not None else AssignmentService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @staticmethod
    def _record_event(
        session: Session,
        event_type: str,
        payload: dict[str, Any],
        actor_id: str | None,
    ) -> None:
        event_bus.publish(
            EventEnvelope(event_type=event_type, actor_id=actor_id, payload=payload),
            session=session,
        )

    def _run_side_effect(self, description: str, subject_id: str, effect: Callable[[], object]) -> bool:
        try:
            effect()
        except Exception as exc:
            logger.exception("%s failed for %s", description, subject_id)
            try:
                event_bus.publish_dict(
                    "workflow.side_effect_failed",
                    {"effect": description, "subject_id": subject_id, "error": repr(exc)},
                )
            except Exception:
                logger.exception("could not record side effect failure for %s", subject_id)
            return False
        return True

    @staticmethod
    def _load_procedure_instance(
        session: Session,
        procedure_instance_id: str,
        lock: bool,
    ) -> ProcedureInstance | None:
        if not lock:
            return session.get(ProcedureInstance, procedure_instance_id)
        # Writers on one procedure queue here until the holder commits, so task counts are read fresh.
        return session.exec(
            select(ProcedureInstance)
            .where(col(ProcedureInstance.id) == procedure_instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def _get_procedure_instance(
        self,
        session: Session,
        procedure_instance_id: str,
        *,
        lock: bool = False,
    ) -> ProcedureInstance:
        instance = self._load_procedure_instance(session, procedure_instance_id, lock)
        if instance is None:
            raise NotFoundError("procedure instance not found")
        return instance

    def _get_owned_procedure_instance(
        self,
        session: Session,
        procedure_instance_id: str,
        client_id: str,
        *,
        lock: bool = False,
    ) -> ProcedureInstance:
        instance = self._load_procedure_instance(session, procedure_instance_id, lock)
        if instance is None or instance.client_id != client_id:
            raise NotFoundError("procedure has not been started by this client")
        return instance

    def _get_procedure_template(self, session: Session, template_id: str) -> ProcedureTemplate:
        template = session.get(ProcedureTemplate, template_id)
        if template is None:
            raise NotFoundError("procedure template not found")
        return template

    def _get_task_template(self, session: Session, task_template_id: str) -> TaskTemplate:
        template = session.get(TaskTemplate, task_template_id)
        if template is None:
            raise NotFoundError("task template not found")
        return template

    def _get_assigned_task(self, session: Session, task_instance_id: str, employee_id: str) -> TaskInstance:
        task = session.get(TaskInstance, task_instance_id)
        if task is None or task.employee_id != employee_id:
            raise NotFoundError("task not found for this employee")
        return task

    @staticmethod
    def _transition_procedure(instance: ProcedureInstance, target: ProcedureStatus, now: datetime) -> None:
        if instance.status == target and target != ProcedureStatus.COMPLETED:
            return
        if not can_procedure_transition(instance.status, target):
            raise ConflictError(f"illegal procedure transition: {instance.status} -> {target}")
        instance.status = target
        if target == ProcedureStatus.COMPLETED:
            instance.end_date = now

    def _recompute_procedure_status(self, session: Session, instance: ProcedureInstance, now: datetime) -> None:
        total_templates = session.exec(
            select(func.count())
            .select_from(TaskTemplate)
            .where(TaskTemplate.procedure_template_id == instance.template_id)
        ).one()
        completed_templates = session.exec(
            select(func.count(func.distinct(TaskInstance.task_template_id)))
            .where(TaskInstance.procedure_instance_id == instance.id)
            .where(TaskInstance.status == TaskStatus.COMPLETED)
        ).one()
        any_task = session.exec(
            select(TaskInstance.id).where(TaskInstance.procedure_instance_id == instance.id)
        ).first()
        target = derive_procedure_status(int(total_templates), int(completed_templates), any_task is not None)
        self._transition_procedure(instance, target, now)
        session.add(instance)

    def _resolve_task(
        self,
        session: Session,
        task: TaskInstance,
        target: TaskStatus,
        now: datetime,
        reason: str | None = None,
    ) -> None:
        if not can_task_transition(task.status, target):
            raise ConflictError(f"task is already {task.status}")
        # Compare-and-set on the pending state: of two concurrent resolutions only one matches.
        result = session.execute(
            update(TaskInstance)
            .where(col(TaskInstance.id) == task.id)
            .where(col(TaskInstance.employee_id) == task.employee_id)
            .where(col(TaskInstance.status) == TaskStatus.PENDING)
            .values(status=target, end_date=now, rejection_reason=reason)
        )
        if int(getattr(result, "rowcount", 0) or 0) != 1:
            session.rollback()
            raise ConflictError("task is no longer pending")

    def start_procedure(
        self,
        template_id: str,
        client_id: str,
        channel_ref: str | None = None,
    ) -> ProcedureInstance:
        with self._session() as session:
            if session.get(Client, client_id) is None:
                raise NotFoundError("client not found")
            template = self._get_procedure_template(session, template_id)
            existing = session.exec(
                select(ProcedureInstance)
                .where(ProcedureInstance.template_id == template_id)
                .where(ProcedureInstance.client_id == client_id)
            ).first()
            if existing is not None:
                raise ConflictError("procedure already started by this client")
            instance = ProcedureInstance(
                template_id=template_id,
                client_id=client_id,
                status=ProcedureStatus.PENDING,
            )
            session.add(instance)
            self._record_event(
                session,
                "procedure.started",
                {"procedure_instance_id": instance.id, "template_id": template_id},
                client_id,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("procedure already started by this client") from exc
            session.refresh(instance)
            template_name = template.name

        logger.info("client %s started procedure %s (%s)", client_id, instance.id, template_name)
        self._run_side_effect(
            "notify client of procedure start",
            instance.id,
            lambda: self._notifications.notify(
                client_id,
                f'You have started the procedure "{template_name}"',
                channel_ref,
            ),
        )
        return instance

    def cancel_procedure(
        self,
        procedure_instance_id: str,
        client_id: str,
        channel_ref: str | None = None,
    ) -> ProcedureInstance:
        with self._session() as session:
            instance = self._get_owned_procedure_instance(
                session, procedure_instance_id, client_id, lock=True
            )
            if not is_cancellable(instance.status):
                raise ConflictError("completed procedures cannot be cancelled")
            template = self._get_procedure_template(session, instance.template_id)
            template_name = template.name
            tasks = list(
                session.exec(
                    select(TaskInstance).where(TaskInstance.procedure_instance_id == instance.id)
                ).all()
            )
            for task in tasks:
                session.delete(task)
            session.flush()
            session.delete(instance)
            self._record_event(
                session,
                "procedure.cancelled",
                {"procedure_instance_id": instance.id, "removed_tasks": len(tasks)},
                client_id,
            )
            session.commit()

        logger.info("client %s cancelled procedure %s, %d tasks removed", client_id, instance.id, len(tasks))
        self._run_side_effect(
            "notify client of cancellation",
            instance.id,
            lambda: self._notifications.notify(
                client_id,
                f'You have cancelled the procedure "{template_name}"',
                channel_ref,
            ),
        )
        return instance

    def submit_task_document(
        self,
        procedure_instance_id: str,
        task_template_id: str,
        client_id: str,
        document_ref: str,
    ) -> TaskInstance:
        if not document_ref or not document_ref.strip():
            raise InvalidArgumentError("no document was uploaded")
        now = now_utc()
        with self._session() as session:
            instance = self._get_owned_procedure_instance(
                session, procedure_instance_id, client_id, lock=True
            )
            template = session.get(TaskTemplate, task_template_id)
            if template is None or template.procedure_template_id != instance.template_id:
                raise NotFoundError("task not found for this procedure")
            if instance.status == ProcedureStatus.COMPLETED:
                raise ConflictError("procedure is already completed")
            holding = session.exec(
                select(TaskInstance)
                .where(TaskInstance.procedure_instance_id == instance.id)
                .where(TaskInstance.task_template_id == task_template_id)
                .where(col(TaskInstance.status).in_(sorted(TASK_SLOT_HOLDING_STATES)))
            ).first()
            if holding is not None:
                raise ConflictError("task already completed or pending")

            employee_id = self._assignment.select_employee(session, template.required_role_id)
            task = TaskInstance(
                procedure_instance_id=instance.id,
                task_template_id=task_template_id,
                employee_id=employee_id,
                status=TaskStatus.PENDING,
                document_ref=document_ref,
                start_date=now,
            )
            session.add(task)
            self._transition_procedure(instance, ProcedureStatus.IN_PROGRESS, now)
            session.add(instance)
            self._record_event(
                session,
                "task.submitted",
                {
                    "task_instance_id": task.id,
                    "procedure_instance_id": instance.id,
                    "task_template_id": task_template_id,
                    "employee_id": employee_id,
                },
                client_id,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("task already completed or pending") from exc
            session.refresh(task)
            task_name = template.name

        logger.info("task %s (%s) assigned to employee %s", task.id, task_name, employee_id)
        self._run_side_effect(
            "notify employee of assignment",
            task.id,
            lambda: self._notifications.notify(employee_id, f'You have been assigned the task "{task_name}"'),
        )
        return task

    def accept_task(
        self,
        task_instance_id: str,
        employee_id: str,
        channel_ref: str | None = None,
    ) -> TaskInstance:
        now = now_utc()
        with self._session() as session:
            task = self._get_assigned_task(session, task_instance_id, employee_id)
            instance = self._get_procedure_instance(session, task.procedure_instance_id, lock=True)
            self._resolve_task(session, task, TaskStatus.COMPLETED, now)
            self._recompute_procedure_status(session, instance, now)
            template = self._get_task_template(session, task.task_template_id)
            procedure_template = self._get_procedure_template(session, instance.template_id)
            self._record_event(
                session,
                "task.accepted",
                {"task_instance_id": task.id, "procedure_instance_id": instance.id},
                employee_id,
            )
            if instance.status == ProcedureStatus.COMPLETED:
                self._record_event(
                    session,
                    "procedure.completed",
                    {"procedure_instance_id": instance.id},
                    employee_id,
                )
            session.commit()
            session.refresh(task)
            session.refresh(instance)

        procedure_completed = instance.status == ProcedureStatus.COMPLETED
        logger.info(
            "employee %s accepted task %s; procedure %s is %s",
            employee_id,
            task.id,
            instance.id,
            instance.status,
        )

        def notify_client() -> None:
            self._notifications.notify(
                instance.client_id,
                f'The task "{template.name}" of the procedure "{procedure_template.name}" has been completed',
            )
            if procedure_completed:
                self._notifications.notify(
                    instance.client_id,
                    f'The procedure "{procedure_template.name}" has been completed',
                )

        self._run_side_effect("notify client of accepted task", task.id, notify_client)
        self._run_side_effect(
            "award xp for accepted task",
            task.id,
            lambda: self._gamification.award_task_xp(task, template, accepted=True, channel_ref=channel_ref),
        )
        return task

    def reject_task(
        self,
        task_instance_id: str,
        employee_id: str,
        reason: str,
        channel_ref: str | None = None,
    ) -> TaskInstance:
        if not reason or not reason.strip():
            raise InvalidArgumentError("a rejection reason is required")
        now = now_utc()
        with self._session() as session:
            task = self._get_assigned_task(session, task_instance_id, employee_id)
            instance = self._get_procedure_instance(session, task.procedure_instance_id, lock=True)
            self._resolve_task(session, task, TaskStatus.REJECTED, now, reason=reason)
            self._transition_procedure(instance, ProcedureStatus.IN_PROGRESS, now)
            session.add(instance)
            template = self._get_task_template(session, task.task_template_id)
            procedure_template = self._get_procedure_template(session, instance.template_id)
            self._record_event(
                session,
                "task.rejected",
                {"task_instance_id": task.id, "procedure_instance_id": instance.id, "reason": reason},
                employee_id,
            )
            session.commit()
            session.refresh(task)
            session.refresh(instance)

        logger.info("employee %s rejected task %s: %s", employee_id, task.id, reason)
        self._run_side_effect(
            "notify client of rejected task",
            task.id,
            lambda: self._notifications.notify(
                instance.client_id,
                f'The task "{template.name}" of the procedure "{procedure_template.name}" '
                f"has been rejected for the following reason: {reason}",
            ),
        )
        # Rejections are scored with the same formula as acceptances.
        self._run_side_effect(
            "award xp for rejected task",
            task.id,
            lambda: self._gamification.award_task_xp(task, template, accepted=False, channel_ref=channel_ref),
        )
        return task

    def get_procedure_status(self, procedure_instance_id: str, client_id: str | None = None) -> ProcedureStatusRead:
        with self._session() as session:
            if client_id is None:
                instance = self._get_procedure_instance(session, procedure_instance_id)
            else:
                instance = self._get_owned_procedure_instance(session, procedure_instance_id, client_id)
            template = self._get_procedure_template(session, instance.template_id)
            total = session.exec(
                select(func.count())
                .select_from(TaskTemplate)
                .where(TaskTemplate.procedure_template_id == instance.template_id)
            ).one()
            tasks = list(
                session.exec(
                    select(TaskInstance).where(TaskInstance.procedure_instance_id == instance.id)
                ).all()
            )
        by_status = {status: sum(1 for item in tasks if item.status == status) for status in TaskStatus}
        return ProcedureStatusRead(
            procedure=ProcedureInstanceRead.model_validate(instance),
            template_name=template.name,
            total_tasks=int(total),
            completed_tasks=by_status[TaskStatus.COMPLETED],
            pending_tasks=by_status[TaskStatus.PENDING],
            rejected_tasks=by_status[TaskStatus.REJECTED],
        )

    def list_client_procedures(self, client_id: str) -> list[ProcedureInstance]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ProcedureInstance)
                    .where(ProcedureInstance.client_id == client_id)
                    .order_by(col(ProcedureInstance.start_date).desc())
                ).all()
            )

    def list_client_tasks(self, procedure_instance_id: str, client_id: str) -> ClientTasksRead:
        with self._session() as session:
            instance = self._get_owned_procedure_instance(session, procedure_instance_id, client_id)
            submitted_rows = session.exec(
                select(TaskInstance, TaskTemplate)
                .join(TaskTemplate, col(TaskTemplate.id) == col(TaskInstance.task_template_id))
                .where(TaskInstance.procedure_instance_id == instance.id)
                .where(TaskInstance.status != TaskStatus.REJECTED)
                .order_by(col(TaskInstance.start_date).desc())
            ).all()
            templates = list(
                session.exec(
                    select(TaskTemplate)
                    .where(TaskTemplate.procedure_template_id == instance.template_id)
                    .order_by(col(TaskTemplate.created_at), col(TaskTemplate.name))
                ).all()
            )
        held = {task.task_template_id for task, _template in submitted_rows}
        return ClientTasksRead(
            submitted=[
                ClientTaskItemRead(
                    task=TaskInstanceRead.model_validate(task),
                    task_name=template.name,
                    task_description=template.description,
                    difficulty=template.difficulty,
                    estimated_duration_days=template.estimated_duration_days,
                )
                for task, template in submitted_rows
            ],
            outstanding=[TaskTemplateRead.model_validate(item) for item in templates if item.id not in held],
        )

    def list_employee_tasks(
        self,
        employee_id: str,
        view: EmployeeTaskView = EmployeeTaskView.PENDING,
    ) -> list[EmployeeTaskItemRead]:
        statement = (
            select(TaskInstance, TaskTemplate, ProcedureTemplate)
            .join(TaskTemplate, col(TaskTemplate.id) == col(TaskInstance.task_template_id))
            .join(ProcedureInstance, col(ProcedureInstance.id) == col(TaskInstance.procedure_instance_id))
            .join(ProcedureTemplate, col(ProcedureTemplate.id) == col(ProcedureInstance.template_id))
            .where(TaskInstance.employee_id == employee_id)
        )
        if view == EmployeeTaskView.PENDING:
            statement = statement.where(TaskInstance.status == TaskStatus.PENDING)
        else:
            statement = statement.where(TaskInstance.status != TaskStatus.PENDING).order_by(
                col(TaskInstance.end_date).desc()
            )
        with self._session() as session:
            rows = session.exec(statement).all()

        now = now_utc()
        items: list[EmployeeTaskItemRead] = []
        for task, template, procedure in rows:
            time_left_days: float | None = None
            if view == EmployeeTaskView.PENDING:
                deadline = ensure_utc(task.start_date) + timedelta(days=template.estimated_duration_days)
                time_left_days = round((deadline - now).total_seconds() / SECONDS_PER_DAY, 2)
            items.append(
                EmployeeTaskItemRead(
                    task=TaskInstanceRead.model_validate(task),
                    task_name=template.name,
                    task_description=template.description,
                    xp_base=template.xp_base,
                    difficulty=template.difficulty,
                    estimated_duration_days=template.estimated_duration_days,
                    procedure_instance_id=task.procedure_instance_id,
                    procedure_name=procedure.name,
                    time_left_days=time_left_days,
                )
            )
        if view == EmployeeTaskView.PENDING:
            items.sort(key=lambda item: item.time_left_days if item.time_left_days is not None else 0.0)
        return items

    def list_procedure_tasks(self, procedure_instance_id: str) -> list[TaskInstance]:
        with self._session() as session:
            self._get_procedure_instance(session, procedure_instance_id)
            return list(
                session.exec(
                    select(TaskInstance)
                    .where(TaskInstance.procedure_instance_id == procedure_instance_id)
                    .order_by(col(TaskInstance.start_date))
                ).all()
            )
