from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, String, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.domain.state_machine import Difficulty, ProcedureStatus, TaskStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Client(SQLModel, table=True):
    __tablename__ = "clients"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Employee(SQLModel, table=True):
    __tablename__ = "employees"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    role_id: str = Field(foreign_key="roles.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ProcedureTemplate(SQLModel, table=True):
    __tablename__ = "procedure_templates"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TaskTemplate(SQLModel, table=True):
    __tablename__ = "task_templates"
    __table_args__ = (
        UniqueConstraint("procedure_template_id", "name", name="uq_task_templates_procedure_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    procedure_template_id: str = Field(foreign_key="procedure_templates.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    xp_base: int
    required_role_id: str = Field(foreign_key="roles.id", index=True)
    estimated_duration_days: int
    difficulty: Difficulty
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ProcedureInstance(SQLModel, table=True):
    __tablename__ = "procedure_instances"
    __table_args__ = (
        UniqueConstraint("template_id", "client_id", name="uq_procedure_instances_template_client"),
        Index("ix_procedure_instances_client_status", "client_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    template_id: str = Field(foreign_key="procedure_templates.id", index=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    status: ProcedureStatus = Field(default=ProcedureStatus.PENDING, index=True)
    start_date: datetime = Field(default_factory=now_utc, index=True)
    end_date: datetime | None = Field(default=None, index=True)


class TaskInstance(SQLModel, table=True):
    __tablename__ = "task_instances"
    __table_args__ = (
        # Enum columns persist member names, hence the upper-case literals.
        Index(
            "uq_task_instances_active_slot",
            "procedure_instance_id",
            "task_template_id",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'COMPLETED')"),
            postgresql_where=text("status IN ('PENDING', 'COMPLETED')"),
        ),
        Index("ix_task_instances_employee_status", "employee_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    procedure_instance_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("procedure_instances.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_template_id: str = Field(foreign_key="task_templates.id", index=True)
    employee_id: str = Field(foreign_key="employees.id", index=True)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    document_ref: str
    start_date: datetime = Field(default_factory=now_utc, index=True)
    end_date: datetime | None = Field(default=None, index=True)
    rejection_reason: str | None = None


class GamificationProfile(SQLModel, table=True):
    __tablename__ = "gamification_profiles"
    __table_args__ = (
        CheckConstraint("xp_total >= 0", name="ck_gamification_profiles_xp_total"),
        CheckConstraint(
            "completed_tasks_count >= 0",
            name="ck_gamification_profiles_completed_tasks_count",
        ),
    )

    employee_id: str = Field(foreign_key="employees.id", primary_key=True)
    xp_total: int = Field(default=0, ge=0)
    completed_tasks_count: int = Field(default=0, ge=0)
    version: int = Field(default=0)
    updated_at: datetime = Field(default_factory=now_utc)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    recipient_id: str = Field(index=True)
    message: str
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    actor_id: str | None = None
    ts: datetime = PydanticField(default_factory=now_utc)
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime


class ClientCreate(BaseModel):
    username: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)


class ClientRead(ORMReadModel):
    id: str
    username: str
    email: str
    created_at: datetime


class EmployeeCreate(BaseModel):
    username: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)
    role_id: str


class EmployeeRead(ORMReadModel):
    id: str
    username: str
    email: str
    role_id: str
    created_at: datetime


class ProcedureTemplateCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None


class ProcedureTemplateRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime


class TaskTemplateCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    xp_base: int
    required_role_id: str
    estimated_duration_days: int
    difficulty: Difficulty


class TaskTemplateRead(ORMReadModel):
    id: str
    procedure_template_id: str
    name: str
    description: str | None = None
    xp_base: int
    required_role_id: str
    estimated_duration_days: int
    difficulty: Difficulty


class ProcedureTemplateDetailRead(BaseModel):
    procedure: ProcedureTemplateRead
    tasks: list[TaskTemplateRead]


class ProcedureInstanceRead(ORMReadModel):
    id: str
    template_id: str
    client_id: str
    status: ProcedureStatus
    start_date: datetime
    end_date: datetime | None = None


class ProcedureStartRequest(BaseModel):
    channel_ref: str | None = None


class ProcedureCancelRequest(BaseModel):
    channel_ref: str | None = None


class ProcedureStatusRead(BaseModel):
    procedure: ProcedureInstanceRead
    template_name: str
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    rejected_tasks: int


class TaskInstanceRead(ORMReadModel):
    id: str
    procedure_instance_id: str
    task_template_id: str
    employee_id: str
    status: TaskStatus
    document_ref: str
    start_date: datetime
    end_date: datetime | None = None
    rejection_reason: str | None = None


class TaskDocumentSubmitRequest(BaseModel):
    document_ref: str = PydanticField(min_length=1)


class TaskAcceptRequest(BaseModel):
    channel_ref: str | None = None


class TaskRejectRequest(BaseModel):
    reason: str = PydanticField(min_length=1)
    channel_ref: str | None = None


class ClientTaskItemRead(BaseModel):
    task: TaskInstanceRead
    task_name: str
    task_description: str | None = None
    difficulty: Difficulty
    estimated_duration_days: int


class ClientTasksRead(BaseModel):
    submitted: list[ClientTaskItemRead]
    outstanding: list[TaskTemplateRead]


class EmployeeTaskItemRead(BaseModel):
    task: TaskInstanceRead
    task_name: str
    task_description: str | None = None
    xp_base: int
    difficulty: Difficulty
    estimated_duration_days: int
    procedure_instance_id: str
    procedure_name: str
    time_left_days: float | None = None


class LevelRead(BaseModel):
    id: int
    name: str
    points_required: int | None
    description: str = ""


class LevelProgressionRead(BaseModel):
    current_level: LevelRead
    next_level: LevelRead
    is_max_level: bool
    current_xp: int


class RankingEntryRead(BaseModel):
    id: str
    username: str
    email: str
    role: str
    xp_total: int
    tasks_completed: int
    pending_tasks: int
    level: LevelRead


class EmployeeStatisticsRead(BaseModel):
    employee: EmployeeRead
    xp_total: int
    completed_tasks: int
    pending_tasks: int
    progression: LevelProgressionRead


class NotificationRead(ORMReadModel):
    id: str
    recipient_id: str
    message: str
    is_read: bool
    created_at: datetime
