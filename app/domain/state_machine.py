from __future__ import annotations

from enum import StrEnum


class ProcedureStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


PROCEDURE_ALLOWED_TRANSITIONS: dict[ProcedureStatus, set[ProcedureStatus]] = {
    ProcedureStatus.PENDING: {ProcedureStatus.IN_PROGRESS, ProcedureStatus.COMPLETED},
    ProcedureStatus.IN_PROGRESS: {ProcedureStatus.IN_PROGRESS, ProcedureStatus.COMPLETED},
    ProcedureStatus.COMPLETED: set(),
}


def can_procedure_transition(source: ProcedureStatus, target: ProcedureStatus) -> bool:
    return target in PROCEDURE_ALLOWED_TRANSITIONS.get(source, set())


def is_cancellable(status: ProcedureStatus) -> bool:
    return status in {ProcedureStatus.PENDING, ProcedureStatus.IN_PROGRESS}


class TaskStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


TASK_ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.COMPLETED, TaskStatus.REJECTED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.REJECTED: set(),
}

# Slots held by these states block a new submission for the same task template.
TASK_SLOT_HOLDING_STATES: frozenset[TaskStatus] = frozenset({TaskStatus.PENDING, TaskStatus.COMPLETED})


def can_task_transition(source: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_ALLOWED_TRANSITIONS.get(source, set())


def derive_procedure_status(total_templates: int, completed_templates: int, has_tasks: bool) -> ProcedureStatus:
    if total_templates > 0 and completed_templates >= total_templates:
        return ProcedureStatus.COMPLETED
    if has_tasks:
        return ProcedureStatus.IN_PROGRESS
    return ProcedureStatus.PENDING


class Difficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
