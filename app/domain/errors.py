from __future__ import annotations


class WorkflowError(Exception):
    pass


class NotFoundError(WorkflowError):
    pass


class ConflictError(WorkflowError):
    pass


class InvalidArgumentError(WorkflowError):
    pass


class UnavailableError(NotFoundError):
    """No employee currently holds the role a task template requires."""
