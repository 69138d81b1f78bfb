from __future__ import annotations

import threading
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from app.domain.errors import ConflictError, InvalidArgumentError, NotFoundError, UnavailableError
from app.domain.models import (
    ClientCreate,
    EmployeeCreate,
    EventEnvelope,
    EventRecord,
    ProcedureInstance,
    ProcedureTemplateCreate,
    RoleCreate,
    TaskInstance,
    TaskTemplateCreate,
)
from app.domain.state_machine import Difficulty, ProcedureStatus, TaskStatus
from app.infra import db
from app.infra.events import event_bus
from app.services.catalog_service import CatalogService
from app.services.gamification_service import GamificationService
from app.services.notification_service import EVENT_LEVEL_UP, EVENT_NEW_NOTIFICATION, EVENT_PROGRESS, NotificationService
from app.services.workflow_service import EmployeeTaskView, WorkflowService


class RecordingChannel:
    def __init__(self, *connected: str) -> None:
        self.connected = set(connected)
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def is_connected(self, channel_ref: str) -> bool:
        return channel_ref in self.connected

    def emit(self, channel_ref: str, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((channel_ref, event_type, payload))

    def event_types(self) -> list[str]:
        return [event_type for _ref, event_type, _payload in self.events]


class FailingGamification(GamificationService):
    def award_task_xp(self, *args: Any, **kwargs: Any) -> Any:
        raise RuntimeError("profile store unavailable")


@dataclass
class Seed:
    client_id: str
    employee_id: str
    role_id: str
    procedure_template_id: str
    task_template_ids: list[str]


@pytest.fixture()
def workflow_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    test_engine = db.build_engine(f"sqlite:///{tmp_path / 'workflow_test.db'}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def channel() -> RecordingChannel:
    return RecordingChannel("employee-chan", "client-chan")


@pytest.fixture()
def workflow(workflow_engine: Engine, channel: RecordingChannel) -> WorkflowService:
    return WorkflowService(NotificationService(channel))


def _seed(
    *,
    task_names: tuple[str, ...] = ("Identity check",),
    xp_base: int = 50,
    difficulty: Difficulty = Difficulty.MEDIUM,
) -> Seed:
    catalog = CatalogService()
    role = catalog.create_role(RoleCreate(name="Reviewer"))
    client = catalog.register_client(ClientCreate(username="lucia", email="lucia@example.com"))
    employee = catalog.onboard_employee(
        EmployeeCreate(username="mateo", email="mateo@example.com", role_id=role.id)
    )
    procedure = catalog.create_procedure_template(ProcedureTemplateCreate(name="Driving licence"))
    task_ids = [
        catalog.create_task_template(
            procedure.id,
            TaskTemplateCreate(
                name=name,
                xp_base=xp_base,
                required_role_id=role.id,
                estimated_duration_days=3,
                difficulty=difficulty,
            ),
        ).id
        for name in task_names
    ]
    return Seed(
        client_id=client.id,
        employee_id=employee.id,
        role_id=role.id,
        procedure_template_id=procedure.id,
        task_template_ids=task_ids,
    )


def _event_types(engine: Engine) -> list[str]:
    with Session(engine) as session:
        return [row.event_type for row in session.exec(select(EventRecord)).all()]


def test_start_twice_conflicts_until_cancelled(workflow: WorkflowService, workflow_engine: Engine) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    assert instance.status == ProcedureStatus.PENDING

    with pytest.raises(ConflictError):
        workflow.start_procedure(seed.procedure_template_id, seed.client_id)

    workflow.cancel_procedure(instance.id, seed.client_id)
    restarted = workflow.start_procedure(seed.procedure_template_id, seed.client_id)

    assert restarted.id != instance.id
    assert _event_types(workflow_engine).count("procedure.started") == 2
    assert "procedure.cancelled" in _event_types(workflow_engine)


def test_start_requires_known_client_and_template(workflow: WorkflowService) -> None:
    seed = _seed()
    with pytest.raises(NotFoundError):
        workflow.start_procedure(seed.procedure_template_id, "missing-client")
    with pytest.raises(NotFoundError):
        workflow.start_procedure("missing-template", seed.client_id)


def test_start_notifies_client_on_their_channel(workflow: WorkflowService, channel: RecordingChannel) -> None:
    seed = _seed()
    workflow.start_procedure(seed.procedure_template_id, seed.client_id, "client-chan")

    assert channel.events[0][0] == "client-chan"
    assert channel.events[0][1] == EVENT_NEW_NOTIFICATION
    assert "Driving licence" in channel.events[0][2]["message"]


def test_submit_assigns_employee_and_moves_procedure_in_progress(workflow: WorkflowService) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)

    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/id.pdf")

    assert task.status == TaskStatus.PENDING
    assert task.employee_id == seed.employee_id
    status = workflow.get_procedure_status(instance.id, seed.client_id)
    assert status.procedure.status == ProcedureStatus.IN_PROGRESS
    assert status.pending_tasks == 1
    assert status.total_tasks == 1
    inbox = NotificationService(RecordingChannel()).list_notifications(seed.employee_id)
    assert inbox[0].message == 'You have been assigned the task "Identity check"'


def test_duplicate_submission_conflicts(workflow: WorkflowService) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    with pytest.raises(ConflictError):
        workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/b.pdf")

    assert len(workflow.list_procedure_tasks(instance.id)) == 1


def test_partial_index_rejects_second_active_slot(workflow: WorkflowService, workflow_engine: Engine) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    with Session(workflow_engine) as session:
        session.add(
            TaskInstance(
                procedure_instance_id=instance.id,
                task_template_id=task.task_template_id,
                employee_id=seed.employee_id,
                document_ref="docs/raced.pdf",
            )
        )
        with pytest.raises(Exception) as excinfo:
            session.commit()

    assert "UNIQUE" in str(excinfo.value).upper()


def test_resubmission_is_allowed_after_rejection(workflow: WorkflowService) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    first = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")
    workflow.reject_task(first.id, seed.employee_id, "blurry scan")

    second = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/b.pdf")

    assert second.id != first.id
    submitted = workflow.list_client_tasks(instance.id, seed.client_id).submitted
    assert [item.task.id for item in submitted] == [second.id]


def test_submit_validates_ownership_template_and_document(workflow: WorkflowService) -> None:
    seed = _seed()
    other_client = CatalogService().register_client(ClientCreate(username="pablo", email="pablo@example.com"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    stray = CatalogService().create_procedure_template(ProcedureTemplateCreate(name="Passport"))
    stray_task = CatalogService().create_task_template(
        stray.id,
        TaskTemplateCreate(
            name="Photo",
            xp_base=10,
            required_role_id=seed.role_id,
            estimated_duration_days=1,
            difficulty=Difficulty.EASY,
        ),
    )

    with pytest.raises(NotFoundError):
        workflow.submit_task_document(instance.id, seed.task_template_ids[0], other_client.id, "docs/a.pdf")
    with pytest.raises(NotFoundError):
        workflow.submit_task_document(instance.id, stray_task.id, seed.client_id, "docs/a.pdf")
    with pytest.raises(InvalidArgumentError):
        workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "   ")


def test_submit_without_eligible_employee_is_unavailable(workflow: WorkflowService) -> None:
    seed = _seed()
    catalog = CatalogService()
    empty_role = catalog.create_role(RoleCreate(name="Notary"))
    notarise = catalog.create_task_template(
        seed.procedure_template_id,
        TaskTemplateCreate(
            name="Notarise",
            xp_base=10,
            required_role_id=empty_role.id,
            estimated_duration_days=2,
            difficulty=Difficulty.HARD,
        ),
    )
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)

    with pytest.raises(UnavailableError):
        workflow.submit_task_document(instance.id, notarise.id, seed.client_id, "docs/a.pdf")

    assert workflow.list_procedure_tasks(instance.id) == []
    assert workflow.get_procedure_status(instance.id).procedure.status == ProcedureStatus.PENDING


def test_accepting_every_task_completes_the_procedure(
    workflow: WorkflowService,
    workflow_engine: Engine,
) -> None:
    seed = _seed(task_names=("Identity check", "Medical exam"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    first = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")
    second = workflow.submit_task_document(instance.id, seed.task_template_ids[1], seed.client_id, "docs/b.pdf")

    workflow.accept_task(first.id, seed.employee_id)
    midway = workflow.get_procedure_status(instance.id)
    assert midway.procedure.status == ProcedureStatus.IN_PROGRESS
    assert midway.procedure.end_date is None

    accepted = workflow.accept_task(second.id, seed.employee_id)

    assert accepted.status == TaskStatus.COMPLETED
    assert accepted.end_date is not None
    final = workflow.get_procedure_status(instance.id)
    assert final.procedure.status == ProcedureStatus.COMPLETED
    assert final.procedure.end_date is not None
    assert final.completed_tasks == 2
    assert "procedure.completed" in _event_types(workflow_engine)
    client_inbox = [item.message for item in NotificationService(RecordingChannel()).list_notifications(seed.client_id)]
    assert 'The procedure "Driving licence" has been completed' in client_inbox

    with pytest.raises(ConflictError):
        workflow.cancel_procedure(instance.id, seed.client_id)


def test_rejecting_the_last_task_leaves_procedure_in_progress(workflow: WorkflowService) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    rejected = workflow.reject_task(task.id, seed.employee_id, "expired document")

    assert rejected.status == TaskStatus.REJECTED
    assert rejected.rejection_reason == "expired document"
    status = workflow.get_procedure_status(instance.id)
    assert status.procedure.status == ProcedureStatus.IN_PROGRESS
    assert status.procedure.end_date is None
    assert status.rejected_tasks == 1
    client_inbox = NotificationService(RecordingChannel()).list_notifications(seed.client_id)
    assert any("expired document" in item.message for item in client_inbox)


def test_resolution_preconditions(workflow: WorkflowService) -> None:
    seed = _seed()
    colleague = CatalogService().onboard_employee(
        EmployeeCreate(username="nora", email="nora@example.com", role_id=seed.role_id)
    )
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")
    assignee = task.employee_id
    outsider = colleague.id if assignee != colleague.id else seed.employee_id

    with pytest.raises(NotFoundError):
        workflow.accept_task(task.id, outsider)
    with pytest.raises(NotFoundError):
        workflow.accept_task("missing-task", assignee)
    with pytest.raises(InvalidArgumentError):
        workflow.reject_task(task.id, assignee, "  ")

    workflow.accept_task(task.id, assignee)

    with pytest.raises(ConflictError):
        workflow.accept_task(task.id, assignee)
    with pytest.raises(ConflictError):
        workflow.reject_task(task.id, assignee, "too late")


def test_accept_awards_xp_and_pushes_progress(workflow: WorkflowService, channel: RecordingChannel) -> None:
    seed = _seed(xp_base=50)
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    workflow.accept_task(task.id, seed.employee_id, "employee-chan")

    profile = GamificationService(NotificationService(channel)).get_profile(seed.employee_id)
    assert profile.xp_total == 60
    assert profile.completed_tasks_count == 1
    assert channel.event_types() == [EVENT_NEW_NOTIFICATION, EVENT_PROGRESS]
    progress = channel.events[-1][2]
    assert progress["current_xp"] == 60
    assert progress["current_level"]["name"] == "Bronce"
    assert progress["next_level"]["name"] == "Plata"


def test_crossing_a_threshold_pushes_level_up(workflow: WorkflowService, channel: RecordingChannel) -> None:
    seed = _seed(xp_base=100, difficulty=Difficulty.HARD)
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    workflow.accept_task(task.id, seed.employee_id, "employee-chan")

    assert channel.event_types() == [EVENT_NEW_NOTIFICATION, EVENT_NEW_NOTIFICATION, EVENT_LEVEL_UP]
    level_up = channel.events[-1][2]
    assert level_up["previous_level"]["name"] == "Bronce"
    assert level_up["next_level"]["name"] == "Plata"
    stats = GamificationService().get_employee_statistics(seed.employee_id)
    assert stats.xp_total == 180
    assert stats.progression.current_level.name == "Plata"


def test_rejection_awards_xp_without_counting_completion(workflow: WorkflowService) -> None:
    seed = _seed(xp_base=50)
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    workflow.reject_task(task.id, seed.employee_id, "wrong form")

    profile = GamificationService().get_profile(seed.employee_id)
    assert profile.xp_total == 60
    assert profile.completed_tasks_count == 0


def test_concurrent_accepts_resolve_exactly_once(workflow: WorkflowService) -> None:
    seed = _seed(xp_base=50)
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")
    barrier = threading.Barrier(2)

    def attempt() -> str:
        barrier.wait()
        try:
            workflow.accept_task(task.id, seed.employee_id)
        except ConflictError:
            return "conflict"
        return "accepted"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = sorted(pool.map(lambda _index: attempt(), range(2)))

    assert outcomes == ["accepted", "conflict"]
    profile = GamificationService().get_profile(seed.employee_id)
    assert profile.xp_total == 60
    assert profile.completed_tasks_count == 1


def test_concurrent_submissions_claim_the_slot_once(
    workflow: WorkflowService,
    workflow_engine: Engine,
) -> None:
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    slot = seed.task_template_ids[0]
    barrier = threading.Barrier(4)
    announced: list[str] = []

    def on_submitted(event: EventEnvelope) -> None:
        announced.append(event.payload["task_instance_id"])

    def attempt(index: int) -> str:
        barrier.wait()
        try:
            workflow.submit_task_document(instance.id, slot, seed.client_id, f"docs/{index}.pdf")
        except ConflictError:
            return "conflict"
        return "submitted"

    event_bus.subscribe("task.submitted", on_submitted)
    try:
        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = sorted(pool.map(attempt, range(4)))
    finally:
        event_bus.unsubscribe("task.submitted", on_submitted)

    assert outcomes == ["conflict", "conflict", "conflict", "submitted"]
    with Session(workflow_engine) as session:
        tasks = session.exec(select(TaskInstance).where(TaskInstance.procedure_instance_id == instance.id)).all()
    assert len(tasks) == 1
    assert announced == [tasks[0].id]
    assert _event_types(workflow_engine).count("task.submitted") == 1


def test_concurrent_accepts_of_the_last_tasks_complete_the_procedure(
    workflow: WorkflowService,
    workflow_engine: Engine,
) -> None:
    seed = _seed(task_names=("Identity check", "Medical exam"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    tasks = [
        workflow.submit_task_document(instance.id, template_id, seed.client_id, f"docs/{index}.pdf")
        for index, template_id in enumerate(seed.task_template_ids)
    ]
    barrier = threading.Barrier(2)

    def accept(task_id: str) -> TaskStatus:
        barrier.wait()
        return workflow.accept_task(task_id, seed.employee_id).status

    with ThreadPoolExecutor(max_workers=2) as pool:
        statuses = list(pool.map(accept, [task.id for task in tasks]))

    assert statuses == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
    procedure = workflow.get_procedure_status(instance.id).procedure
    assert procedure.status == ProcedureStatus.COMPLETED
    assert procedure.end_date is not None
    assert _event_types(workflow_engine).count("procedure.completed") == 1
    assert GamificationService().get_profile(seed.employee_id).completed_tasks_count == 2


def test_side_effect_failure_keeps_committed_transition(
    workflow_engine: Engine,
    channel: RecordingChannel,
    caplog: pytest.LogCaptureFixture,
) -> None:
    notifications = NotificationService(channel)
    workflow = WorkflowService(notifications, gamification=FailingGamification(notifications))
    seed = _seed()
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    task = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    accepted = workflow.accept_task(task.id, seed.employee_id)

    assert accepted.status == TaskStatus.COMPLETED
    assert workflow.get_procedure_status(instance.id).procedure.status == ProcedureStatus.COMPLETED
    assert "workflow.side_effect_failed" in _event_types(workflow_engine)
    assert "award xp for accepted task failed" in caplog.text


def test_cancel_removes_instance_and_tasks(workflow: WorkflowService, workflow_engine: Engine) -> None:
    seed = _seed(task_names=("Identity check", "Medical exam"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    with pytest.raises(NotFoundError):
        workflow.cancel_procedure(instance.id, "someone-else")

    workflow.cancel_procedure(instance.id, seed.client_id)

    with Session(workflow_engine) as session:
        assert session.get(ProcedureInstance, instance.id) is None
        assert session.exec(select(TaskInstance)).all() == []
    assert workflow.list_employee_tasks(seed.employee_id) == []


def test_client_task_views(workflow: WorkflowService) -> None:
    seed = _seed(task_names=("Identity check", "Medical exam", "Road test"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")

    views = workflow.list_client_tasks(instance.id, seed.client_id)

    assert [item.task_name for item in views.submitted] == ["Identity check"]
    assert {item.name for item in views.outstanding} == {"Medical exam", "Road test"}
    assert [item.id for item in workflow.list_client_procedures(seed.client_id)] == [instance.id]


def test_employee_task_views(workflow: WorkflowService) -> None:
    seed = _seed(task_names=("Identity check", "Medical exam"))
    instance = workflow.start_procedure(seed.procedure_template_id, seed.client_id)
    first = workflow.submit_task_document(instance.id, seed.task_template_ids[0], seed.client_id, "docs/a.pdf")
    second = workflow.submit_task_document(instance.id, seed.task_template_ids[1], seed.client_id, "docs/b.pdf")

    pending = workflow.list_employee_tasks(seed.employee_id, EmployeeTaskView.PENDING)
    assert {item.task.id for item in pending} == {first.id, second.id}
    assert all(item.time_left_days is not None and 2.9 <= item.time_left_days <= 3.0 for item in pending)
    assert [item.time_left_days for item in pending] == sorted(item.time_left_days for item in pending)
    assert pending[0].procedure_name == "Driving licence"

    workflow.accept_task(first.id, seed.employee_id)
    workflow.reject_task(second.id, seed.employee_id, "illegible")

    assert workflow.list_employee_tasks(seed.employee_id, EmployeeTaskView.PENDING) == []
    resolved = workflow.list_employee_tasks(seed.employee_id, EmployeeTaskView.COMPLETED)
    assert [item.task.id for item in resolved] == [second.id, first.id]
    assert all(item.time_left_days is None for item in resolved)


def test_ranking_orders_by_xp_and_skips_administrators(workflow: WorkflowService) -> None:
    seed = _seed(xp_base=50)
    catalog = CatalogService()
    admin_role = catalog.create_role(RoleCreate(name="Administrador"))
    admin = catalog.onboard_employee(
        EmployeeCreate(username="root", email="root@example.com", role_id=admin_role.id)
    )
    rookie = catalog.onboard_employee(
        EmployeeCreate(username="rookie", email="rookie@example.com", role_id=seed.role_id)
    )
    gamification = GamificationService()
    gamification.apply_award(admin.id, 900, completed=True)
    gamification.apply_award(seed.employee_id, 120, completed=True)

    ranking = gamification.get_ranking()

    assert [entry.id for entry in ranking] == [seed.employee_id, rookie.id]
    assert ranking[0].level.name == "Plata"
    assert ranking[0].role == "Reviewer"
    assert ranking[1].xp_total == 0
