from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col

from app.domain.errors import NotFoundError, UnavailableError
from app.domain.models import EmployeeCreate, GamificationProfile, RoleCreate
from app.infra import db
from app.services.assignment_service import AssignmentService
from app.services.catalog_service import CatalogService
from app.services.gamification_service import GamificationService


@pytest.fixture()
def assignment_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    test_engine = db.build_engine(f"sqlite:///{tmp_path / 'assignment_test.db'}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


def _onboard(catalog: CatalogService, role_id: str, name: str) -> str:
    employee = catalog.onboard_employee(
        EmployeeCreate(username=name, email=f"{name}@example.com", role_id=role_id)
    )
    return employee.id


def test_selects_the_employee_with_least_xp(assignment_engine: Engine) -> None:
    catalog = CatalogService()
    gamification = GamificationService()
    selector = AssignmentService()
    role = catalog.create_role(RoleCreate(name="Reviewer"))
    employee_a = _onboard(catalog, role.id, "ana")
    employee_b = _onboard(catalog, role.id, "bruno")
    gamification.apply_award(employee_a, 50, completed=True)
    gamification.apply_award(employee_b, 10, completed=True)

    with Session(assignment_engine) as session:
        assert selector.select_employee(session, role.id) == employee_b

    gamification.apply_award(employee_b, 100, completed=True)

    with Session(assignment_engine) as session:
        assert selector.select_employee(session, role.id) == employee_a


def test_ties_go_to_the_smallest_employee_id(assignment_engine: Engine) -> None:
    catalog = CatalogService()
    role = catalog.create_role(RoleCreate(name="Reviewer"))
    ids = [_onboard(catalog, role.id, name) for name in ("carla", "dario", "elena")]

    with Session(assignment_engine) as session:
        assert AssignmentService().select_employee(session, role.id) == min(ids)


def test_other_roles_are_never_candidates(assignment_engine: Engine) -> None:
    catalog = CatalogService()
    reviewer = catalog.create_role(RoleCreate(name="Reviewer"))
    auditor = catalog.create_role(RoleCreate(name="Auditor"))
    _onboard(catalog, auditor.id, "fede")

    with Session(assignment_engine) as session, pytest.raises(UnavailableError) as excinfo:
        AssignmentService().select_employee(session, reviewer.id)

    assert str(excinfo.value) == "no eligible employee"
    assert isinstance(excinfo.value, NotFoundError)
    assert catalog.employees_with_role(reviewer.id) == []


def test_profile_counters_cannot_go_negative(assignment_engine: Engine) -> None:
    catalog = CatalogService()
    role = catalog.create_role(RoleCreate(name="Reviewer"))
    employee_id = _onboard(catalog, role.id, "gala")

    for column in ("xp_total", "completed_tasks_count"):
        with Session(assignment_engine) as session, pytest.raises(IntegrityError):
            session.execute(
                update(GamificationProfile)
                .where(col(GamificationProfile.employee_id) == employee_id)
                .values({column: -1})
            )
            session.commit()

    profile = GamificationService().get_profile(employee_id)
    assert profile.xp_total == 0
    assert profile.completed_tasks_count == 0
