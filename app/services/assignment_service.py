from __future__ import annotations

from sqlmodel import Session, col, select

from app.domain.errors import UnavailableError
from app.domain.models import Employee, GamificationProfile


class AssignmentService:
    def ranked_candidates(self, session: Session, role_id: str) -> list[GamificationProfile]:
        # Profile rows stay locked until the caller commits the new task.
        statement = (
            select(GamificationProfile)
            .join(Employee, col(Employee.id) == col(GamificationProfile.employee_id))
            .where(Employee.role_id == role_id)
            .order_by(col(GamificationProfile.xp_total), col(GamificationProfile.employee_id))
            .with_for_update()
        )
        return list(session.exec(statement).all())

    def select_employee(self, session: Session, role_id: str) -> str:
        candidates = self.ranked_candidates(session, role_id)
        if not candidates:
            raise UnavailableError("no eligible employee")
        return candidates[0].employee_id
