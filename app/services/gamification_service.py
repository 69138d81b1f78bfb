from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sqlalchemy import func, update
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, InvalidArgumentError, NotFoundError
from app.domain.levels import LEVELS, Level, Progression, level_for, progression
from app.domain.models import (
    Employee,
    EmployeeRead,
    EmployeeStatisticsRead,
    GamificationProfile,
    LevelProgressionRead,
    LevelRead,
    RankingEntryRead,
    Role,
    TaskInstance,
    TaskTemplate,
    now_utc,
)
from app.domain.state_machine import TaskStatus
from app.domain.xp import compute_xp
from app.infra.db import get_engine
from app.services.notification_service import EVENT_LEVEL_UP, EVENT_PROGRESS, NotificationService

logger = logging.getLogger(__name__)

XP_UPDATE_MAX_RETRIES = int(os.getenv("XP_UPDATE_MAX_RETRIES", "5"))
RANKING_EXCLUDED_ROLE = os.getenv("RANKING_EXCLUDED_ROLE", "Administrador")


@dataclass
class XPAward:
    employee_id: str
    awarded_xp: int
    xp_before: int
    xp_after: int
    level_before: Level
    level_after: Level

    @property
    def leveled_up(self) -> bool:
        return self.level_before.id != self.level_after.id


def level_read(level: Level) -> LevelRead:
    return LevelRead(
        id=level.id,
        name=level.name,
        points_required=level.points_required,
        description=level.description,
    )


def progression_read(data: Progression) -> LevelProgressionRead:
    return LevelProgressionRead(
        current_level=level_read(data.current_level),
        next_level=level_read(data.next_level),
        is_max_level=data.next_level.is_max_marker,
        current_xp=data.current_xp,
    )


class GamificationService:
    def __init__(self, notifications: NotificationService | None = None) -> None:
        self._notifications = notifications if notifications is not None else NotificationService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_profile(self, session: Session, employee_id: str) -> GamificationProfile:
        profile = session.get(GamificationProfile, employee_id)
        if profile is None:
            raise NotFoundError("gamification profile not found")
        return profile

    def get_profile(self, employee_id: str) -> GamificationProfile:
        with self._session() as session:
            return self._get_profile(session, employee_id)

    def apply_award(self, employee_id: str, awarded_xp: int, *, completed: bool) -> tuple[int, int]:
        if awarded_xp < 0:
            raise InvalidArgumentError("awarded xp must not be negative")
        for attempt in range(1, XP_UPDATE_MAX_RETRIES + 1):
            with self._session() as session:
                profile = self._get_profile(session, employee_id)
                seen_version = profile.version
                xp_before = profile.xp_total
                xp_after = xp_before + awarded_xp
                completed_count = profile.completed_tasks_count + (1 if completed else 0)
                result = session.execute(
                    update(GamificationProfile)
                    .where(col(GamificationProfile.employee_id) == employee_id)
                    .where(col(GamificationProfile.version) == seen_version)
                    .values(
                        xp_total=xp_after,
                        completed_tasks_count=completed_count,
                        version=seen_version + 1,
                        updated_at=now_utc(),
                    )
                )
                if int(getattr(result, "rowcount", 0) or 0) == 1:
                    session.commit()
                    return xp_before, xp_after
                session.rollback()
            logger.info("gamification profile %s changed underneath award, attempt %d", employee_id, attempt)
        raise ConflictError("gamification profile is being updated concurrently")

    def award_task_xp(
        self,
        task: TaskInstance,
        template: TaskTemplate,
        *,
        accepted: bool,
        channel_ref: str | None = None,
    ) -> XPAward:
        if task.end_date is None:
            raise InvalidArgumentError("task has not been resolved")
        awarded = compute_xp(
            template.xp_base,
            template.estimated_duration_days,
            template.difficulty,
            task.start_date,
            task.end_date,
        )
        xp_before, xp_after = self.apply_award(task.employee_id, awarded, completed=accepted)
        award = XPAward(
            employee_id=task.employee_id,
            awarded_xp=awarded,
            xp_before=xp_before,
            xp_after=xp_after,
            level_before=level_for(xp_before),
            level_after=level_for(xp_after),
        )
        logger.info(
            "awarded %d xp to employee %s for task %s (%d -> %d)",
            awarded,
            task.employee_id,
            task.id,
            xp_before,
            xp_after,
        )
        self._notify_award(award, template.name, accepted=accepted, channel_ref=channel_ref)
        return award

    def _notify_award(self, award: XPAward, task_name: str, *, accepted: bool, channel_ref: str | None) -> None:
        verb = "accepted" if accepted else "rejected"
        self._notifications.notify(
            award.employee_id,
            f'You {verb} the task "{task_name}" and earned {award.awarded_xp} XP. '
            f"Your total XP is {award.xp_after}.",
            channel_ref,
        )
        if award.leveled_up:
            self._notifications.notify(
                award.employee_id,
                f"Congratulations! You reached level {award.level_after.name} "
                f"({award.level_after.points_required} XP)",
                channel_ref,
            )
            self._notifications.push(
                channel_ref,
                EVENT_LEVEL_UP,
                {
                    "previous_level": level_read(award.level_before).model_dump(),
                    "next_level": level_read(award.level_after).model_dump(),
                },
            )
            return
        self._notifications.push(channel_ref, EVENT_PROGRESS, progression(award.xp_after).as_payload())

    def _task_counts(self, session: Session, status: TaskStatus) -> dict[str, int]:
        rows = session.exec(
            select(TaskInstance.employee_id, func.count())
            .where(TaskInstance.status == status)
            .group_by(TaskInstance.employee_id)
        ).all()
        return {employee_id: int(total) for employee_id, total in rows}

    def get_ranking(self) -> list[RankingEntryRead]:
        with self._session() as session:
            rows = session.exec(
                select(Employee, Role, GamificationProfile)
                .join(Role, col(Role.id) == col(Employee.role_id))
                .join(GamificationProfile, col(GamificationProfile.employee_id) == col(Employee.id))
                .where(Role.name != RANKING_EXCLUDED_ROLE)
                .order_by(col(GamificationProfile.xp_total).desc(), col(Employee.id))
            ).all()
            pending = self._task_counts(session, TaskStatus.PENDING)
        return [
            RankingEntryRead(
                id=employee.id,
                username=employee.username,
                email=employee.email,
                role=role.name,
                xp_total=profile.xp_total,
                tasks_completed=profile.completed_tasks_count,
                pending_tasks=pending.get(employee.id, 0),
                level=level_read(level_for(profile.xp_total)),
            )
            for employee, role, profile in rows
        ]

    def get_level_progression(self, employee_id: str) -> LevelProgressionRead:
        profile = self.get_profile(employee_id)
        return progression_read(progression(profile.xp_total))

    def get_employee_statistics(self, employee_id: str) -> EmployeeStatisticsRead:
        with self._session() as session:
            profile = self._get_profile(session, employee_id)
            employee = session.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("employee not found")
            pending = session.exec(
                select(func.count())
                .select_from(TaskInstance)
                .where(TaskInstance.employee_id == employee_id)
                .where(TaskInstance.status == TaskStatus.PENDING)
            ).one()
        return EmployeeStatisticsRead(
            employee=EmployeeRead.model_validate(employee),
            xp_total=profile.xp_total,
            completed_tasks=profile.completed_tasks_count,
            pending_tasks=int(pending),
            progression=progression_read(progression(profile.xp_total)),
        )

    def list_levels(self) -> list[LevelRead]:
        return [level_read(level) for level in LEVELS]
