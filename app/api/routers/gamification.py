from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from app.api.deps import get_current_claims, handle_workflow_error, require_perm
from app.domain.errors import WorkflowError
from app.domain.models import EmployeeStatisticsRead, LevelProgressionRead, LevelRead, RankingEntryRead
from app.domain.permissions import PERM_GAMIFICATION_READ
from app.services.gamification_service import GamificationService

router = APIRouter()


def get_gamification_service() -> GamificationService:
    return GamificationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[GamificationService, Depends(get_gamification_service)]


@router.get(
    "/ranking",
    response_model=list[RankingEntryRead],
    dependencies=[Depends(require_perm(PERM_GAMIFICATION_READ))],
)
def get_ranking(service: Service) -> list[RankingEntryRead]:
    return service.get_ranking()


@router.get(
    "/levels",
    response_model=list[LevelRead],
    dependencies=[Depends(require_perm(PERM_GAMIFICATION_READ))],
)
def list_levels(service: Service) -> list[LevelRead]:
    return service.list_levels()


@router.get(
    "/me/progression",
    response_model=LevelProgressionRead,
    dependencies=[Depends(require_perm(PERM_GAMIFICATION_READ))],
)
def get_my_progression(claims: Claims, service: Service) -> LevelProgressionRead:
    try:
        return service.get_level_progression(claims["sub"])
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise


@router.get(
    "/employees/{employee_id}/statistics",
    response_model=EmployeeStatisticsRead,
    dependencies=[Depends(require_perm(PERM_GAMIFICATION_READ))],
)
def get_employee_statistics(employee_id: str, service: Service) -> EmployeeStatisticsRead:
    try:
        return service.get_employee_statistics(employee_id)
    except WorkflowError as exc:
        handle_workflow_error(exc)
        raise
