from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.application.mission_service import MissionService
from marketplace.application.schemas import Actor, MissionRead, MissionStatusUpdate
from marketplace.application.side_effects import SideEffects
from marketplace.domain.status import Role
from marketplace.infrastructure.db import get_db
from .auth import require_roles
from .deps import get_side_effects

router = APIRouter(prefix="/missions", tags=["missions"])


@router.get("/", response_model=list[MissionRead])
def list_missions(status: str = "available", actor: Actor = Depends(require_roles(Role.COURIER, Role.ADMIN)),
                  db: Session = Depends(get_db)):
    """Couriers filter with available, active or delivered; admins see every mission."""
    return MissionService(db).list(actor, status)


@router.post("/{mission_id}/accept", response_model=MissionRead)
def accept_mission(mission_id: int, actor: Actor = Depends(require_roles(Role.COURIER)),
                   db: Session = Depends(get_db), effects: SideEffects = Depends(get_side_effects)):
    return MissionService(db, effects).accept(mission_id, actor)


@router.patch("/{mission_id}/status", response_model=MissionRead)
def update_mission_status(mission_id: int, payload: MissionStatusUpdate,
                          actor: Actor = Depends(require_roles(Role.COURIER)),
                          db: Session = Depends(get_db), effects: SideEffects = Depends(get_side_effects)):
    return MissionService(db, effects).update_status(mission_id, payload.status, actor)
