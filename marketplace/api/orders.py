from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.application.mission_service import MissionService
from marketplace.application.order_service import OrderService
from marketplace.application.payment_service import PaymentService
from marketplace.application.schemas import Actor, MissionRead, OrderCreate, OrderRead, PaymentRead, StatusUpdate
from marketplace.application.side_effects import SideEffects
from marketplace.domain.errors import Forbidden
from marketplace.domain.status import OrderStatus, Role
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.payment_gateways import CardGateway
from .auth import current_user, require_roles
from .deps import get_card_gateway, get_side_effects

router = APIRouter(prefix="/orders", tags=["orders"])

DISPATCH_ROLES = (Role.ADMIN, Role.SUPERADMIN, Role.DISPATCHER)
STAFF_ROLES = (Role.MERCHANT,) + DISPATCH_ROLES


@router.post("/", response_model=OrderRead, status_code=201)
def create_order(payload: OrderCreate, actor: Actor = Depends(current_user), db: Session = Depends(get_db),
                 effects: SideEffects = Depends(get_side_effects),
                 card: CardGateway = Depends(get_card_gateway)):
    if actor.role == Role.CLIENT and payload.customer_id != actor.id:
        raise Forbidden("You can only place orders for yourself")
    order = OrderService(db, effects).create(payload)
    if payload.payment_intent_id:
        PaymentService(db, effects, card=card).attach_card_intent(order, payload.payment_intent_id)
    return order


@router.get("/me", response_model=list[OrderRead])
def my_orders(actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    return OrderService(db).list_for_customer(actor.id)


@router.get("/", response_model=list[OrderRead])
def list_orders(status: Optional[OrderStatus] = None, actor: Actor = Depends(require_roles(*STAFF_ROLES)),
                db: Session = Depends(get_db)):
    """Back-office order list; merchants only get their own restaurants' confirmed orders."""
    return OrderService(db).list_for_staff(actor, status)


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    return OrderService(db).get_for(order_id, actor)


@router.get("/{order_id}/payment", response_model=PaymentRead)
def get_order_payment(order_id: int, actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    OrderService(db).get_for(order_id, actor)
    return PaymentService(db).latest_for_order(order_id)


@router.post("/{order_id}/confirm", response_model=OrderRead)
def confirm_order(order_id: int, actor: Actor = Depends(require_roles(*DISPATCH_ROLES)),
                  db: Session = Depends(get_db), effects: SideEffects = Depends(get_side_effects)):
    return OrderService(db, effects).confirm(order_id)


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(order_id: int, payload: StatusUpdate,
                        actor: Actor = Depends(require_roles(*STAFF_ROLES, Role.COURIER)),
                        db: Session = Depends(get_db), effects: SideEffects = Depends(get_side_effects)):
    return OrderService(db, effects).update_status(order_id, payload.status, actor)


@router.post("/{order_id}/assign-mission", response_model=MissionRead, status_code=201)
def assign_mission(order_id: int, response: Response, actor: Actor = Depends(require_roles(*STAFF_ROLES)),
                   db: Session = Depends(get_db), effects: SideEffects = Depends(get_side_effects)):
    OrderService(db).get_for(order_id, actor)
    mission, created = MissionService(db, effects).assign(order_id)
    if not created:
        response.status_code = 200
    return mission
