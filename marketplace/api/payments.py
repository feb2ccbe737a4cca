from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from typing import Optional

from marketplace.application.payment_service import PaymentService
from marketplace.application.schemas import (
    Actor, CartIntentCreate, CartIntentRead, ManualPaymentCallback, MobileInitiate, MobileInitiateRead,
    MobileStatusRead, PaymentIntentCreate, PaymentIntentRead, PaymentRead,
)
from marketplace.application.side_effects import SideEffects
from marketplace.domain.errors import Forbidden
from marketplace.domain.status import Role
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.payment_gateways import CardGateway, MobileMoneyGateway
from shared.core import get_logger
from .auth import current_user, optional_user, require_roles
from .deps import get_card_gateway, get_mobile_gateway, get_side_effects

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/intent", response_model=PaymentIntentRead, status_code=201)
def create_payment_intent(payload: PaymentIntentCreate, actor: Actor = Depends(current_user),
                          db: Session = Depends(get_db), card: CardGateway = Depends(get_card_gateway)):
    return PaymentService(db, card=card).create_intent(payload.order_id, payload.method)


@router.post("/cart-intent", response_model=CartIntentRead, status_code=201)
def create_cart_intent(payload: CartIntentCreate, actor: Optional[Actor] = Depends(optional_user),
                       db: Session = Depends(get_db), card: CardGateway = Depends(get_card_gateway)):
    return PaymentService(db, card=card).cart_intent(payload, actor.id if actor else None)


@router.post("/webhook/card")
async def card_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                       card: CardGateway = Depends(get_card_gateway), db: Session = Depends(get_db)):
    # Raw body is needed for the signature check
    payload = await request.body()
    event = card.parse_webhook(payload, stripe_signature)
    return await run_in_threadpool(PaymentService(db, card=card).acknowledge_card_event, event)


@router.post("/webhook")
def manual_payment_callback(payload: ManualPaymentCallback, actor: Actor = Depends(
        require_roles(Role.ADMIN, Role.SUPERADMIN, Role.DISPATCHER)), db: Session = Depends(get_db)):
    payment = PaymentService(db).manual_callback(payload.order_code, payload.status)
    return {"ok": True, "payment": PaymentRead.model_validate(payment)}


@router.post("/mobile/initiate", response_model=MobileInitiateRead, status_code=201)
def initiate_mobile_payment(payload: MobileInitiate, actor: Actor = Depends(current_user),
                            db: Session = Depends(get_db), mobile: MobileMoneyGateway = Depends(get_mobile_gateway)):
    if actor.role == Role.CLIENT and payload.order.customer_id != actor.id:
        raise Forbidden("You can only place orders for yourself")
    return PaymentService(db, mobile=mobile).initiate_mobile(payload)


@router.post("/mobile/webhook")
async def mobile_webhook(request: Request, db: Session = Depends(get_db),
                         effects: SideEffects = Depends(get_side_effects)):
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Mobile money callback with a non-JSON body")
        return {"received": True, "note": "invalid body"}
    return await run_in_threadpool(PaymentService(db, effects).handle_mobile_callback, body)


@router.get("/mobile/status", response_model=MobileStatusRead)
def mobile_payment_status(order_number: str = "", db: Session = Depends(get_db)):
    return PaymentService(db).mobile_status(order_number)
