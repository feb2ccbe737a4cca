from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.application.schemas import Actor, SettlementRead, TransactionRead
from marketplace.application.settlement import SettlementEngine, TransactionService
from marketplace.domain.status import Beneficiary, Role, TransactionStatus
from marketplace.infrastructure.db import get_db
from .auth import require_roles

router = APIRouter(prefix="/transactions", tags=["transactions"])

ADMIN_ROLES = (Role.ADMIN, Role.SUPERADMIN)


@router.get("/", response_model=list[TransactionRead])
def list_transactions(beneficiary: Optional[Beneficiary] = None, status: Optional[TransactionStatus] = None,
                      actor: Actor = Depends(require_roles(Role.MERCHANT, Role.COURIER, *ADMIN_ROLES)),
                      db: Session = Depends(get_db)):
    return TransactionService(db).list_for(
        actor.id, actor.role.value,
        beneficiary.value if beneficiary else None,
        status.value if status else None,
    )


@router.patch("/{transaction_id}/mark-paid", response_model=TransactionRead)
def mark_transaction_paid(transaction_id: int, actor: Actor = Depends(require_roles(*ADMIN_ROLES)),
                          db: Session = Depends(get_db)):
    return TransactionService(db).mark_paid(transaction_id)


@router.post("/settle/{order_id}", response_model=SettlementRead)
def settle_order(order_id: int, actor: Actor = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    """Re-run settlement for an order; a no-op when both legs already exist."""
    transactions = SettlementEngine(db).ensure_settlement(order_id)
    return SettlementRead(order_id=order_id, transactions=[TransactionRead.model_validate(t) for t in transactions])
