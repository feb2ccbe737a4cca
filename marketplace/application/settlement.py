"""Payout ledger: one merchant leg and at most one courier leg per order."""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.domain.errors import NotFound, Conflict
from marketplace.domain.models import Order, DeliveryMission, Transaction, Restaurant
from marketplace.domain.status import Beneficiary, TransactionStatus, Role
from marketplace.infrastructure.settings_store import SettingsStore
from shared.core import get_logger
from .fees import merchant_commission

logger = get_logger(__name__)


def merchant_leg(settings: SettingsStore, order: Order) -> Transaction:
    commission = merchant_commission(settings, order.subtotal)
    return Transaction(
        order_id=order.id,
        beneficiary=Beneficiary.MERCHANT.value,
        amount=order.subtotal,
        commission=commission,
        net_amount=order.subtotal - commission,
        status=TransactionStatus.PENDING.value,
    )


def courier_leg(mission: DeliveryMission) -> Transaction:
    return Transaction(
        order_id=mission.order_id,
        beneficiary=Beneficiary.COURIER.value,
        amount=mission.earning,
        commission=0,
        net_amount=mission.earning,
        status=TransactionStatus.PENDING.value,
    )


class SettlementEngine:
    """Creates the payout transactions of an order, idempotently.

    Safe to call any number of times, concurrently included: the
    (order_id, beneficiary) unique constraint rejects a duplicate leg and
    that rejection is treated as "already settled".
    """

    def __init__(self, db: Session):
        self.db = db
        self.settings = SettingsStore(db)

    def _leg(self, order_id: int, beneficiary: Beneficiary) -> Optional[Transaction]:
        return self.db.execute(
            select(Transaction).where(Transaction.order_id == order_id, Transaction.beneficiary == beneficiary.value)
        ).scalar_one_or_none()

    def _insert(self, trx: Transaction) -> None:
        self.db.add(trx)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Order {trx.order_id} already settled for {trx.beneficiary}")
        else:
            logger.info(
                f"Created {trx.beneficiary} transaction for order {trx.order_id}",
                extra={'extra_fields': {'amount': trx.amount, 'commission': trx.commission}}
            )

    def ensure_settlement(self, order_id: int) -> list[Transaction]:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")

        if self._leg(order.id, Beneficiary.MERCHANT) is None:
            self._insert(merchant_leg(self.settings, order))

        mission = self.db.execute(
            select(DeliveryMission).where(DeliveryMission.order_id == order.id)
        ).scalar_one_or_none()
        if mission is not None and self._leg(order.id, Beneficiary.COURIER) is None:
            self._insert(courier_leg(mission))

        return list(self.db.execute(
            select(Transaction).where(Transaction.order_id == order.id).order_by(Transaction.id)
        ).scalars())


class TransactionService:
    def __init__(self, db: Session):
        self.db = db

    def list_for(self, user_id: int, role: str, beneficiary: Optional[str] = None,
                 status: Optional[str] = None) -> list[Transaction]:
        query = select(Transaction).order_by(Transaction.id.desc())
        if role == Role.COURIER.value:
            beneficiary = Beneficiary.COURIER.value
            query = query.join(DeliveryMission, DeliveryMission.order_id == Transaction.order_id).where(
                DeliveryMission.courier_user_id == user_id
            )
        elif role == Role.MERCHANT.value:
            beneficiary = Beneficiary.MERCHANT.value
            query = (
                query.join(Order, Order.id == Transaction.order_id)
                .join(Restaurant, Restaurant.id == Order.restaurant_id)
                .where(Restaurant.owner_user_id == user_id)
            )
        if beneficiary:
            query = query.where(Transaction.beneficiary == beneficiary)
        if status:
            query = query.where(Transaction.status == status)
        return list(self.db.execute(query).scalars())

    def mark_paid(self, transaction_id: int) -> Transaction:
        trx = self.db.get(Transaction, transaction_id)
        if trx is None:
            raise NotFound("Transaction not found")
        result = self.db.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.PENDING.value)
            .values(status=TransactionStatus.PAID.value)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict("Transaction is already paid")
        self.db.commit()
        self.db.refresh(trx)
        return trx
