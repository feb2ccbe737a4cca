"""Payment records and provider callbacks.

Card payments go through a payment intent, either for an existing order or
for a cart that becomes an order later. Mobile money is payment-first: the
cart is staged, and the order only exists once the aggregator reports the
collection as successful.
"""

import time
from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.core_settings import Settings, get_settings
from marketplace.domain.errors import AppError, NotFound, InvalidInput
from marketplace.domain.models import Order, Payment, StagedCheckout, utcnow
from marketplace.domain.status import PaymentMethod, PaymentStatus
from marketplace.infrastructure.payment_gateways import CardGateway, CardEvent, MobileMoneyGateway
from shared.core import get_logger
from .fees import round_half_up
from .order_service import OrderService
from .schemas import (
    CartIntentCreate, CartIntentRead, MobileInitiate, MobileInitiateRead, MobileStatusRead,
    OrderCreate, PaymentIntentRead, PaymentRead,
)
from .side_effects import SideEffects

logger = get_logger(__name__)

CARD_PROVIDER = "stripe"
MOBILE_PROVIDER = "labyrinthe"

CARD_EVENT_STATUS = {
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "charge.refunded": PaymentStatus.REFUNDED,
    "charge.refund.updated": PaymentStatus.REFUNDED,
    "refund.succeeded": PaymentStatus.REFUNDED,
}

# Aggregator result codes
MOBILE_SUCCESS = 2
MOBILE_FAILURE = 3


class PaymentService:
    def __init__(self, db: Session, effects: Optional[SideEffects] = None,
                 card: Optional[CardGateway] = None, mobile: Optional[MobileMoneyGateway] = None,
                 config: Optional[Settings] = None):
        self.db = db
        self.effects = effects
        self.config = config or get_settings()
        self.card = card or CardGateway(self.config)
        self.mobile = mobile or MobileMoneyGateway(self.config)

    def _card_amount(self, amount: int) -> int:
        return max(1, round_half_up(amount * (self.config.STRIPE_AMOUNT_MULTIPLIER or 1)))

    def latest_for_order(self, order_id: int) -> Payment:
        if self.db.get(Order, order_id) is None:
            raise NotFound("Order not found")
        payment = OrderService(self.db, config=self.config).latest_payment(order_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    # ------------------------------------------------------------------ card

    def create_intent(self, order_id: int, method: PaymentMethod) -> PaymentIntentRead:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        method = PaymentMethod(method)

        if method is PaymentMethod.CARD:
            intent = self.card.create_intent(
                self._card_amount(order.total),
                self.config.STRIPE_CURRENCY,
                metadata={"orderId": order.id, "orderCode": order.code},
            )
            payment = Payment(
                order_id=order.id, method=method.value, amount=order.total,
                status=PaymentStatus.PENDING.value, provider=CARD_PROVIDER, provider_ref=intent.id,
            )
            self.db.add(payment)
            self.db.commit()
            self.db.refresh(payment)
            logger.info(f"Card intent {intent.id} created for order {order.code}")
            return PaymentIntentRead(
                payment=PaymentRead.model_validate(payment),
                client_secret=intent.client_secret,
                publishable_key=self.card.publishable_key,
            )

        payment = Payment(order_id=order.id, method=method.value, amount=order.total,
                          status=PaymentStatus.PENDING.value)
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return PaymentIntentRead(
            payment=PaymentRead.model_validate(payment),
            payment_url=f"{self.config.PAYMENT_PAGE_URL.rstrip('/')}/{order.code}",
        )

    def cart_intent(self, data: CartIntentCreate, customer_id: Optional[int] = None) -> CartIntentRead:
        """Card intent for a cart that has no order yet.

        The intent id comes back with the order later (``payment_intent_id``)
        and is attached then.
        """
        quote = OrderService(self.db, config=self.config).quote(
            data.restaurant_id, data.items, data.delivery_method, data.distance_km, customer_id,
        )
        intent = self.card.create_intent(
            self._card_amount(quote.total),
            self.config.STRIPE_CURRENCY,
            metadata={"restaurantId": data.restaurant_id},
        )
        return CartIntentRead(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            publishable_key=self.card.publishable_key,
            amount=quote.total,
        )

    def attach_card_intent(self, order: Order, intent_id: str) -> Optional[Payment]:
        """Record the card intent paid before ``order`` existed. Failures are logged, not raised."""
        try:
            return self._attach_card_intent(order, intent_id)
        except Exception:
            self.db.rollback()
            logger.error(f"Could not attach intent {intent_id} to {order.code}", exc_info=True)
            return None

    def _attach_card_intent(self, order: Order, intent_id: str) -> Payment:
        payment = Payment(
            order_id=order.id, method=PaymentMethod.CARD.value, amount=order.total,
            status=PaymentStatus.PENDING.value, provider=CARD_PROVIDER, provider_ref=intent_id,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)

        # The webhook may have fired before this payment row existed
        try:
            intent = self.card.retrieve_intent(intent_id)
        except AppError as e:
            logger.warning(f"Could not reconcile intent {intent_id} for {order.code}: {e.message}")
            return payment
        if intent.status == "succeeded":
            payment.status = PaymentStatus.SUCCEEDED.value
            payment.paid_at = utcnow()
            self.db.commit()
            self.db.refresh(payment)
        return payment

    def handle_card_event(self, event: CardEvent) -> int:
        """Apply a card processor event to every payment of its intent. Returns the rows touched."""
        status = CARD_EVENT_STATUS.get(event.type)
        if status is None or not event.intent_id:
            logger.info(f"Ignoring card event {event.type}")
            return 0
        values = {"status": status.value}
        if status is PaymentStatus.SUCCEEDED:
            values["paid_at"] = utcnow()
        result = self.db.execute(
            update(Payment)
            .where(Payment.provider == CARD_PROVIDER, Payment.provider_ref == event.intent_id)
            .values(**values)
        )
        self.db.commit()
        logger.info(
            f"Card event {event.type} for intent {event.intent_id}",
            extra={'extra_fields': {'payments_updated': result.rowcount}}
        )
        return result.rowcount

    def acknowledge_card_event(self, event: CardEvent) -> dict:
        """Webhook entry point. Never raises; the processor retries anything but a 2xx."""
        try:
            updated = self.handle_card_event(event)
        except Exception:
            self.db.rollback()
            logger.error(f"Card event {event.type} for intent {event.intent_id} could not be processed",
                         exc_info=True)
            return {"received": True, "note": "processing error ignored"}
        return {"received": True, "updated": updated}

    # ---------------------------------------------------------- mobile money

    def _staged(self, order_number: str) -> Optional[StagedCheckout]:
        return self.db.execute(
            select(StagedCheckout).where(
                StagedCheckout.provider == MOBILE_PROVIDER, StagedCheckout.provider_ref == order_number
            )
        ).scalar_one_or_none()

    def initiate_mobile(self, data: MobileInitiate) -> MobileInitiateRead:
        order = data.order.model_copy(update={"payment_method": PaymentMethod.MOBILE})
        quote = OrderService(self.db, config=self.config).quote(
            order.restaurant_id, order.items, order.delivery_method, order.distance_km, order.customer_id,
        )
        order_number = self.mobile.initiate_collection(
            quote.total, data.phone, reference=f"MOB-{int(time.time() * 1000)}",
        )

        payload = order.model_dump(mode="json")
        staged = self._staged(order_number)
        if staged is None:
            self.db.add(StagedCheckout(
                provider=MOBILE_PROVIDER, provider_ref=order_number, payload=payload, amount=quote.total,
            ))
        else:
            staged.payload = payload
            staged.amount = quote.total
        self.db.commit()
        logger.info(f"Mobile collection {order_number} started", extra={'extra_fields': {'amount': quote.total}})
        return MobileInitiateRead(order_number=order_number, amount=quote.total)

    def handle_mobile_callback(self, body: dict) -> dict:
        """Process an aggregator callback. Never raises; the provider only needs an acknowledgement."""
        order_number = body.get("orderNumber") if isinstance(body, dict) else None
        if not order_number:
            return {"received": True, "note": "orderNumber missing"}
        order_number = str(order_number)
        code = ((body.get("results") or {}).get("status") or {}).get("code")

        try:
            if code == MOBILE_FAILURE:
                self._drop_staged(order_number)
            elif code == MOBILE_SUCCESS:
                self._materialize(order_number)
            else:
                logger.info(f"Mobile callback {order_number} with status code {code}, nothing to do")
        except Exception:
            self.db.rollback()
            logger.error(f"Mobile callback {order_number} could not be processed", exc_info=True)
            return {"received": True, "note": "processing error ignored"}
        return {"received": True}

    def _drop_staged(self, order_number: str) -> None:
        self.db.execute(
            delete(StagedCheckout).where(
                StagedCheckout.provider == MOBILE_PROVIDER, StagedCheckout.provider_ref == order_number
            )
        )
        self.db.commit()
        logger.info(f"Mobile collection {order_number} failed, staged cart dropped")

    def _materialize(self, order_number: str) -> None:
        staged = self._staged(order_number)
        if staged is None:
            logger.info(f"Mobile collection {order_number} has no staged cart, already processed")
            return

        cart = OrderCreate.model_validate(staged.payload)
        # What the aggregator collected; the order total may drop once a voucher applies
        collected = staged.amount

        # Claim the staged cart; the claim commits together with the order
        claimed = self.db.execute(delete(StagedCheckout).where(StagedCheckout.id == staged.id))
        if claimed.rowcount != 1:
            self.db.rollback()
            logger.info(f"Mobile collection {order_number} claimed by a concurrent callback")
            return

        order = OrderService(self.db, self.effects, self.config).create(cart)
        payment = Payment(
            order_id=order.id,
            method=PaymentMethod.MOBILE.value,
            provider=MOBILE_PROVIDER,
            provider_ref=order_number,
            amount=collected,
            status=PaymentStatus.SUCCEEDED.value,
            paid_at=utcnow(),
        )
        self.db.add(payment)
        self.db.commit()
        logger.info(f"Mobile collection {order_number} paid, order {order.code} created")

    def mobile_status(self, order_number: str) -> MobileStatusRead:
        if not order_number:
            raise InvalidInput("order_number required")
        payment = self.db.execute(
            select(Payment).where(Payment.provider == MOBILE_PROVIDER, Payment.provider_ref == order_number)
        ).scalars().first()
        if payment is not None:
            order = self.db.get(Order, payment.order_id)
            return MobileStatusRead(status=payment.status, order_id=order.id, order_code=order.code)
        if self._staged(order_number) is not None:
            return MobileStatusRead(status=PaymentStatus.PENDING.value)
        return MobileStatusRead(status=PaymentStatus.FAILED.value)

    # ---------------------------------------------------------------- manual

    def manual_callback(self, order_code: str, status: PaymentStatus) -> Payment:
        """Provider-agnostic callback keyed by order code; updates the latest payment."""
        order = OrderService(self.db, config=self.config).get_by_code(order_code)
        payment = self.latest_for_order(order.id)
        status = PaymentStatus(status)
        payment.status = status.value
        if status is PaymentStatus.SUCCEEDED:
            payment.paid_at = utcnow()
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} of {order.code} set to {status.value}")
        return payment
