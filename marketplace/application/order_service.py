from sqlalchemy import select, update, func
from sqlalchemy.orm import Session, selectinload
from datetime import datetime
import secrets
from typing import Optional

from marketplace.core_settings import Settings, get_settings
from marketplace.domain.errors import AppError, NotFound, InvalidInput, InvalidTransition, Forbidden, Conflict
from marketplace.domain.models import Order, OrderItem, Dish, Restaurant, User, Payment, utcnow
from marketplace.domain.status import (
    OrderStatus, PaymentMethod, PaymentStatus, Role, ORDER_STATUS_LABELS, ensure_order_transition,
)
from marketplace.infrastructure.db import atomic
from marketplace.infrastructure.settings_store import SettingsStore
from shared.core import get_logger
from .fees import compute_fees
from .promotions import PromotionService
from .schemas import Actor, CartQuote, OrderCreate, OrderItemCreate
from .settlement import SettlementEngine, merchant_leg
from .side_effects import SideEffects, Notice

logger = get_logger(__name__)

STAFF_ROLES = (Role.ADMIN.value, Role.SUPERADMIN.value, Role.DISPATCHER.value)
CODE_ATTEMPTS = 5


class OrderService:
    def __init__(self, db: Session, effects: Optional[SideEffects] = None, config: Optional[Settings] = None):
        self.db = db
        self.effects = effects
        self.config = config or get_settings()
        self.settings = SettingsStore(db)

    def _generate_order_code(self) -> str:
        """Order code in format ORD-YYYY-XXXXXX (random hex suffix)"""
        year = datetime.now().year
        for _ in range(CODE_ATTEMPTS):
            code = f"ORD-{year}-{secrets.token_hex(3).upper()}"
            exists = self.db.execute(select(Order.id).where(Order.code == code)).first()
            if not exists:
                return code
        raise Conflict("Could not allocate an order code, please retry")

    # ------------------------------------------------------------------ reads

    def get(self, order_id: int) -> Order:
        order = self.db.execute(
            select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order

    def get_by_code(self, code: str) -> Order:
        order = self.db.execute(select(Order).where(Order.code == code)).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order

    def get_for(self, order_id: int, actor: Actor) -> Order:
        """``get`` restricted to what ``actor`` may see; hidden orders read as missing."""
        order = self.get(order_id)
        if actor.role == Role.CLIENT and order.customer_user_id != actor.id:
            raise NotFound("Order not found")
        if actor.role == Role.MERCHANT:
            owner = self._owner(order)
            if owner is None or owner.id != actor.id or order.status == OrderStatus.PENDING_CONFIRMATION.value:
                raise NotFound("Order not found")
        return order

    def list_for_customer(self, customer_id: int) -> list[Order]:
        return list(self.db.execute(
            select(Order).options(selectinload(Order.items))
            .where(Order.customer_user_id == customer_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars())

    def list_for_staff(self, actor: Actor, status: Optional[OrderStatus] = None) -> list[Order]:
        """Orders visible to back-office users.

        Merchants only see orders of their own restaurants, and only once a
        dispatcher has confirmed them.
        """
        query = select(Order).options(selectinload(Order.items)).order_by(Order.id.desc())
        if actor.role == Role.MERCHANT:
            query = query.join(Restaurant, Restaurant.id == Order.restaurant_id).where(
                Restaurant.owner_user_id == actor.id,
                Order.status != OrderStatus.PENDING_CONFIRMATION.value,
            )
        if status is not None:
            query = query.where(Order.status == OrderStatus(status).value)
        return list(self.db.execute(query).scalars())

    def prior_order_count(self, customer_id: int) -> int:
        return self.db.execute(
            select(func.count(Order.id)).where(Order.customer_user_id == customer_id)
        ).scalar_one()

    def latest_payment(self, order_id: int) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.desc()).limit(1)
        ).scalar_one_or_none()

    # ---------------------------------------------------------------- pricing

    def _price_items(self, restaurant_id: int, items: list[OrderItemCreate]) -> tuple[int, list[OrderItem]]:
        subtotal = 0
        lines = []
        for item in items:
            dish = self.db.get(Dish, item.dish_id)
            if dish is None:
                raise InvalidInput(f"Dish {item.dish_id} not found")
            if dish.restaurant_id != restaurant_id:
                raise InvalidInput(f"Dish {dish.name} does not belong to this restaurant")
            if item.quantity < 1:
                raise InvalidInput(f"Quantity for dish {dish.name} must be at least 1")

            # Flexible pricing may raise the price, never lower it
            override = item.override_price if item.override_price is not None and item.override_price > dish.price else None
            line = OrderItem(
                dish_id=dish.id,
                name=dish.name,
                unit_price=dish.price,
                override_price=override,
                quantity=item.quantity,
            )
            subtotal += line.effective_price * line.quantity
            lines.append(line)
        return subtotal, lines

    def _fees(self, delivery_method, distance_km, customer_id: Optional[int]):
        prior = None
        if self.config.FREE_TRIAL_AT_CHECKOUT and customer_id is not None:
            prior = self.prior_order_count(customer_id)
        return compute_fees(self.settings, delivery_method, distance_km, prior_orders=prior)

    def quote(self, restaurant_id: int, items: list[OrderItemCreate], delivery_method,
              distance_km: Optional[float] = None, customer_id: Optional[int] = None) -> CartQuote:
        """Price a cart exactly as ``create`` would, without persisting anything."""
        if self.db.get(Restaurant, restaurant_id) is None:
            raise NotFound("Restaurant not found")
        subtotal, _ = self._price_items(restaurant_id, items)
        fees = self._fees(delivery_method, distance_km, customer_id)
        return CartQuote(
            subtotal=subtotal,
            service_fee=fees.service_fee,
            delivery_fee=fees.delivery_fee,
            total=subtotal + fees.service_fee + fees.delivery_fee,
        )

    # --------------------------------------------------------------- creation

    def create(self, data: OrderCreate) -> Order:
        customer = self.db.get(User, data.customer_id)
        if customer is None:
            raise NotFound("Customer not found")
        restaurant = self.db.get(Restaurant, data.restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant not found")

        subtotal, lines = self._price_items(restaurant.id, data.items)
        fees = self._fees(data.delivery_method, data.distance_km, customer.id)

        order = Order(
            code=self._generate_order_code(),
            customer_user_id=customer.id,
            customer_name=data.customer_name or customer.name,
            restaurant_id=restaurant.id,
            subtotal=subtotal,
            service_fee=fees.service_fee,
            delivery_fee=fees.delivery_fee,
            discount=0,
            total=subtotal + fees.service_fee + fees.delivery_fee,
            delivery_method=data.delivery_method.value,
            payment_method=data.payment_method.value,
            status=OrderStatus.PENDING_CONFIRMATION.value,
            address=data.address,
            notes=data.notes,
            estimated_distance_km=data.distance_km,
            items=lines,
        )
        with atomic(self.db):
            self.db.add(order)
            self.db.flush()  # assign id
            self.db.add(merchant_leg(self.settings, order))
        self.db.refresh(order)
        logger.info(
            f"Order {order.code} created",
            extra={'extra_fields': {'order_id': order.id, 'total': order.total, 'free_trial': fees.free_trial}}
        )

        self._apply_promotions(order, data)
        self._announce_created(order, customer)
        return order

    def _apply_promotions(self, order: Order, data: OrderCreate) -> None:
        promotions = PromotionService(self.db, self.effects)
        if data.promo_code:
            try:
                promotions.apply_promo_code(data.promo_code, order, order.customer_user_id)
            except AppError as e:
                logger.warning(f"Promo code {data.promo_code} not applied to {order.code}: {e.message}")
            except Exception:
                self.db.rollback()
                logger.error(f"Promo code {data.promo_code} failed on {order.code}", exc_info=True)
        if data.voucher_code:
            try:
                promotions.apply_voucher(data.voucher_code, order, order.customer_user_id)
            except AppError as e:
                logger.warning(f"Voucher {data.voucher_code} not applied to {order.code}: {e.message}")
            except Exception:
                self.db.rollback()
                logger.error(f"Voucher {data.voucher_code} failed on {order.code}", exc_info=True)
        self.db.refresh(order)

    # ----------------------------------------------------------- transitions

    def _transition(self, order: Order, target: OrderStatus) -> None:
        """Move ``order`` to ``target`` only if nobody changed its status since it was read."""
        current = order.status
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(status=target.value, updated_at=utcnow())
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict(f"Order {order.code} was updated concurrently, expected status {current}")
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.code}: {current} -> {target.value}")

    def _check_owner(self, order: Order, actor: Optional[Actor]) -> None:
        if actor is None or actor.role != Role.MERCHANT:
            return
        restaurant = self.db.get(Restaurant, order.restaurant_id)
        if restaurant is None or restaurant.owner_user_id != actor.id:
            raise Forbidden("You can only manage orders of your own restaurant")

    def update_status(self, order_id: int, target: OrderStatus, actor: Optional[Actor] = None) -> Order:
        order = self.get(order_id)
        target = OrderStatus(target)
        if actor is not None and actor.role == Role.MERCHANT and order.status == OrderStatus.PENDING_CONFIRMATION.value:
            raise NotFound("Order not found")
        self._check_owner(order, actor)
        ensure_order_transition(order.status, target)
        self._transition(order, target)

        self._announce_status(order, target)
        if target is OrderStatus.DELIVERED:
            self.settle(order.id)
        return order

    def confirm(self, order_id: int) -> Order:
        """Dispatcher check that releases a new order to its restaurant."""
        order = self.get(order_id)
        if order.status != OrderStatus.PENDING_CONFIRMATION.value:
            raise InvalidTransition(order.status, OrderStatus.RECEIVED.value, "Order is not pending confirmation")
        if self.config.REQUIRE_CARD_PAYMENT_BEFORE_CONFIRM and order.payment_method == PaymentMethod.CARD.value:
            payment = self.latest_payment(order.id)
            if payment is None or payment.status != PaymentStatus.SUCCEEDED.value:
                raise InvalidTransition(order.status, OrderStatus.RECEIVED.value, "Card payment has not been confirmed")
        self._transition(order, OrderStatus.RECEIVED)
        self._announce_confirmed(order)
        return order

    def settle(self, order_id: int) -> None:
        # Delivery is already committed; a failure here is left to reconciliation
        try:
            SettlementEngine(self.db).ensure_settlement(order_id)
        except Exception:
            self.db.rollback()
            logger.error(f"Settlement of order {order_id} failed", exc_info=True)

    # --------------------------------------------------------- announcements

    def _owner(self, order: Order) -> Optional[User]:
        restaurant = self.db.get(Restaurant, order.restaurant_id)
        if restaurant is None or restaurant.owner_user_id is None:
            return None
        return self.db.get(User, restaurant.owner_user_id)

    def _announce_created(self, order: Order, customer: User) -> None:
        if self.effects is None:
            return
        try:
            self.effects.notify(customer.id, Notice(
                type="order.created",
                title="Order received",
                message=f"Your order {order.code} is waiting for confirmation.",
                data={"orderId": order.id},
            ))
            staff = self.db.execute(
                select(User).where(User.role.in_(STAFF_ROLES), User.status == "active")
            ).scalars()
            for member in staff:
                self.effects.notify(member.id, Notice(
                    type="order.pending_confirmation",
                    title=f"New order {order.code} to confirm",
                    data={"orderId": order.id},
                ))
                self.effects.send_sms(
                    member.phone,
                    f"New order {order.code} to confirm. Customer: {order.customer_name}. Total: {order.total} FC.",
                )
        except Exception:
            logger.error(f"Could not queue notifications for {order.code}", exc_info=True)

    def _announce_confirmed(self, order: Order) -> None:
        if self.effects is None:
            return
        try:
            self._announce_status(order, OrderStatus.RECEIVED, notify_owner=False)
            owner = self._owner(order)
            if owner is not None:
                self.effects.notify(owner.id, Notice(
                    type="order.new_for_restaurant",
                    title=f"New order {order.code}",
                    message=f"{order.customer_name} placed an order. Total: {order.total} FC.",
                    data={"orderId": order.id},
                ))
                self.effects.send_sms(
                    owner.phone,
                    f"New order {order.code} from {order.customer_name}. Total: {order.total} FC. Log in to accept it.",
                )
        except Exception:
            logger.error(f"Could not queue confirmation notices for {order.code}", exc_info=True)

    def _announce_status(self, order: Order, status: OrderStatus, notify_owner: bool = True) -> None:
        if self.effects is None:
            return
        label = ORDER_STATUS_LABELS.get(status, status.value)
        try:
            self.effects.notify(order.customer_user_id, Notice(
                type="order.status",
                title=f"Order {order.code}: {label}",
                message=f"Status updated: {label}.",
                data={"orderId": order.id, "code": order.code, "status": status.value},
            ))
            if status is OrderStatus.DELIVERED:
                customer = self.db.get(User, order.customer_user_id)
                if customer is not None:
                    self.effects.send_sms(customer.phone, f"Your order {order.code} has been delivered. Enjoy your meal!")
            owner = self._owner(order) if notify_owner else None
            if owner is not None:
                self.effects.notify(owner.id, Notice(
                    type="order.status_restaurant",
                    title=f"Order {order.code}: {label}",
                    data={"orderId": order.id, "status": status.value},
                ))
        except Exception:
            logger.error(f"Could not queue status notices for {order.code}", exc_info=True)
