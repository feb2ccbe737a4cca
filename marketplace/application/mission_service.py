from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.core_settings import Settings, get_settings
from marketplace.domain.errors import NotFound, InvalidInput, InvalidTransition, Forbidden, Conflict
from marketplace.domain.models import DeliveryMission, Order, Restaurant, User, utcnow
from marketplace.domain.status import (
    MissionStatus, OrderStatus, Role, MISSION_STATUS_LABELS, ensure_mission_transition,
)
from shared.core import get_logger
from .schemas import Actor
from .settlement import SettlementEngine
from .side_effects import SideEffects, Notice

logger = get_logger(__name__)

ACTIVE_STATUSES = (MissionStatus.ACCEPTED.value, MissionStatus.PICKED.value, MissionStatus.ENROUTE.value)
# Order statuses a delivered mission may close
MIRRORABLE_ORDER_STATUSES = (OrderStatus.READY.value, OrderStatus.DELIVERING.value)


class MissionService:
    def __init__(self, db: Session, effects: Optional[SideEffects] = None, config: Optional[Settings] = None):
        self.db = db
        self.effects = effects
        self.config = config or get_settings()

    def get(self, mission_id: int) -> DeliveryMission:
        mission = self.db.get(DeliveryMission, mission_id)
        if mission is None:
            raise NotFound("Mission not found")
        return mission

    def for_order(self, order_id: int) -> Optional[DeliveryMission]:
        return self.db.execute(
            select(DeliveryMission).where(DeliveryMission.order_id == order_id)
        ).scalar_one_or_none()

    def list(self, actor: Actor, status: str = "available") -> list[DeliveryMission]:
        query = select(DeliveryMission).order_by(DeliveryMission.id.desc())
        if actor.role == Role.COURIER:
            if status == "available":
                query = query.where(DeliveryMission.status == MissionStatus.AVAILABLE.value)
            elif status == "active":
                query = query.where(
                    DeliveryMission.courier_user_id == actor.id,
                    DeliveryMission.status.in_(ACTIVE_STATUSES),
                )
            elif status == "delivered":
                query = query.where(
                    DeliveryMission.courier_user_id == actor.id,
                    DeliveryMission.status == MissionStatus.DELIVERED.value,
                )
            else:
                raise InvalidInput(f"Unknown mission filter: {status}")
        return list(self.db.execute(query).scalars())

    def assign(self, order_id: int) -> tuple[DeliveryMission, bool]:
        """Open the delivery mission of a ready order.

        Returns ``(mission, created)``; asking twice hands back the existing mission.
        """
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")

        existing = self.for_order(order.id)
        if existing is not None:
            return existing, False
        if order.status != OrderStatus.READY.value:
            raise InvalidTransition(order.status, "mission", "Order must be ready to assign a mission")

        restaurant = self.db.get(Restaurant, order.restaurant_id)
        customer = self.db.get(User, order.customer_user_id)
        mission = DeliveryMission(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            restaurant_location=restaurant.address or restaurant.name,
            customer_location=order.address or "Pickup at restaurant",
            customer_phone=customer.phone if customer else None,
            status=MissionStatus.AVAILABLE.value,
            earning=self.config.MISSION_EARNING,
        )
        self.db.add(mission)
        try:
            self.db.commit()
        except IntegrityError:
            # Someone else opened it first
            self.db.rollback()
            existing = self.for_order(order.id)
            if existing is None:
                raise
            return existing, False
        self.db.refresh(mission)
        logger.info(
            f"Mission {mission.id} opened for order {order.code}",
            extra={'extra_fields': {'order_id': order.id, 'earning': mission.earning}}
        )
        self._announce_created(order, restaurant, mission)
        return mission, True

    def accept(self, mission_id: int, courier: Actor) -> DeliveryMission:
        mission = self.get(mission_id)
        result = self.db.execute(
            update(DeliveryMission)
            .where(DeliveryMission.id == mission.id, DeliveryMission.status == MissionStatus.AVAILABLE.value)
            .values(status=MissionStatus.ACCEPTED.value, courier_user_id=courier.id, updated_at=utcnow())
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict("Mission already taken")
        self.db.commit()
        self.db.refresh(mission)
        logger.info(f"Mission {mission.id} accepted by courier {courier.id}")

        self._announce_accepted(mission)
        return mission

    def update_status(self, mission_id: int, target: MissionStatus, courier: Actor) -> DeliveryMission:
        mission = self.get(mission_id)
        target = MissionStatus(target)
        if mission.courier_user_id != courier.id:
            raise Forbidden("This mission is assigned to another courier")
        ensure_mission_transition(mission.status, target)

        current = mission.status
        result = self.db.execute(
            update(DeliveryMission)
            .where(DeliveryMission.id == mission.id, DeliveryMission.status == current)
            .values(status=target.value, updated_at=utcnow())
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict(f"Mission {mission.id} was updated concurrently")
        if target is MissionStatus.DELIVERED:
            self._mirror_delivered(mission.order_id)
        self.db.commit()
        self.db.refresh(mission)
        logger.info(f"Mission {mission.id}: {current} -> {target.value}")

        if target is MissionStatus.DELIVERED:
            try:
                SettlementEngine(self.db).ensure_settlement(mission.order_id)
            except Exception:
                self.db.rollback()
                logger.error(f"Settlement of order {mission.order_id} failed", exc_info=True)
        self._announce_progress(mission, target)
        return mission

    def _mirror_delivered(self, order_id: int) -> None:
        """Close the order together with its mission, inside the caller's transaction."""
        order = self.db.get(Order, order_id)
        if order.status == OrderStatus.DELIVERED.value:
            return
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.in_(MIRRORABLE_ORDER_STATUSES))
            .values(status=OrderStatus.DELIVERED.value, updated_at=utcnow())
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidTransition(order.status, OrderStatus.DELIVERED.value,
                                    f"Order cannot be marked delivered from status {order.status}")
        self.db.refresh(order)

    # --------------------------------------------------------- announcements

    def _announce_created(self, order: Order, restaurant: Restaurant, mission: DeliveryMission) -> None:
        if self.effects is None:
            return
        self.effects.notify(order.customer_user_id, Notice(
            type="mission.created",
            title="Delivery being arranged",
            message=f"A courier will pick up your order {order.code}.",
            data={"orderId": order.id},
        ))
        couriers = self.db.execute(
            select(User).where(User.role == Role.COURIER.value, User.status == "active")
        ).scalars()
        for courier in couriers:
            self.effects.send_sms(
                courier.phone,
                f"New delivery available at {restaurant.name}. Earning: {mission.earning} FC.",
            )

    def _announce_accepted(self, mission: DeliveryMission) -> None:
        if self.effects is None:
            return
        order = self.db.get(Order, mission.order_id)
        restaurant = self.db.get(Restaurant, mission.restaurant_id)
        self.effects.notify(order.customer_user_id, Notice(
            type="mission.accepted",
            title="Courier assigned",
            message="A courier accepted your delivery.",
            data={"orderId": order.id},
        ))
        if restaurant is not None:
            self.effects.notify(restaurant.owner_user_id, Notice(
                type="mission.accepted_restaurant",
                title="Courier assigned to the order",
                data={"orderId": order.id},
            ))

    def _announce_progress(self, mission: DeliveryMission, status: MissionStatus) -> None:
        if self.effects is None:
            return
        order = self.db.get(Order, mission.order_id)
        self.effects.notify(order.customer_user_id, Notice(
            type=f"mission.{status.value}",
            title=MISSION_STATUS_LABELS.get(status, f"Update: {status.value}"),
            data={"orderId": order.id, "missionId": mission.id},
        ))
        if status is not MissionStatus.DELIVERED:
            return
        customer = self.db.get(User, order.customer_user_id)
        if customer is not None:
            self.effects.send_sms(customer.phone, f"Your order {order.code} was delivered by the courier. Thank you!")
        restaurant = self.db.get(Restaurant, mission.restaurant_id)
        if restaurant is not None:
            self.effects.notify(restaurant.owner_user_id, Notice(
                type="order.delivered",
                title="Order delivered",
                data={"orderId": order.id},
            ))
