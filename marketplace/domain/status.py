"""Status vocabularies and the transition tables that drive the state machines."""

from enum import Enum

from .errors import InvalidTransition


class DeliveryMethod(str, Enum):
    PICKUP = "pickup"
    CAMPUS = "campus"
    OFFCAMPUS = "offcampus"


class PaymentMethod(str, Enum):
    MOBILE = "mobile"
    CARD = "card"
    COD = "cod"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class Beneficiary(str, Enum):
    MERCHANT = "merchant"
    COURIER = "courier"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class VoucherStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class Role(str, Enum):
    CLIENT = "client"
    MERCHANT = "merchant"
    COURIER = "courier"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    DISPATCHER = "dispatcher"


class OrderStatus(str, Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    RECEIVED = "received"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    REJECTED = "rejected"


class MissionStatus(str, Enum):
    AVAILABLE = "available"
    ACCEPTED = "accepted"
    PICKED = "picked"
    ENROUTE = "enroute"
    DELIVERED = "delivered"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_CONFIRMATION: frozenset({OrderStatus.RECEIVED, OrderStatus.REJECTED}),
    OrderStatus.RECEIVED: frozenset({OrderStatus.PREPARING, OrderStatus.REJECTED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.REJECTED}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERING}),
    OrderStatus.DELIVERING: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}

MISSION_TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    MissionStatus.AVAILABLE: frozenset({MissionStatus.ACCEPTED}),
    MissionStatus.ACCEPTED: frozenset({MissionStatus.PICKED}),
    MissionStatus.PICKED: frozenset({MissionStatus.ENROUTE}),
    MissionStatus.ENROUTE: frozenset({MissionStatus.DELIVERED}),
    MissionStatus.DELIVERED: frozenset(),
}

# Human readable labels used in customer notifications
ORDER_STATUS_LABELS = {
    OrderStatus.RECEIVED: "Received",
    OrderStatus.PREPARING: "Being prepared",
    OrderStatus.READY: "Ready",
    OrderStatus.DELIVERING: "Out for delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.REJECTED: "Rejected",
}

MISSION_STATUS_LABELS = {
    MissionStatus.PICKED: "Order picked up",
    MissionStatus.ENROUTE: "Order on its way",
    MissionStatus.DELIVERED: "Order delivered",
}


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, frozenset())


def ensure_order_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(ORDER_TRANSITIONS, OrderStatus(current), OrderStatus(target)):
        raise InvalidTransition(OrderStatus(current).value, OrderStatus(target).value)


def ensure_mission_transition(current: MissionStatus, target: MissionStatus) -> None:
    if not can_transition(MISSION_TRANSITIONS, MissionStatus(current), MissionStatus(target)):
        raise InvalidTransition(MissionStatus(current).value, MissionStatus(target).value)
