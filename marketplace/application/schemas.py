from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

from marketplace.domain.status import (
    DeliveryMethod, PaymentMethod, PaymentStatus, OrderStatus, MissionStatus, Role,
)


class Actor(BaseModel):
    """Authenticated caller, as resolved from the bearer token."""
    id: int
    role: Role


class OrderItemCreate(BaseModel):
    dish_id: int
    quantity: int
    override_price: Optional[int] = None


class OrderCreate(BaseModel):
    customer_id: int
    restaurant_id: int
    items: list[OrderItemCreate] = Field(min_length=1)
    delivery_method: DeliveryMethod
    payment_method: PaymentMethod
    customer_name: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    distance_km: Optional[float] = None
    promo_code: Optional[str] = None
    voucher_code: Optional[str] = None
    # Card intent created before the order existed (cart-intent flow)
    payment_intent_id: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class MissionStatusUpdate(BaseModel):
    status: MissionStatus


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    dish_id: int
    name: str
    unit_price: int
    override_price: Optional[int] = None
    quantity: int


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    code: str
    customer_user_id: int
    customer_name: str
    restaurant_id: int
    subtotal: int
    service_fee: int
    delivery_fee: int
    discount: int
    total: int
    delivery_method: str
    payment_method: str
    status: str
    address: Optional[str] = None
    notes: Optional[str] = None
    estimated_distance_km: Optional[float] = None
    promo_code: Optional[str] = None
    voucher_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead]


class FeeQuoteRead(BaseModel):
    service_fee: int
    delivery_fee: int
    free_trial: bool = False


class CartQuote(BaseModel):
    subtotal: int
    service_fee: int
    delivery_fee: int
    total: int


class MissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    restaurant_id: int
    courier_user_id: Optional[int] = None
    restaurant_location: str
    customer_location: str
    customer_phone: Optional[str] = None
    status: str
    earning: int
    created_at: datetime
    updated_at: datetime


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    method: str
    provider: Optional[str] = None
    provider_ref: Optional[str] = None
    amount: int
    status: str
    paid_at: Optional[datetime] = None
    created_at: datetime


class PaymentIntentCreate(BaseModel):
    order_id: int
    method: PaymentMethod


class PaymentIntentRead(BaseModel):
    payment: PaymentRead
    client_secret: Optional[str] = None
    publishable_key: Optional[str] = None
    payment_url: Optional[str] = None


class CartIntentCreate(BaseModel):
    restaurant_id: int
    items: list[OrderItemCreate] = Field(min_length=1)
    delivery_method: DeliveryMethod
    distance_km: Optional[float] = None


class CartIntentRead(BaseModel):
    intent_id: str
    client_secret: Optional[str] = None
    publishable_key: Optional[str] = None
    amount: int


class MobileInitiate(BaseModel):
    phone: str
    order: OrderCreate


class MobileInitiateRead(BaseModel):
    order_number: str
    amount: int


class MobileStatusRead(BaseModel):
    status: str
    order_id: Optional[int] = None
    order_code: Optional[str] = None


class ManualPaymentCallback(BaseModel):
    order_code: str
    status: PaymentStatus = PaymentStatus.SUCCEEDED


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    beneficiary: str
    amount: int
    commission: int
    net_amount: int
    status: str
    created_at: datetime


class SettlementRead(BaseModel):
    order_id: int
    transactions: list[TransactionRead]


class CodeCheck(BaseModel):
    code: str


class PromoCheckRead(BaseModel):
    valid: bool
    code: str
    discount_percent: Optional[int] = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    type: str
    title: str
    message: Optional[str] = None
    data: Optional[dict] = None
    read: bool
    created_at: datetime


class ReadUpdate(BaseModel):
    ok: bool = True
    updated: int
