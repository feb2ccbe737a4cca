import secrets
import string
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.domain.errors import NotFound, InvalidInput, Forbidden, Conflict
from marketplace.domain.models import Order, PromoCode, PromoCodeUsage, DiscountVoucher, utcnow
from marketplace.domain.status import VoucherStatus
from .fees import round_half_up
from .side_effects import SideEffects, Notice

POINTS_FOR_VOUCHER = 10
VOUCHER_DISCOUNT_PERCENT = 10
VOUCHER_VALIDITY = timedelta(days=90)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_voucher_code() -> str:
    return "BON-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))


class PromotionService:
    """Referral codes (points for their owner) and single-use discount vouchers."""

    def __init__(self, db: Session, effects: Optional[SideEffects] = None):
        self.db = db
        self.effects = effects

    def _promo(self, code: str) -> Optional[PromoCode]:
        return self.db.execute(select(PromoCode).where(PromoCode.code == code.upper())).scalar_one_or_none()

    def _voucher(self, code: str) -> Optional[DiscountVoucher]:
        return self.db.execute(
            select(DiscountVoucher).where(DiscountVoucher.code == code.upper())
        ).scalar_one_or_none()

    def check_promo_code(self, code: str, user_id: int) -> PromoCode:
        promo = self._promo(code)
        if promo is None:
            raise NotFound("Invalid promo code")
        if not promo.is_active:
            raise InvalidInput("This promo code is no longer active")
        if promo.owner_user_id == user_id:
            raise InvalidInput("You cannot use your own promo code")
        return promo

    def apply_promo_code(self, code: str, order: Order, user_id: int) -> PromoCode:
        """Credit one point to the promo owner; every tenth point mints a voucher."""
        promo = self.check_promo_code(code, user_id)
        self.db.add(PromoCodeUsage(promo_code_id=promo.id, order_id=order.id, used_by_user_id=user_id))
        self.db.execute(
            update(PromoCode).where(PromoCode.id == promo.id).values(points=PromoCode.points + 1)
        )
        order.promo_code = promo.code
        self.db.commit()
        self.db.refresh(promo)

        if promo.points % POINTS_FOR_VOUCHER == 0:
            voucher = self._mint_voucher(promo.owner_user_id)
            self._announce(promo.owner_user_id, Notice(
                type="voucher.earned",
                title="Discount voucher earned!",
                message=(f"You reached {promo.points} points and earned a "
                         f"{voucher.discount_percent}% voucher. Code: {voucher.code}"),
            ))
        else:
            remaining = POINTS_FOR_VOUCHER - promo.points % POINTS_FOR_VOUCHER
            self._announce(promo.owner_user_id, Notice(
                type="promo.point.earned",
                title="Point earned!",
                message=f"Someone used your promo code. You now have {promo.points} point(s), {remaining} to go.",
            ))
        return promo

    def _mint_voucher(self, owner_user_id: int) -> DiscountVoucher:
        code = generate_voucher_code()
        while self._voucher(code) is not None:
            code = generate_voucher_code()
        voucher = DiscountVoucher(
            code=code,
            owner_user_id=owner_user_id,
            discount_percent=VOUCHER_DISCOUNT_PERCENT,
            status=VoucherStatus.ACTIVE.value,
            expires_at=utcnow() + VOUCHER_VALIDITY,
        )
        self.db.add(voucher)
        self.db.commit()
        self.db.refresh(voucher)
        return voucher

    def check_voucher(self, code: str, user_id: int) -> DiscountVoucher:
        voucher = self._voucher(code)
        if voucher is None:
            raise NotFound("Invalid voucher")
        if voucher.status != VoucherStatus.ACTIVE.value:
            raise InvalidInput("This voucher is no longer valid")
        if user_id not in (voucher.owner_user_id, voucher.shared_to_user_id):
            raise Forbidden("This voucher does not belong to you")
        if voucher.expires_at is not None and voucher.expires_at < utcnow():
            self.db.execute(
                update(DiscountVoucher)
                .where(DiscountVoucher.id == voucher.id, DiscountVoucher.status == VoucherStatus.ACTIVE.value)
                .values(status=VoucherStatus.EXPIRED.value)
            )
            self.db.commit()
            raise InvalidInput("This voucher has expired")
        return voucher

    def apply_voucher(self, code: str, order: Order, user_id: int) -> int:
        """Consume the voucher on ``order`` and return the discount granted."""
        voucher = self.check_voucher(code, user_id)
        if order.discount:
            raise InvalidInput("A discount was already applied to this order")

        pre_discount_total = order.subtotal + order.service_fee + order.delivery_fee
        discount = round_half_up(pre_discount_total * voucher.discount_percent / 100)

        consumed = self.db.execute(
            update(DiscountVoucher)
            .where(DiscountVoucher.id == voucher.id, DiscountVoucher.status == VoucherStatus.ACTIVE.value)
            .values(status=VoucherStatus.USED.value, used_by_user_id=user_id, used_on_order_id=order.id)
        )
        if consumed.rowcount != 1:
            self.db.rollback()
            raise InvalidInput("This voucher is no longer valid")

        discounted = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.discount == 0)
            .values(discount=discount, total=pre_discount_total - discount, voucher_code=voucher.code)
        )
        if discounted.rowcount != 1:
            self.db.rollback()
            raise Conflict("Order was modified while applying the voucher")

        self.db.commit()
        self.db.refresh(order)
        return discount

    def _announce(self, user_id: int, notice: Notice) -> None:
        if self.effects is not None:
            self.effects.notify(user_id, notice)
