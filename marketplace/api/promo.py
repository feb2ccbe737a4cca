from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.application.promotions import PromotionService
from marketplace.application.schemas import Actor, CodeCheck, PromoCheckRead
from marketplace.infrastructure.db import get_db
from .auth import current_user

router = APIRouter(prefix="/promo", tags=["promo"])


@router.post("/validate", response_model=PromoCheckRead)
def validate_promo_code(payload: CodeCheck, actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    promo = PromotionService(db).check_promo_code(payload.code, actor.id)
    return PromoCheckRead(valid=True, code=promo.code)


@router.post("/validate-voucher", response_model=PromoCheckRead)
def validate_voucher(payload: CodeCheck, actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    voucher = PromotionService(db).check_voucher(payload.code, actor.id)
    return PromoCheckRead(valid=True, code=voucher.code, discount_percent=voucher.discount_percent)
