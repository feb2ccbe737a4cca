from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.application.fees import compute_fees
from marketplace.application.order_service import OrderService
from marketplace.application.schemas import Actor, FeeQuoteRead
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.settings_store import SettingsStore
from .auth import optional_user

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/delivery", response_model=FeeQuoteRead)
def delivery_pricing(method: str = "campus", km: Optional[float] = None,
                     actor: Optional[Actor] = Depends(optional_user), db: Session = Depends(get_db)):
    """Fee preview. Signed-in customers within their first orders see the free trial."""
    prior = OrderService(db).prior_order_count(actor.id) if actor else None
    quote = compute_fees(SettingsStore(db), method, km, prior_orders=prior)
    return FeeQuoteRead(service_fee=quote.service_fee, delivery_fee=quote.delivery_fee, free_trial=quote.free_trial)
