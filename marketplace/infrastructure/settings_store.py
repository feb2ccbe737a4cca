from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.domain.models import Setting

SERVICE_FEE = "SERVICE_FEE"
CAMPUS_DELIVERY_FEE = "CAMPUS_DELIVERY_FEE"
OFF_CAMPUS_RATE_PER_KM = "OFF_CAMPUS_RATE_PER_KM"
OFF_CAMPUS_MIN_FEE = "OFF_CAMPUS_MIN_FEE"
MERCHANT_COMMISSION_PERCENT = "MERCHANT_COMMISSION_PERCENT"
FREE_TRIAL_ORDER_LIMIT = "FREE_TRIAL_ORDER_LIMIT"

DEFAULTS = {
    SERVICE_FEE: 1000,
    CAMPUS_DELIVERY_FEE: 1000,
    OFF_CAMPUS_RATE_PER_KM: 500,
    OFF_CAMPUS_MIN_FEE: 2000,
    MERCHANT_COMMISSION_PERCENT: 10,
    FREE_TRIAL_ORDER_LIMIT: 3,
}


class SettingsStore:
    """Key/value pricing parameters, read from the database on every call.

    Nothing is cached so that a change made by an administrator applies to
    the very next request.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, fallback: float | None = None) -> float:
        if fallback is None:
            fallback = DEFAULTS.get(key, 0)
        row = self.db.execute(select(Setting).where(Setting.skey == key)).scalar_one_or_none()
        if row is None:
            return fallback
        try:
            return float(row.svalue)
        except ValueError:
            return fallback

    def get_int(self, key: str, fallback: int | None = None) -> int:
        return int(self.get(key, fallback))

    def set(self, key: str, value) -> None:
        row = self.db.execute(select(Setting).where(Setting.skey == key)).scalar_one_or_none()
        if row is None:
            self.db.add(Setting(skey=key, svalue=str(value)))
        else:
            row.svalue = str(value)
        self.db.commit()
