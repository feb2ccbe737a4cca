from fastapi import BackgroundTasks

from marketplace.application.side_effects import SideEffects
from marketplace.core_settings import get_settings
from marketplace.infrastructure.db import SessionLocal
from marketplace.infrastructure.notifications import DatabaseNotificationSink
from marketplace.infrastructure.payment_gateways import CardGateway, MobileMoneyGateway
from marketplace.infrastructure.sms import build_sms_sink


def get_side_effects(background_tasks: BackgroundTasks) -> SideEffects:
    """Side-effect queue for one request, drained after the response is sent."""
    effects = SideEffects(DatabaseNotificationSink(SessionLocal), build_sms_sink(get_settings()))
    background_tasks.add_task(effects.run)
    return effects


def get_card_gateway() -> CardGateway:
    return CardGateway(get_settings())


def get_mobile_gateway() -> MobileMoneyGateway:
    return MobileMoneyGateway(get_settings())
