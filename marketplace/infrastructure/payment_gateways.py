"""Clients for the card processor (Stripe SDK) and the mobile-money aggregator (Labyrinthe, over HTTP)."""

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import stripe

from marketplace.core_settings import Settings
from marketplace.domain.errors import InvalidInput, UpstreamFailure
from shared.core import get_logger

logger = get_logger(__name__)


@dataclass
class CardIntent:
    id: str
    client_secret: Optional[str]
    status: str


@dataclass
class CardEvent:
    type: str
    intent_id: Optional[str]
    status: Optional[str] = None


class CardGateway:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.settings.STRIPE_SECRET_KEY and self.settings.STRIPE_PUBLIC_KEY)

    @property
    def publishable_key(self) -> str:
        return self.settings.STRIPE_PUBLIC_KEY

    def _call(self, description: str, operation: Callable[[], Any]) -> Any:
        if not self.configured:
            raise UpstreamFailure("Card payments are not configured on this server", 500)
        try:
            return operation()
        except stripe.error.StripeError as e:
            logger.error(f"Card gateway call {description} failed: {e}")
            raise UpstreamFailure("Card gateway error")

    @staticmethod
    def _intent(obj) -> CardIntent:
        return CardIntent(id=obj["id"], client_secret=obj.get("client_secret"), status=obj.get("status") or "")

    def create_intent(self, amount: int, currency: str, metadata: Optional[dict] = None) -> CardIntent:
        intent = self._call("create_intent", lambda: stripe.PaymentIntent.create(
            api_key=self.settings.STRIPE_SECRET_KEY,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata={key: str(value) for key, value in (metadata or {}).items()},
        ))
        return self._intent(intent)

    def retrieve_intent(self, intent_id: str) -> CardIntent:
        intent = self._call("retrieve_intent", lambda: stripe.PaymentIntent.retrieve(
            intent_id, api_key=self.settings.STRIPE_SECRET_KEY,
        ))
        return self._intent(intent)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> CardEvent:
        secret = self.settings.STRIPE_WEBHOOK_SECRET
        if secret:
            if not signature:
                raise InvalidInput("Missing Stripe-Signature header")
            try:
                stripe.Webhook.construct_event(payload, signature, secret)
            except stripe.error.SignatureVerificationError as e:
                logger.warning(f"Card webhook rejected: {e}")
                raise InvalidInput("Webhook signature mismatch")
            except ValueError:
                raise InvalidInput("Webhook body is not JSON")
        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidInput("Webhook body is not JSON")
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidInput("Webhook event type missing")

        # Already-normalised form: {type, intentId, status}
        if "intentId" in event:
            return CardEvent(type=event["type"], intent_id=event["intentId"], status=event.get("status"))

        obj = (event.get("data") or {}).get("object") or {}
        if event["type"].startswith("payment_intent."):
            intent_id = obj.get("id")
        else:
            intent_id = obj.get("payment_intent")
        return CardEvent(type=event["type"], intent_id=intent_id, status=obj.get("status"))


class MobileMoneyGateway:
    def __init__(self, settings: Settings, timeout: float = 20.0):
        self.settings = settings
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.settings.LABYRINTHE_API_URL and self.settings.LABYRINTHE_TOKEN)

    @property
    def callback_url(self) -> str:
        return f"{self.settings.APP_URL.rstrip('/')}/payments/mobile/webhook"

    def initiate_collection(self, amount: int, phone: str, reference: str) -> str:
        """Ask the aggregator to collect ``amount`` from ``phone``; returns its order number."""
        if not self.configured:
            raise UpstreamFailure("Mobile money is not configured on this server", 500)
        params = {
            "token": self.settings.LABYRINTHE_TOKEN,
            "reference": reference,
            "amount": amount,
            "currency": self.settings.LABYRINTHE_CURRENCY,
            "country": self.settings.LABYRINTHE_COUNTRY,
            "phone": str(phone),
            "callback": self.callback_url,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.settings.LABYRINTHE_API_URL, json=params)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Mobile money initiation failed: {e}")
            raise UpstreamFailure("Mobile money gateway error")

        if not body.get("success") or not body.get("orderNumber"):
            raise UpstreamFailure("Mobile money payment could not be started")
        return str(body["orderNumber"])
