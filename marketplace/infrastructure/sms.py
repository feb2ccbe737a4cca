import re
import httpx

from marketplace.core_settings import Settings
from marketplace.domain.errors import UpstreamFailure
from shared.core import get_logger

logger = get_logger(__name__)


def format_phone(phone: str) -> str:
    """Normalise a DRC number to the 243XXXXXXXXX form the gateway expects."""
    clean = re.sub(r"[\s+]", "", phone)
    if clean.startswith("0"):
        clean = "243" + clean[1:]
    elif len(clean) == 9:
        clean = "243" + clean
    return clean


class HttpSmsGateway:
    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.settings = settings
        self.timeout = timeout

    def send_sms(self, phone: str, text: str, sms_type: str = "T") -> None:
        payload = {
            "api_id": self.settings.SMS_USER,
            "api_password": self.settings.SMS_PASSWORD,
            "sms_type": sms_type,
            "encoding": "T",
            "sender_id": self.settings.SMS_SENDER,
            "phonenumber": format_phone(phone),
            "textmessage": text,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.settings.SMS_API_URL, json=payload,
                                       headers={"Accept": "application/json"})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"SMS gateway error: {e}")

        if data.get("status") == "S":
            logger.info(f"SMS sent to {phone}", extra={'extra_fields': {'message_id': data.get("message_id")}})
        else:
            logger.warning(f"SMS to {phone} rejected: {data.get('remarks') or 'unknown error'}")


class LoggingSmsSink:
    """Used when no SMS gateway is configured."""

    def send_sms(self, phone: str, text: str) -> None:
        logger.info(f"SMS gateway not configured, dropping message to {phone}")


def build_sms_sink(settings: Settings):
    if settings.SMS_API_URL:
        return HttpSmsGateway(settings)
    return LoggingSmsSink()
