"""
Notifier used by the expiration engine.

Composes the Brevo email client and the Twilio SMS client behind the
narrow send_email / send_sms interface. Both methods raise on failure; the
engine decides what a failure means.
"""

from typing import Any

from dealwatch.infrastructure.observability.logging import get_logger
from dealwatch.services.brevo_email_service import BrevoEmailService
from dealwatch.services.twilio_sms_service import TwilioSmsService

from .templates import deal_expiration_sms

logger = get_logger(__name__)

SMS_KIND_DEAL_EXPIRATION = "deal_expiration"
SMS_KIND_GENERIC = "generic"


class DealNotifier:
    def __init__(self, email_service: BrevoEmailService, sms_service: TwilioSmsService):
        self.email_service = email_service
        self.sms_service = sms_service

    async def send_email(self, to: str | list[str], subject: str, html: str) -> dict[str, Any]:
        return await self.email_service.send_email(to, subject, html)

    async def send_sms(self, to: str, payload: dict[str, Any]) -> None:
        """
        Send one SMS built from ``payload``.

        Payload kinds:
            deal_expiration: {"title", "time_remaining", "expiry_date"}
            generic: {"message"}
        """
        kind = payload.get("kind")
        if kind == SMS_KIND_DEAL_EXPIRATION:
            body = deal_expiration_sms(payload["title"], payload["time_remaining"], payload["expiry_date"])
        elif kind == SMS_KIND_GENERIC:
            body = payload["message"]
        else:
            raise ValueError(f"Unknown SMS payload kind: {kind}")

        message_sid = await self.sms_service.send_message(to, body)
        logger.debug("Deal SMS dispatched", kind=kind, message_sid=message_sid)

    async def close(self) -> None:
        await self.email_service.close()
        await self.sms_service.close()
