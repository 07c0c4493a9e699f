"""
Twilio SMS Service
Sends plain-text SMS through the Twilio REST API.
"""

import re

import httpx

from dealwatch.config import settings
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"
REQUEST_TIMEOUT = 10  # seconds

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


class SmsServiceError(Exception):
    """Raised when an SMS could not be handed to Twilio."""

    def __init__(self, message: str, status_code: int | None = None, error_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class TwilioSmsService:
    """SMS delivery via Twilio; disabled unless the SMS feature is switched on."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        enabled: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_PHONE_NUMBER
        self.enabled = enabled if enabled is not None else settings.SMS_ENABLED
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT), transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def close(self) -> None:
        await self._client.aclose()

    async def send_message(self, to: str, body: str) -> str | None:
        """
        Send one SMS.

        Returns:
            Twilio message SID, or None when the SMS feature is disabled

        Raises:
            SmsServiceError: invalid input, missing credentials, or a
                Twilio/transport failure
        """
        if not self.enabled:
            logger.info("SMS feature disabled, skipping send", to=to, body_length=len(body or ""))
            return None

        if not self.configured:
            raise SmsServiceError("Twilio client not configured. Check credentials.")

        if not to or not body:
            raise SmsServiceError("Missing required parameters: " + ("phone number" if not to else "message"))

        if not E164_PATTERN.match(to):
            raise SmsServiceError(f"Invalid phone number format: {to}")

        url = f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = await self._client.post(
                url,
                auth=(self.account_sid, self.auth_token),
                data={"To": to, "From": self.from_number, "Body": body},
            )
        except httpx.HTTPError as e:
            logger.error("Twilio request failed", to=to, error=str(e))
            raise SmsServiceError(f"Twilio request failed: {e}") from e

        if response.status_code in (200, 201):
            result = response.json()
            message_sid = result.get("sid")
            logger.info("SMS sent successfully", to=to, message_sid=message_sid, status=result.get("status"))
            return message_sid

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_message = error_data.get("message", "Unknown error")
        error_code = error_data.get("code")

        logger.error("Twilio API error", to=to, status_code=response.status_code, error_code=error_code, error=error_message)
        raise SmsServiceError(
            f"Twilio API error: {error_message}", status_code=response.status_code, error_code=error_code
        )
