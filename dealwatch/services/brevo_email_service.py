"""
Transactional email delivery through the Brevo HTTP API.

Low-level client: takes rendered HTML and hands it to Brevo. Template
rendering lives with the features that send mail.
"""

import asyncio
from typing import Any

import httpx

from dealwatch.config import settings
from dealwatch.infrastructure.audit import audit_logger
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 1
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

DISABLED_MESSAGE_ID = "disabled"


class EmailServiceError(Exception):
    """Raised when an email could not be handed to the provider."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.recoverable = recoverable


def _normalize_recipients(to: str | list[str]) -> list[str]:
    addresses = [to] if isinstance(to, str) else list(to)
    seen: set[str] = set()
    recipients = []
    for address in addresses:
        address = (address or "").strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        recipients.append(address)
    return recipients


class BrevoEmailService:
    """
    Sends transactional email through Brevo.

    When the email feature is switched off the service logs what it would
    have sent and returns a placeholder id instead of calling the provider.
    """

    def __init__(
        self,
        api_key: str | None = None,
        sender_email: str | None = None,
        sender_name: str | None = None,
        enabled: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.BREVO_API_KEY
        self.sender_email = sender_email if sender_email is not None else settings.BREVO_SENDER_EMAIL
        self.sender_name = sender_name if sender_name is not None else settings.BREVO_SENDER_NAME
        self.enabled = enabled if enabled is not None else settings.EMAIL_ENABLED
        self._client = self._create_client(transport)

    def _create_client(self, transport: httpx.AsyncBaseTransport | None) -> httpx.AsyncClient:
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        "Brevo API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Brevo API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Brevo API retry loop exhausted")

    def _get_headers(self) -> dict:
        return {
            "api-key": self.api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def send_email(self, to: str | list[str], subject: str, html: str) -> dict[str, Any]:
        """
        Send one HTML email.

        Args:
            to: Recipient address or list of addresses
            subject: Subject line
            html: Rendered HTML body

        Returns:
            {"id": <provider message id>}

        Raises:
            EmailServiceError: configuration problems, provider rejections,
                or transport failures after retries
        """
        recipients = _normalize_recipients(to)
        if not recipients:
            raise EmailServiceError("No recipient address given", recoverable=False)

        if not self.enabled:
            logger.info(
                "Email feature disabled, skipping send",
                to=recipients,
                subject=subject,
                content_length=len(html or ""),
            )
            return {"id": DISABLED_MESSAGE_ID}

        if not self.api_key or not self.sender_email:
            raise EmailServiceError("Brevo email is not configured", recoverable=False)

        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": address} for address in recipients],
            "subject": subject,
            "htmlContent": html,
        }

        logger.info("Sending email", to=recipients, subject=subject, content_length=len(html or ""))

        try:
            response = await self._request_with_retry(
                "POST", BREVO_API_URL, json=payload, headers=self._get_headers()
            )
        except httpx.RequestError as e:
            await audit_logger.record(f"Failed to send email to {', '.join(recipients)}: {e}", "error")
            raise EmailServiceError(f"Brevo request failed: {e}") from e

        if response.is_success:
            data = response.json() if response.text else {}
            message_id = data.get("messageId")
            logger.info("Email sent successfully", message_id=message_id, to=recipients, subject=subject)
            await audit_logger.record(f"Email sent to {', '.join(recipients)}", "success")
            return {"id": message_id}

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {}
        error_code = error_data.get("code")
        error_message = error_data.get("message") or f"HTTP {response.status_code}"

        logger.error(
            "Brevo API rejected email",
            status_code=response.status_code,
            error_code=error_code,
            error=error_message,
            to=recipients,
        )
        await audit_logger.record(
            f"Failed to send email to {', '.join(recipients)}: {error_message}", "error"
        )
        raise EmailServiceError(
            f"Brevo API error: {error_message}",
            status_code=response.status_code,
            error_code=error_code,
            recoverable=response.status_code in RETRY_STATUS_CODES,
        )
