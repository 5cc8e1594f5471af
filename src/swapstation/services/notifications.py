"""Notification dispatch to drivers and administrators.

Services queue requests on an :class:`Outbox` while their transaction runs;
callers flush the outbox after commit. Delivery is fire-and-forget: a failed
notification is logged and never reaches the operation that produced it.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import httpx
import structlog

from swapstation.config.settings import Settings
from swapstation.utils.exceptions import ConfigurationError, NotificationError
from swapstation.utils.retry import retry_with_backoff

logger = structlog.get_logger(__name__)

# Recipient standing for every configured administrator address
ADMIN_RECIPIENT = "admins"

BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_CANCELLED = "booking_cancelled"
BOOKING_AUTO_CANCELLED = "booking_auto_cancelled"
BATTERY_HEALTH_ALERT = "battery_health_alert"
MAINTENANCE_COMPLETED = "maintenance_completed"
VEHICLE_REGISTRATION_REJECTED = "vehicle_registration_rejected"

SUBJECTS = {
    BOOKING_CONFIRMED: "Your battery swap booking is confirmed",
    BOOKING_CANCELLED: "Your battery swap booking was cancelled",
    BOOKING_AUTO_CANCELLED: "Your battery swap booking expired",
    BATTERY_HEALTH_ALERT: "Battery health alert",
    MAINTENANCE_COMPLETED: "Battery maintenance completed",
    VEHICLE_REGISTRATION_REJECTED: "Your vehicle registration was not approved",
}


@dataclass
class NotificationRequest:
    """One message for one recipient."""

    recipient: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        return SUBJECTS.get(self.kind, self.kind.replace("_", " ").capitalize())


class Notifier(ABC):
    """Delivery channel for notification requests."""

    channel: str

    @abstractmethod
    async def send(self, request: NotificationRequest) -> None:
        """Deliver a request.

        Raises:
            NotificationError: If delivery failed.
        """
        pass


class LogNotifier(Notifier):
    """Writes notifications to the structured log only."""

    channel = "log"

    async def send(self, request: NotificationRequest) -> None:
        logger.info(
            "Notification",
            recipient=request.recipient,
            kind=request.kind,
            payload=request.payload,
        )


class EmailNotifier(Notifier):
    """Send notifications by email over SMTP."""

    channel = "email"

    def __init__(self, settings: Settings) -> None:
        """Initialize email notifier with settings."""
        if not settings.smtp_from_email:
            raise ConfigurationError("SWAP_SMTP_FROM_EMAIL is required for the email notifier")
        self.settings = settings

    def resolve_recipients(self, recipient: str) -> list[str]:
        if recipient == ADMIN_RECIPIENT:
            return self.settings.get_admin_email_list()
        return [recipient]

    def format_body(self, request: NotificationRequest) -> str:
        lines = [request.subject, ""]
        lines.extend(f"{key.replace('_', ' ')}: {value}" for key, value in request.payload.items())
        return "\n".join(lines)

    def _deliver(self, request: NotificationRequest, to_emails: list[str]) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[SwapStation] {request.subject}"
        msg["From"] = self.settings.smtp_from_email
        msg["To"] = ", ".join(to_emails)
        msg.attach(MIMEText(self.format_body(request), "plain"))

        try:
            if self.settings.smtp_use_tls:
                server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port)

            if self.settings.smtp_username and self.settings.smtp_password:
                password = self.settings.smtp_password.get_secret_value()
                server.login(self.settings.smtp_username, password)

            server.sendmail(self.settings.smtp_from_email, to_emails, msg.as_string())
            server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e

    async def send(self, request: NotificationRequest) -> None:
        to_emails = self.resolve_recipients(request.recipient)
        if not to_emails:
            logger.warning("No email recipients configured", kind=request.kind)
            return
        await asyncio.to_thread(self._deliver, request, to_emails)
        logger.info("Email notification sent", kind=request.kind, recipients=len(to_emails))


class WebhookNotifier(Notifier):
    """POST notifications as JSON to an HTTP endpoint."""

    channel = "webhook"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the webhook notifier.

        Args:
            settings: Application settings with ``webhook_url``.
            client: Optional HTTP client (a new one is created per request otherwise).
        """
        if not settings.webhook_url:
            raise ConfigurationError("SWAP_WEBHOOK_URL is required for the webhook notifier")
        self.settings = settings
        self.url = settings.webhook_url
        self._client = client

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    async def _post(self, body: dict[str, Any]) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.settings.webhook_timeout) as client:
                    response = await client.post(self.url, json=body)
        except httpx.TransportError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"Webhook returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

    async def send(self, request: NotificationRequest) -> None:
        await self._post(
            {
                "recipient": request.recipient,
                "template_kind": request.kind,
                "subject": request.subject,
                "payload": request.payload,
            }
        )
        logger.debug("Webhook notification sent", kind=request.kind)


def build_notifier(settings: Settings) -> Notifier:
    """Create the notifier selected by ``settings.notifier``."""
    if settings.notifier == "email":
        return EmailNotifier(settings)
    if settings.notifier == "webhook":
        return WebhookNotifier(settings)
    return LogNotifier()


async def notify_safely(notifier: Notifier, request: NotificationRequest) -> bool:
    """Deliver a request, logging instead of raising on failure.

    Returns:
        True if the notifier accepted the request.
    """
    try:
        await notifier.send(request)
        return True
    except Exception as e:
        logger.error(
            "Notification delivery failed",
            channel=notifier.channel,
            recipient=request.recipient,
            kind=request.kind,
            error=str(e),
        )
        return False


class Outbox:
    """Notification requests produced inside one transaction."""

    def __init__(self) -> None:
        self.requests: list[NotificationRequest] = []

    def __len__(self) -> int:
        return len(self.requests)

    def add(self, recipient: str, kind: str, **payload: Any) -> None:
        self.requests.append(NotificationRequest(recipient, kind, payload))

    def clear(self) -> None:
        self.requests.clear()

    async def flush(self, notifier: Notifier) -> int:
        """Deliver and drop all queued requests.

        Returns:
            Number of requests delivered.
        """
        requests, self.requests = self.requests, []
        sent = 0
        for request in requests:
            if await notify_safely(notifier, request):
                sent += 1
        return sent
