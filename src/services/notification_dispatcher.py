"""Customer notification dispatch with a durable message log.

Every notification attempt is written to ``message_logs`` before the
provider is called, so a message that was never transmitted is still on
record with its full rendered body. Real sends happen only when the
provider is configured and the destination normalizes to E.164.

The dispatcher commits its own log rows (like the write-back worker):
the log must survive even if the caller later rolls back.
"""

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.models import (
    MessageLog,
    MessageProvider,
    SendStatus,
    Shipment,
    utc_now_iso,
)
from src.services.template_renderer import (
    build_template_vars,
    find_enabled_template,
    render_template,
)
from src.services.whatsapp_client import WhatsAppProvider, normalize_e164_phone
from src.utils.redaction import mask_phone, sanitize_error_message

logger = logging.getLogger(__name__)

FAILED_PROVIDER_STATUSES = frozenset({SendStatus.failed.value, SendStatus.undelivered.value})
SENT_PROVIDER_STATUSES = frozenset({SendStatus.sent.value, SendStatus.delivered.value})


class NotificationDispatcher:
    """Decide between send and log-only, and record the outcome."""

    def __init__(self, db: Session, provider: WhatsAppProvider | None) -> None:
        self.db = db
        self.provider = provider

    def _should_send(self, to_e164: str | None) -> bool:
        return bool(self.provider is not None and self.provider.is_configured() and to_e164)

    def dispatch(
        self,
        org_id: str,
        shipment_id: str,
        template_id: str | None,
        to_phone: str,
        body: str,
        status: str,
    ) -> MessageLog | None:
        """Log and, when possible, send one notification.

        Args:
            org_id: Owning organization.
            shipment_id: Shipment the message is about.
            template_id: Template used to render body, if any.
            to_phone: Customer phone as stored.
            body: Fully rendered message text.
            status: Shipment status the message announces.

        Returns:
            The message log row, or None when this shipment was already
            notified for a status that may only be announced once.
        """
        to_e164 = normalize_e164_phone(to_phone)
        should_send = self._should_send(to_e164)

        log_row = MessageLog(
            org_id=org_id,
            shipment_id=shipment_id,
            template_id=template_id,
            to_phone=to_phone,
            provider=(
                MessageProvider.twilio_whatsapp.value
                if should_send
                else MessageProvider.log.value
            ),
            send_status=SendStatus.queued.value if should_send else SendStatus.logged.value,
            body=body,
            status=status,
            sent_at=utc_now_iso(),
            error=None,
        )
        self.db.add(log_row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Shipment %s already notified for status %s; skipping", shipment_id, status
            )
            return None

        if not should_send:
            logger.info(
                "Logged %s notification for shipment %s (not sent to %s)",
                status,
                shipment_id,
                mask_phone(to_phone),
            )
            return log_row

        try:
            result = self.provider.send(to_e164, body)
        except Exception as e:
            logger.warning(
                "WhatsApp send failed for shipment %s: %s", shipment_id, e
            )
            log_row.send_status = SendStatus.failed.value
            log_row.error = sanitize_error_message(str(e)) or "Send failed"
        else:
            log_row.provider_message_id = result.provider_message_id
            log_row.send_status = result.status
            log_row.error = None
            log_row.sent_at = utc_now_iso()
        self.db.commit()
        return log_row


def notify_status(
    db: Session,
    provider: WhatsAppProvider | None,
    shipment: Shipment,
    status: str,
    note: str | None = None,
    tracking_url: str = "",
) -> MessageLog | None:
    """Render the organization's template for status and dispatch it.

    Returns None when no enabled template exists, the customer has no
    phone, or the notification was already sent.
    """
    template = find_enabled_template(db, shipment.org_id, status)
    if template is None:
        logger.debug("No enabled %s template for org %s", status, shipment.org_id)
        return None

    customer = shipment.customer
    if customer is None or not customer.phone:
        return None

    variables = build_template_vars(
        customer_name=customer.name,
        tracking_code=shipment.tracking_code,
        destination=shipment.destination,
        status=status,
        note=note or "",
        tracking_url=tracking_url,
    )
    body = render_template(template.body, variables)
    return NotificationDispatcher(db, provider).dispatch(
        org_id=shipment.org_id,
        shipment_id=shipment.id,
        template_id=template.id,
        to_phone=customer.phone,
        body=body,
        status=status,
    )


def apply_provider_status(
    db: Session,
    provider_message_id: str,
    status: str,
    error_code: str | None = None,
    error_message: str | None = None,
) -> int:
    """Apply an out-of-band delivery status to matching log rows.

    Failed and undelivered statuses record the provider error; any other
    status clears it. Sent and delivered stamp sent_at.

    Returns:
        Number of log rows updated. The caller commits.
    """
    normalized = (status or "").strip().lower()
    if not provider_message_id or not normalized:
        return 0

    values: dict = {"send_status": normalized, "updated_at": utc_now_iso()}
    if normalized in FAILED_PROVIDER_STATUSES:
        reason = " ".join(part for part in (error_code, error_message) if part)
        values["error"] = sanitize_error_message(reason) or "Delivery failed"
    else:
        values["error"] = None
    if normalized in SENT_PROVIDER_STATUSES:
        values["sent_at"] = utc_now_iso()

    result = db.execute(
        update(MessageLog)
        .where(MessageLog.provider_message_id == provider_message_id)
        .values(**values)
    )
    logger.info(
        "Provider status %s applied to %d message(s) for sid %s",
        normalized,
        result.rowcount,
        provider_message_id,
    )
    return result.rowcount
