"""
E-mail notification sinks.

Responsibility:
    Turn a kernel ``Notification`` into an e-mail and deliver it over SMTP.
    Recipients are the configured addresses for each recipient role plus
    the active profiles the identity directory lists for that role.

Failure modes:
    - SMTP errors propagate out of ``send``; the dispatcher logs and drops
      them.  A notification never affects the committed transition.
    - Without SMTP credentials nothing is sent; an info record is logged.
"""

from __future__ import annotations

import smtplib
import ssl
from collections.abc import Callable, Mapping
from email.message import EmailMessage
from email.utils import formataddr

from inspex_config.schema import SmtpSettings
from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import Notification, NotificationKind
from inspex_kernel.domain.ports import IdentityDirectory, ObjectStorage
from inspex_kernel.exceptions import StorageError
from inspex_kernel.logging_config import get_logger

logger = get_logger("services.email")

SUBJECT_PREFIX = "INSPEX: "

FOOTER = "This is an automated notification from the INSPEX Refuge Bay Door Inspection System."

_HEADLINES: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.INSPECTION_COMPLETED: (
        "Door Ready for Certification",
        "A refuge bay door has completed inspection and is ready for your review.",
    ),
    NotificationKind.CERTIFIED: (
        "Door Certified - Ready for Release",
        "The door below has been certified and is waiting to be released to the client.",
    ),
    NotificationKind.REJECTED: (
        "Door Rejected",
        "The door below was rejected during engineering review and needs re-inspection.",
    ),
    NotificationKind.RELEASED: (
        "Certificate Ready for Download",
        "The certificate for the door below is ready for download.",
    ),
    NotificationKind.CLIENT_REJECTED: (
        "Certificate Rejected by Client",
        "The client rejected the certificate for the door below.",
    ),
}


def render_email(notification: Notification) -> tuple[str, str]:
    """Return ``(subject, plain-text body)`` for a notification."""
    asset = notification.asset
    headline, lead = _HEADLINES[notification.kind]
    subject = f"{SUBJECT_PREFIX}{headline} - {asset.serial_number}"

    lines = [
        headline,
        "",
        lead,
        "",
        "Door Details:",
        f"  Serial Number: {asset.serial_number}",
        f"  Drawing Number: {asset.drawing_number or 'N/A'}",
        f"  PO Number: {asset.po_number or 'N/A'}",
        f"  Size: {asset.size}M",
        f"  Pressure: {asset.pressure_kpa} kPa",
        f"  Job Number: {asset.job_number or 'N/A'}",
        f"  Action by: {notification.actor.label}",
    ]
    details = notification.details
    if details.get("reason"):
        lines.append(f"  Reason: {details['reason']}")
    if details.get("comments"):
        lines.append(f"  Client comments: {details['comments']}")
    if details.get("engineer"):
        lines.append(f"  Certified By: {details['engineer']}")
    if details.get("expected_by"):
        lines.append(f"  Action expected by: {details['expected_by']}")
    lines += ["", "Please log in to the INSPEX system to continue.", "", FOOTER]
    return subject, "\n".join(lines)


class SmtpNotificationSink:
    """Implements ``NotificationSink`` over SMTP (implicit TLS or STARTTLS)."""

    def __init__(
        self,
        settings: SmtpSettings,
        recipients: Mapping[str, tuple[str, ...]] | None = None,
        identity: IdentityDirectory | None = None,
        storage: ObjectStorage | None = None,
        smtp_factory: Callable[[], smtplib.SMTP] | None = None,
    ):
        self.settings = settings
        self.recipients = dict(recipients or {})
        self.identity = identity
        self.storage = storage
        self._smtp_factory = smtp_factory or self._connect

    def addresses_for(self, roles: frozenset[ActorRole]) -> list[str]:
        found: list[str] = []
        for role in sorted(roles, key=lambda r: r.value):
            found.extend(self.recipients.get(role.value, ()))
            if self.identity is not None:
                found.extend(p.email for p in self.identity.list_by_role(role) if p.email)
        # keep first occurrence order
        return list(dict.fromkeys(found))

    def build_message(self, notification: Notification, to: list[str]) -> EmailMessage:
        subject, body = render_email(notification)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.settings.from_name, self.settings.user or ""))
        message["To"] = ", ".join(to)
        message.set_content(body)

        if notification.attachment_key and self.storage is not None:
            try:
                pdf = self.storage.get(notification.attachment_key)
            except StorageError:
                logger.warning(
                    "email_attachment_unavailable",
                    extra={"storage_key": notification.attachment_key},
                )
            else:
                message.add_attachment(
                    pdf,
                    maintype="application",
                    subtype="pdf",
                    filename=notification.attachment_key.rsplit("/", 1)[-1],
                )
        return message

    def send(self, notification: Notification) -> None:
        if not self.settings.has_credentials:
            logger.info(
                "email_not_configured",
                extra={"kind": notification.kind.value},
            )
            return
        to = self.addresses_for(notification.recipient_roles)
        if not to:
            logger.info(
                "email_no_recipients",
                extra={
                    "kind": notification.kind.value,
                    "roles": sorted(r.value for r in notification.recipient_roles),
                },
            )
            return

        message = self.build_message(notification, to)
        with self._smtp_factory() as smtp:
            if self.settings.user and self.settings.password:
                smtp.login(self.settings.user, self.settings.password)
            smtp.send_message(message)
        logger.info(
            "email_sent",
            extra={"kind": notification.kind.value, "recipient_count": len(to)},
        )

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.settings.ssl:
            return smtplib.SMTP_SSL(self.settings.host, self.settings.port, context=context, timeout=30)
        smtp = smtplib.SMTP(self.settings.host, self.settings.port, timeout=30)
        smtp.starttls(context=context)
        return smtp


class LoggingNotificationSink:
    """Writes each notification to the log instead of delivering it."""

    def send(self, notification: Notification) -> None:
        subject, _ = render_email(notification)
        logger.info(
            "notification_logged",
            extra={
                "kind": notification.kind.value,
                "subject": subject,
                "roles": sorted(r.value for r in notification.recipient_roles),
            },
        )
