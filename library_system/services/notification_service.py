# library_system/services/notification_service.py
from __future__ import annotations

from flask import current_app

from library_system.extensions import db
from library_system.models.notification_log import NotificationLog
from library_system.repositories.notification_repo import NotificationRepo
from library_system.services.mail_service import MailService
from library_system.services.sms_service import SmsService

EMAIL = "email"
SMS = "sms"

# kind -> {channel: (subject, body)}; sms entries have no subject
TEMPLATES = {
    "book_issued": {
        EMAIL: (
            "Library: Book issued",
            "Hello {name},\n\n'{title}' has been issued to you.\nDue date: {due_date}\n\n"
            "Please return it on time to avoid late fees.\n",
        ),
        SMS: (None, 'Library: "{title}" issued to you, due {due_date}.'),
    },
    "book_returned": {
        EMAIL: (
            "Library: Book returned",
            "Hello {name},\n\n'{title}' has been returned. Thank you!\nFine due: ${fine}\n",
        ),
    },
    "book_renewed": {
        EMAIL: (
            "Library: Book renewed",
            "Hello {name},\n\n'{title}' has been renewed (renewal {renewal_count}).\n"
            "New due date: {due_date}\n",
        ),
        SMS: (None, 'Library: "{title}" renewed, new due date {due_date}.'),
    },
    "due_reminder": {
        EMAIL: (
            "Library: Book due soon",
            "Hello {name},\n\nThis is a reminder that '{title}' is due on {due_date}.\n\n"
            "Please return or renew it on time to avoid late fees.\n",
        ),
        SMS: (
            None,
            'Reminder: Your book "{title}" is due on {due_date}. '
            "Please return it on time to avoid late fees.",
        ),
    },
    "overdue_notice": {
        EMAIL: (
            "Library: Overdue book",
            "Hello {name},\n\n'{title}' is {days_overdue} day(s) overdue.\nCurrent fine: ${fine}\n\n"
            "Please return it immediately.\n",
        ),
        SMS: (
            None,
            'URGENT: Your book "{title}" is {days_overdue} days overdue. Fine: ${fine}. '
            "Please return immediately.",
        ),
    },
    "email_verification": {
        EMAIL: (
            "Verify Your Email Address",
            "Hello {name},\n\nPlease verify your email address by opening the link below:\n{link}\n\n"
            "This link will expire in 24 hours.\n"
            "If you didn't create an account, please ignore this email.\n",
        ),
    },
    "phone_otp": {
        SMS: (
            None,
            "Your Library Management System verification code is: {otp}. "
            "This code will expire in 10 minutes.",
        ),
    },
    "password_reset": {
        EMAIL: (
            "Password Reset Request",
            "Hello {name},\n\nUse the link below to reset your password:\n{link}\n\n"
            "This link will expire in 1 hour. If you didn't request it, ignore this email.\n",
        ),
    },
    "account_welcome": {
        SMS: (
            None,
            "Welcome {name}! Your Library Management System account has been verified. "
            "You can now access all library services.",
        ),
    },
    "announcement": {
        EMAIL: ("{subject}", "Hello {name},\n\n{message}\n"),
        SMS: (None, "{subject}: {message}"),
    },
}


class NotificationService:
    """
    Best-effort email/SMS gateway. `send` never raises: every attempt is
    written to notification_logs and failures are only logged.
    """

    @staticmethod
    def render(kind: str, channel: str, data: dict) -> tuple[str | None, str]:
        subject, body = TEMPLATES[kind][channel]
        return (subject.format(**data) if subject else None), body.format(**data)

    @staticmethod
    def send(kind: str, contact: dict, data: dict, channels=None,
             transaction_id: int | None = None, user_id: int | None = None) -> bool:
        """
        contact: {"email": ..., "phone": ...}
        channels: subset of ("email", "sms"); defaults to every channel the template has.
        return: True if at least one channel delivered.
        """
        try:
            templates = TEMPLATES[kind]
        except KeyError:
            current_app.logger.error(f"[notify] Unknown notification kind: {kind}")
            return False

        delivered = False
        for channel in templates:
            if channels is not None and channel not in channels:
                continue
            try:
                delivered |= NotificationService._deliver(
                    kind, channel, contact, data, transaction_id, user_id
                )
            except Exception as e:
                current_app.logger.warning(f"[notify] {kind}/{channel} failed: {e}")
        return delivered

    @staticmethod
    def _deliver(kind, channel, contact, data, transaction_id, user_id) -> bool:
        recipient = contact.get("email") if channel == EMAIL else contact.get("phone")
        subject, body = NotificationService.render(kind, channel, data)

        if not recipient:
            ok, err = False, f"missing_{channel}"
        elif channel == EMAIL:
            ok, err = MailService.send_email(recipient, subject, body)
        else:
            ok, err = SmsService.send_sms(recipient, body)

        if not ok:
            current_app.logger.info(f"[notify] {kind}/{channel} to {recipient} not delivered: {err}")

        NotificationService._log(
            kind=kind, channel=channel, recipient=recipient, message=body,
            success=ok, error=err, transaction_id=transaction_id, user_id=user_id,
        )
        return ok

    @staticmethod
    def _log(kind, channel, recipient, message, success, error, transaction_id, user_id):
        try:
            NotificationRepo.log(NotificationLog(
                transaction_id=transaction_id,
                user_id=user_id,
                kind=kind,
                channel=channel,
                recipient=recipient,
                message=message[:1000],
                success=bool(success),
                error_message=(error or None) and error[:500],
            ))
        except Exception as e:
            db.session.rollback()
            current_app.logger.warning(f"[notify] Could not write notification log: {e}")

    # Transaction helpers -------------------------------------------------

    @staticmethod
    def contact_of(user) -> dict:
        return {"email": user.email, "phone": user.phone}

    @staticmethod
    def notify_transaction(kind: str, tx, **extra) -> bool:
        user = tx.user
        if user is None:
            current_app.logger.warning(f"[notify] Transaction {tx.id} has no borrower, {kind} skipped")
            return False
        data = {
            "name": user.first_name,
            "title": tx.book.title if tx.book else f"Book #{tx.book_id}",
            "due_date": tx.due_date.strftime("%Y-%m-%d"),
            "fine": f"{tx.fine_amount:.2f}",
            "renewal_count": tx.renewal_count,
        }
        data.update(extra)
        return NotificationService.send(
            kind, NotificationService.contact_of(user), data,
            transaction_id=tx.id, user_id=user.id,
        )
