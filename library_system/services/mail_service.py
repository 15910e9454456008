# library_system/services/mail_service.py
from __future__ import annotations

from flask import current_app
from flask_mail import Message

from library_system.extensions import mail


class MailService:
    @staticmethod
    def send_email(to_email: str, subject: str, body: str) -> tuple[bool, str | None]:
        """
        return: (success, error_text)
        """
        if not current_app.config.get("MAIL_ENABLED", True):
            return False, "mail_disabled"
        try:
            msg = Message(subject=subject, recipients=[to_email], body=body)
            mail.send(msg)
            return True, None
        except Exception as e:
            current_app.logger.warning(f"[mail] Could not send to {to_email}: {e}")
            return False, str(e)
