# library_system/services/sms_service.py
from __future__ import annotations

from flask import current_app
from twilio.rest import Client


class SmsService:
    @staticmethod
    def _client() -> Client | None:
        client = current_app.extensions.get("twilio")
        if client is not None:
            return client

        sid = current_app.config.get("TWILIO_ACCOUNT_SID")
        token = current_app.config.get("TWILIO_AUTH_TOKEN")
        if not sid or not token:
            return None

        client = Client(sid, token)
        current_app.extensions["twilio"] = client
        return client

    @staticmethod
    def send_sms(to_phone: str, body: str) -> tuple[bool, str | None]:
        """
        return: (success, error_text)
        """
        if not current_app.config.get("SMS_ENABLED", True):
            return False, "sms_disabled"

        client = SmsService._client()
        if client is None:
            current_app.logger.info("[sms] Twilio credentials missing, SMS skipped")
            return False, "sms_not_configured"

        try:
            message = client.messages.create(
                body=body,
                from_=current_app.config.get("TWILIO_PHONE_NUMBER"),
                to=to_phone,
            )
            current_app.logger.debug(f"[sms] Sent {message.sid} to {to_phone}")
            return True, None
        except Exception as e:
            current_app.logger.warning(f"[sms] Could not send to {to_phone}: {e}")
            return False, str(e)
