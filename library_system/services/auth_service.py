import secrets
from datetime import timedelta

from flask import current_app
from flask_jwt_extended import create_access_token, create_refresh_token
from sqlalchemy.exc import IntegrityError

from library_system.errors import AccountLocked, Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from library_system.extensions import db
from library_system.models.token_blocklist import TokenBlocklist
from library_system.models.user import User
from library_system.repositories.user_repo import UserRepo
from library_system.services.notification_service import EMAIL, NotificationService
from library_system.utils import validators as v
from library_system.utils.clock import now


def generate_otp() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def generate_membership_number(at) -> str:
    while True:
        number = f"LIB{at.year}{secrets.randbelow(1000000):06d}"
        if not UserRepo.membership_number_taken(number):
            return number


class AuthService:
    @staticmethod
    def _issue_tokens(user: User) -> dict:
        claims = {"role": user.role, "email": user.email}
        return {
            "token": create_access_token(identity=str(user.id), additional_claims=claims),
            "refresh_token": create_refresh_token(identity=str(user.id)),
        }

    @staticmethod
    def _send_email_verification(user: User):
        link = f"{current_app.config['CLIENT_URL']}/verify-email?token={user.email_verification_token}"
        NotificationService.send(
            "email_verification", NotificationService.contact_of(user),
            {"name": user.first_name, "link": link}, user_id=user.id,
        )

    @staticmethod
    def _send_phone_otp(user: User):
        NotificationService.send(
            "phone_otp", NotificationService.contact_of(user),
            {"otp": user.phone_verification_token}, user_id=user.id,
        )

    @staticmethod
    def _new_email_token(user: User, at):
        user.email_verification_token = secrets.token_hex(32)
        user.email_verification_expires = at + timedelta(hours=current_app.config["EMAIL_TOKEN_HOURS"])

    @staticmethod
    def _new_phone_otp(user: User, at):
        user.phone_verification_token = generate_otp()
        user.phone_verification_expires = at + timedelta(minutes=current_app.config["PHONE_OTP_MINUTES"])

    @staticmethod
    def register(data: dict) -> User:
        v.require_fields(data, "first_name", "last_name", "email", "phone", "password")
        email = v.email(data["email"])
        phone = v.phone(data["phone"])

        existing = UserRepo.get_by_email(email) or UserRepo.get_by_phone(phone)
        if existing:
            raise Conflict("Email already registered" if existing.email == email else "Phone number already registered")

        at = now()
        user = User(
            first_name=v.clean_str(data["first_name"], "first_name", 50, required=True),
            last_name=v.clean_str(data["last_name"], "last_name", 50, required=True),
            email=email,
            phone=phone,
            role="member",
            membership_number=generate_membership_number(at),
            created_at=at,
        )
        user.set_password(v.password(data["password"]))
        AuthService._new_email_token(user, at)
        AuthService._new_phone_otp(user, at)

        try:
            UserRepo.create(user)
        except IntegrityError:
            db.session.rollback()
            raise Conflict("Email or phone number already registered")

        current_app.logger.info(f"[auth] registered user={user.id} role={user.role}")
        AuthService._send_email_verification(user)
        AuthService._send_phone_otp(user)
        return user

    @staticmethod
    def login(email_or_phone: str, password: str):
        if not email_or_phone or not password:
            raise ValidationError("Email or phone and password are required")

        user = UserRepo.get_by_email_or_phone(email_or_phone.strip())
        if not user or not user.is_active:
            raise Unauthorized("Invalid credentials")

        at = now()
        if user.is_locked(at):
            raise AccountLocked("Account is temporarily locked due to too many failed login attempts")

        if not user.check_password(password):
            AuthService._register_failed_attempt(user, at)
            raise Unauthorized("Invalid credentials")

        if current_app.config["REQUIRE_VERIFICATION_FOR_LOGIN"] and not user.is_verified:
            raise Forbidden("Please verify your email or phone number before logging in")

        user.login_attempts = 0
        user.lock_until = None
        user.last_login = at
        UserRepo.commit()

        current_app.logger.info(f"[auth] login user={user.id}")
        return AuthService._issue_tokens(user), user

    @staticmethod
    def _register_failed_attempt(user: User, at):
        # an expired lock starts a fresh count
        if user.lock_until is not None and user.lock_until <= at:
            user.login_attempts = 0
            user.lock_until = None
        user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= current_app.config["MAX_LOGIN_ATTEMPTS"]:
            user.lock_until = at + timedelta(minutes=current_app.config["LOCK_DURATION_MINUTES"])
            current_app.logger.warning(f"[auth] user={user.id} locked after {user.login_attempts} failed logins")
        UserRepo.commit()

    @staticmethod
    def refresh(user_id: int) -> str:
        user = UserRepo.get_by_id(user_id)
        if not user or not user.is_active:
            raise Unauthorized("Account not found or deactivated")
        return create_access_token(identity=str(user.id), additional_claims={"role": user.role, "email": user.email})

    @staticmethod
    def verify_email(token: str):
        if not token:
            raise ValidationError("Verification token is required")
        user = UserRepo.get_by_email_token(token, now())
        if not user:
            raise ValidationError("Invalid or expired verification token")
        user.is_email_verified = True
        user.email_verification_token = None
        user.email_verification_expires = None
        UserRepo.commit()
        current_app.logger.info(f"[auth] email verified user={user.id}")
        return user

    @staticmethod
    def verify_phone(phone: str, otp: str):
        if not phone:
            raise ValidationError("Phone number is required")
        if not otp or len(str(otp)) != 6:
            raise ValidationError("OTP must be 6 digits")
        user = UserRepo.get_by_phone_otp(phone.strip(), str(otp), now())
        if not user:
            raise ValidationError("Invalid or expired OTP")
        user.is_phone_verified = True
        user.phone_verification_token = None
        user.phone_verification_expires = None
        UserRepo.commit()
        current_app.logger.info(f"[auth] phone verified user={user.id}")
        NotificationService.send(
            "account_welcome", NotificationService.contact_of(user), {"name": user.first_name}, user_id=user.id,
        )
        return user

    @staticmethod
    def resend_email_verification(email: str):
        user = UserRepo.get_by_email(v.email(email))
        if not user:
            raise NotFound("User not found")
        if user.is_email_verified:
            raise Conflict("Email is already verified")
        AuthService._new_email_token(user, now())
        UserRepo.commit()
        AuthService._send_email_verification(user)

    @staticmethod
    def resend_phone_verification(phone: str):
        user = UserRepo.get_by_phone(v.phone(phone))
        if not user:
            raise NotFound("User not found")
        if user.is_phone_verified:
            raise Conflict("Phone number is already verified")
        AuthService._new_phone_otp(user, now())
        UserRepo.commit()
        AuthService._send_phone_otp(user)

    @staticmethod
    def forgot_password(email: str):
        """Always succeeds from the caller's view so accounts cannot be probed."""
        user = UserRepo.get_by_email(v.email(email))
        if not user or not user.is_active:
            current_app.logger.info("[auth] password reset requested for unknown email")
            return
        at = now()
        user.password_reset_token = secrets.token_hex(32)
        user.password_reset_expires = at + timedelta(minutes=current_app.config["PASSWORD_RESET_MINUTES"])
        UserRepo.commit()
        link = f"{current_app.config['CLIENT_URL']}/reset-password?token={user.password_reset_token}"
        NotificationService.send(
            "password_reset", NotificationService.contact_of(user),
            {"name": user.first_name, "link": link}, channels=(EMAIL,), user_id=user.id,
        )

    @staticmethod
    def reset_password(token: str, new_password: str):
        if not token:
            raise ValidationError("Reset token is required")
        new_password = v.password(new_password)
        user = UserRepo.get_by_reset_token(token, now())
        if not user:
            raise ValidationError("Invalid or expired reset token")
        user.set_password(new_password)
        user.password_reset_token = None
        user.password_reset_expires = None
        user.login_attempts = 0
        user.lock_until = None
        UserRepo.commit()
        current_app.logger.info(f"[auth] password reset user={user.id}")

    @staticmethod
    def revoke(jti: str):
        db.session.add(TokenBlocklist(jti=jti, created_at=now()))
        db.session.commit()

    @staticmethod
    def is_revoked(jti: str) -> bool:
        return db.session.query(TokenBlocklist.id).filter_by(jti=jti).scalar() is not None

    @staticmethod
    def purge_revoked(before) -> int:
        """Drops blocklist rows old enough that the token they revoked has expired anyway."""
        removed = TokenBlocklist.query.filter(TokenBlocklist.created_at < before).delete(synchronize_session=False)
        db.session.commit()
        return removed
