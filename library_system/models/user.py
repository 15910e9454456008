from werkzeug.security import check_password_hash, generate_password_hash

from library_system.extensions import db
from library_system.utils.clock import utcnow

ROLES = ("admin", "member")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="member")
    membership_number = db.Column(db.String(20), unique=True, nullable=True, index=True)
    address = db.Column(db.JSON, nullable=True)

    is_email_verified = db.Column(db.Boolean, nullable=False, default=False)
    email_verification_token = db.Column(db.String(128), nullable=True, index=True)
    email_verification_expires = db.Column(db.DateTime, nullable=True)

    is_phone_verified = db.Column(db.Boolean, nullable=False, default=False)
    phone_verification_token = db.Column(db.String(6), nullable=True)
    phone_verification_expires = db.Column(db.DateTime, nullable=True)

    password_reset_token = db.Column(db.String(128), nullable=True, index=True)
    password_reset_expires = db.Column(db.DateTime, nullable=True)

    login_attempts = db.Column(db.Integer, nullable=False, default=0)
    lock_until = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_verified(self) -> bool:
        return bool(self.is_email_verified or self.is_phone_verified)

    def is_locked(self, at) -> bool:
        return self.lock_until is not None and self.lock_until > at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "membership_number": self.membership_number,
            "address": self.address,
            "is_email_verified": self.is_email_verified,
            "is_phone_verified": self.is_phone_verified,
            "is_active": self.is_active,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def summary(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "membership_number": self.membership_number,
        }
