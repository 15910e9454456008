from sqlalchemy import func, or_, update

from library_system.extensions import db
from library_system.models.user import User


class UserRepo:
    @staticmethod
    def get_by_email(email: str):
        return User.query.filter(func.lower(User.email) == email.lower()).first()

    @staticmethod
    def get_by_phone(phone: str):
        return User.query.filter_by(phone=phone).first()

    @staticmethod
    def get_by_email_or_phone(value: str):
        return User.query.filter(or_(func.lower(User.email) == value.lower(), User.phone == value)).first()

    @staticmethod
    def get_by_id(user_id: int):
        return db.session.get(User, user_id)

    @staticmethod
    def get_for_update(user_id: int):
        # row lock on backends that support it; serializes issue() per borrower
        return db.session.get(User, user_id, with_for_update=True)

    @staticmethod
    def get_by_email_token(token: str, at):
        return User.query.filter(
            User.email_verification_token == token,
            User.email_verification_expires > at,
        ).first()

    @staticmethod
    def get_by_phone_otp(phone: str, otp: str, at):
        return User.query.filter(
            User.phone == phone,
            User.phone_verification_token == otp,
            User.phone_verification_expires > at,
        ).first()

    @staticmethod
    def get_by_reset_token(token: str, at):
        return User.query.filter(
            User.password_reset_token == token,
            User.password_reset_expires > at,
        ).first()

    @staticmethod
    def membership_number_taken(number: str) -> bool:
        return User.query.filter_by(membership_number=number).first() is not None

    @staticmethod
    def search(search=None, role=None, is_active=None, page: int = 1, limit: int = 10):
        q = User.query
        if role:
            q = q.filter(User.role == role)
        if is_active is not None:
            q = q.filter(User.is_active.is_(is_active))
        if search:
            like = f"%{search}%"
            q = q.filter(or_(
                User.first_name.ilike(like),
                User.last_name.ilike(like),
                User.email.ilike(like),
                User.phone.ilike(like),
                User.membership_number.ilike(like),
            ))
        return q.order_by(User.created_at.desc(), User.id.desc()).paginate(
            page=page, per_page=limit, error_out=False
        )

    @staticmethod
    def list_active():
        return User.query.filter(User.is_active.is_(True)).all()

    @staticmethod
    def count(*criteria) -> int:
        return db.session.scalar(db.select(func.count(User.id)).where(*criteria)) or 0

    @staticmethod
    def create(user: User):
        db.session.add(user)
        db.session.commit()
        return user

    @staticmethod
    def commit():
        db.session.commit()

    @staticmethod
    def purge_expired_tokens(at) -> dict:
        """Clears expired verification / reset tokens; returns affected row counts."""
        email = db.session.execute(
            update(User)
            .where(User.email_verification_expires < at, User.is_email_verified.is_(False))
            .values(email_verification_token=None, email_verification_expires=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        phone = db.session.execute(
            update(User)
            .where(User.phone_verification_expires < at, User.is_phone_verified.is_(False))
            .values(phone_verification_token=None, phone_verification_expires=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        reset = db.session.execute(
            update(User)
            .where(User.password_reset_expires < at)
            .values(password_reset_token=None, password_reset_expires=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()
        return {"email": email, "phone": phone, "password_reset": reset}
