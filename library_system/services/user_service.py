from flask import current_app
from sqlalchemy.exc import IntegrityError

from library_system.errors import Conflict, NotFound, ValidationError
from library_system.extensions import db
from library_system.models.transaction import OPEN_STATUSES, OVERDUE, STATUSES, Transaction
from library_system.models.user import ROLES
from library_system.repositories.transaction_repo import TransactionRepo
from library_system.repositories.user_repo import UserRepo
from library_system.services.transaction_service import TransactionService
from library_system.utils import validators as v

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


def _address(value):
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("address must be an object")
    return {k: v.clean_str(value.get(k), k, 100) for k in ADDRESS_FIELDS if value.get(k) is not None}


class UserService:
    @staticmethod
    def get_user(user_id: int):
        user = UserRepo.get_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        return user

    @staticmethod
    def _apply(user, data: dict, fields):
        if "first_name" in fields and "first_name" in data:
            user.first_name = v.clean_str(data["first_name"], "first_name", 50, required=True)
        if "last_name" in fields and "last_name" in data:
            user.last_name = v.clean_str(data["last_name"], "last_name", 50, required=True)
        if "phone" in fields and "phone" in data:
            phone = v.phone(data["phone"])
            other = UserRepo.get_by_phone(phone)
            if other and other.id != user.id:
                raise Conflict("Phone number already in use")
            if phone != user.phone:
                user.phone = phone
                user.is_phone_verified = False
        if "email" in fields and "email" in data:
            email = v.email(data["email"])
            other = UserRepo.get_by_email(email)
            if other and other.id != user.id:
                raise Conflict("Email already in use")
            user.email = email
        if "address" in fields and "address" in data:
            user.address = _address(data["address"])
        if "role" in fields and "role" in data:
            user.role = v.one_of(data["role"], "role", ROLES) or user.role
        if "is_active" in fields and "is_active" in data:
            is_active = v.to_bool(data["is_active"], "is_active")
            if is_active is False:
                UserService._ensure_no_open_transactions(user, "Cannot deactivate account with active book transactions")
            if is_active is not None:
                user.is_active = is_active

        try:
            UserRepo.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("Email or phone number already in use")
        return user

    @staticmethod
    def update_profile(user, data: dict):
        return UserService._apply(user, data, ("first_name", "last_name", "phone", "address"))

    @staticmethod
    def admin_update(actor, user_id: int, data: dict):
        user = UserService.get_user(user_id)
        if actor.id == user.id and data.get("role") and data["role"] != user.role:
            raise ValidationError("Cannot change your own role")
        UserService._apply(
            user, data, ("first_name", "last_name", "email", "phone", "role", "is_active", "address"),
        )
        current_app.logger.info(f"[users] admin={actor.id} updated user={user.id}")
        return user

    @staticmethod
    def change_password(user, current_password: str, new_password: str):
        if not current_password:
            raise ValidationError("Current password is required")
        new_password = v.password(new_password, "New password")
        if not user.check_password(current_password):
            raise ValidationError("Current password is incorrect")
        user.set_password(new_password)
        UserRepo.commit()
        current_app.logger.info(f"[users] password changed user={user.id}")

    @staticmethod
    def _ensure_no_open_transactions(user, message: str):
        if TransactionRepo.count_for_user(user.id, OPEN_STATUSES) > 0:
            raise Conflict(message)

    @staticmethod
    def deactivate_account(user, password: str):
        if not password:
            raise ValidationError("Password is required for account deactivation")
        if not user.check_password(password):
            raise ValidationError("Password is incorrect")
        UserService._ensure_no_open_transactions(user, "Cannot deactivate account with active book transactions")
        user.is_active = False
        UserRepo.commit()
        current_app.logger.info(f"[users] user={user.id} deactivated own account")

    @staticmethod
    def admin_deactivate(actor, user_id: int):
        if actor.id == user_id:
            raise ValidationError("Cannot delete your own account")
        user = UserService.get_user(user_id)
        UserService._ensure_no_open_transactions(user, "Cannot delete user with active book transactions")
        user.is_active = False
        UserRepo.commit()
        current_app.logger.info(f"[users] admin={actor.id} deactivated user={user.id}")
        return user

    @staticmethod
    def borrowing_history(user, args):
        page, limit = v.pagination(args)
        status = v.one_of(args.get("status"), "status", STATUSES)
        return TransactionService.list_transactions(status=status, user_id=user.id, page=page, limit=limit)

    @staticmethod
    def current_books(user):
        return TransactionService.current_books(user.id)

    @staticmethod
    def stats(user) -> dict:
        TransactionService.refresh_overdue(user_id=user.id)
        mine = Transaction.user_id == user.id
        return {
            "total_borrowed": TransactionRepo.count(mine),
            "currently_borrowed": TransactionRepo.count(mine, Transaction.status.in_(OPEN_STATUSES)),
            "overdue_books": TransactionRepo.count(mine, Transaction.status == OVERDUE),
            "total_fines": float(TransactionRepo.sum_fines(mine)),
        }
