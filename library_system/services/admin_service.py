from collections import Counter
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from library_system.errors import ValidationError
from library_system.extensions import db
from library_system.models.book import Book
from library_system.models.transaction import OPEN_STATUSES, OVERDUE, Transaction
from library_system.models.user import ROLES, User
from library_system.repositories.book_repo import BookRepo
from library_system.repositories.transaction_repo import TransactionRepo
from library_system.repositories.user_repo import UserRepo
from library_system.services.notification_service import EMAIL, SMS, NotificationService
from library_system.services.transaction_service import TransactionService
from library_system.services.user_service import UserService
from library_system.utils import validators as v
from library_system.utils.clock import now

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
NOTIFY_CHANNELS = {"email": (EMAIL,), "sms": (SMS,), "both": (EMAIL, SMS)}


def _month_bounds(at):
    start = at.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _per_day(timestamps) -> list:
    counts = Counter(ts.date().isoformat() for ts in timestamps)
    return [{"date": day, "count": counts[day]} for day in sorted(counts)]


class AdminService:
    @staticmethod
    def list_users(args):
        page, limit = v.pagination(args)
        return UserRepo.search(
            search=(args.get("search") or "").strip() or None,
            role=v.one_of(args.get("role"), "role", ROLES),
            is_active=v.to_bool(args.get("is_active"), "is_active"),
            page=page,
            limit=limit,
        )

    @staticmethod
    def user_detail(user_id: int):
        user = UserService.get_user(user_id)
        return user, TransactionRepo.list_recent(limit=10, user_id=user.id)

    @staticmethod
    def dashboard() -> dict:
        TransactionService.refresh_overdue()
        at = now()
        month_start, _ = _month_bounds(at)

        statistics = {
            "total_users": UserRepo.count(User.is_active.is_(True)),
            "total_books": BookRepo.count(Book.is_active.is_(True)),
            "total_transactions": TransactionRepo.count(),
            "active_transactions": TransactionRepo.count(Transaction.status.in_(OPEN_STATUSES)),
            "overdue_transactions": TransactionRepo.count(Transaction.status == OVERDUE),
            "new_users_this_month": UserRepo.count(User.is_active.is_(True), User.created_at >= month_start),
            "new_books_this_month": BookRepo.count(Book.is_active.is_(True), Book.created_at >= month_start),
            "total_fines": float(TransactionRepo.sum_fines()),
        }
        return {
            "statistics": statistics,
            "recent_activities": [tx.to_dict(at) for tx in TransactionRepo.list_recent(limit=10)],
            "popular_books": [
                {**b.summary(), "borrow_count": b.borrow_count} for b in BookRepo.popular(limit=5)
            ],
        }

    @staticmethod
    def analytics(period: str = "30d") -> dict:
        period = period or "30d"
        if period not in PERIODS:
            raise ValidationError("Invalid period")
        start = now() - timedelta(days=PERIODS[period])

        tx_times = db.session.scalars(
            db.select(Transaction.created_at).where(Transaction.created_at >= start)
        ).all()
        user_times = db.session.scalars(
            db.select(User.created_at).where(User.created_at >= start)
        ).all()
        genres = db.session.execute(
            db.select(Book.genre, func.count(Book.id))
            .where(Book.is_active.is_(True))
            .group_by(Book.genre)
            .order_by(func.count(Book.id).desc())
        ).all()

        return {
            "period": period,
            "transaction_trends": _per_day(tx_times),
            "genre_distribution": [{"genre": g, "count": c} for g, c in genres],
            "user_trends": _per_day(user_times),
        }

    @staticmethod
    def monthly_report() -> dict:
        start, end = _month_bounds(now())
        in_month = (Transaction.created_at >= start, Transaction.created_at < end)
        report = {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "statistics": {
                "new_users": UserRepo.count(User.created_at >= start, User.created_at < end),
                "new_books": BookRepo.count(Book.created_at >= start, Book.created_at < end),
                "total_transactions": TransactionRepo.count(*in_month),
                "total_fines": float(TransactionRepo.sum_fines(*in_month)),
            },
            "popular_books": [
                {**b.summary(), "borrow_count": b.borrow_count} for b in BookRepo.popular(limit=10)
            ],
        }
        current_app.logger.info(f"[admin] monthly report generated: {report['statistics']}")
        return report

    @staticmethod
    def notify_all(subject: str, message: str, channel: str) -> int:
        subject = v.clean_str(subject, "subject", 200, required=True)
        message = v.clean_str(message, "message", 1000, required=True)
        if channel not in NOTIFY_CHANNELS:
            raise ValidationError("Type must be email, sms, or both")

        users = UserRepo.list_active()
        for user in users:
            NotificationService.send(
                "announcement", NotificationService.contact_of(user),
                {"name": user.first_name, "subject": subject, "message": message},
                channels=NOTIFY_CHANNELS[channel], user_id=user.id,
            )
        current_app.logger.info(f"[admin] announcement '{subject}' sent via {channel} to {len(users)} users")
        return len(users)
