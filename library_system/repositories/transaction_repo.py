from datetime import datetime

from sqlalchemy import func, update

from library_system.extensions import db
from library_system.models.transaction import (
    ON_LOAN_STATUSES, OPEN_STATUSES, OVERDUE, Transaction,
)


class TransactionRepo:
    @staticmethod
    def get(transaction_id: int):
        return db.session.get(Transaction, transaction_id)

    @staticmethod
    def add(tx: Transaction):
        db.session.add(tx)
        db.session.flush()
        return tx

    @staticmethod
    def commit():
        db.session.commit()

    @staticmethod
    def rollback():
        db.session.rollback()

    @staticmethod
    def refresh(tx: Transaction):
        db.session.refresh(tx)
        return tx

    @staticmethod
    def transition(transaction_id: int, from_statuses, values: dict, **expected) -> bool:
        """
        Conditional update: applies `values` only if the row is still in one of
        `from_statuses` (and matches every `expected` column value).
        True when the row was changed.
        """
        stmt = update(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.status.in_(tuple(from_statuses)),
        )
        for column, value in expected.items():
            stmt = stmt.where(getattr(Transaction, column) == value)
        result = db.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def count_for_user(user_id: int, statuses) -> int:
        return db.session.scalar(
            db.select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id,
                Transaction.status.in_(tuple(statuses)),
            )
        ) or 0

    @staticmethod
    def count_for_book(book_id: int, statuses=None) -> int:
        stmt = db.select(func.count(Transaction.id)).where(Transaction.book_id == book_id)
        if statuses is not None:
            stmt = stmt.where(Transaction.status.in_(tuple(statuses)))
        return db.session.scalar(stmt) or 0

    @staticmethod
    def count(*criteria) -> int:
        return db.session.scalar(db.select(func.count(Transaction.id)).where(*criteria)) or 0

    @staticmethod
    def sum_fines(*criteria):
        return db.session.scalar(
            db.select(func.coalesce(func.sum(Transaction.fine_amount), 0)).where(*criteria)
        ) or 0

    @staticmethod
    def find_late(now: datetime, user_id: int = None):
        """On-loan (active/renewed) rows whose due date has passed."""
        q = Transaction.query.filter(
            Transaction.status.in_(ON_LOAN_STATUSES),
            Transaction.due_date < now,
        )
        if user_id is not None:
            q = q.filter(Transaction.user_id == user_id)
        return q.order_by(Transaction.due_date.asc()).all()

    @staticmethod
    def find_overdue():
        return Transaction.query.filter(Transaction.status == OVERDUE).order_by(Transaction.due_date.asc()).all()

    @staticmethod
    def find_due_between(start: datetime, end: datetime):
        return Transaction.query.filter(
            Transaction.status.in_(ON_LOAN_STATUSES),
            Transaction.due_date >= start,
            Transaction.due_date <= end,
        ).order_by(Transaction.due_date.asc()).all()

    @staticmethod
    def list_open_for_user(user_id: int):
        return Transaction.query.filter(
            Transaction.user_id == user_id,
            Transaction.status.in_(OPEN_STATUSES),
        ).order_by(Transaction.due_date.asc()).all()

    @staticmethod
    def list_recent(limit: int = 10, user_id: int = None):
        q = Transaction.query
        if user_id is not None:
            q = q.filter(Transaction.user_id == user_id)
        return q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()

    @staticmethod
    def search(status=None, user_id=None, book_id=None, page: int = 1, limit: int = 10):
        q = Transaction.query
        if status:
            q = q.filter(Transaction.status == status)
        if user_id is not None:
            q = q.filter(Transaction.user_id == user_id)
        if book_id is not None:
            q = q.filter(Transaction.book_id == book_id)
        return q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).paginate(
            page=page, per_page=limit, error_out=False
        )
