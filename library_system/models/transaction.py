import math
from datetime import datetime
from decimal import Decimal

from library_system.extensions import db
from library_system.utils.clock import utcnow

ACTIVE = "active"
OVERDUE = "overdue"
RENEWED = "renewed"
RETURNED = "returned"

STATUSES = (ACTIVE, OVERDUE, RENEWED, RETURNED)
OPEN_STATUSES = (ACTIVE, OVERDUE, RENEWED)
# on-time phase: may still be renewed or promoted to overdue
ON_LOAN_STATUSES = (ACTIVE, RENEWED)

DAY_SECONDS = 24 * 60 * 60


class Transaction(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("fine_amount >= 0", name="ck_transactions_fine"),
        db.CheckConstraint("renewal_count >= 0 AND renewal_count <= 3", name="ck_transactions_renewals"),
        db.CheckConstraint(
            "(status = 'returned' AND return_date IS NOT NULL) "
            "OR (status <> 'returned' AND return_date IS NULL)",
            name="ck_transactions_return_date",
        ),
        db.Index("ix_transactions_user_status", "user_id", "status"),
        db.Index("ix_transactions_book_status", "book_id", "status"),
        db.Index("ix_transactions_due_status", "due_date", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    processed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    type = db.Column(db.String(20), nullable=False, default="borrow")
    status = db.Column(db.String(20), nullable=False, default=ACTIVE)

    borrow_date = db.Column(db.DateTime, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    return_date = db.Column(db.DateTime, nullable=True)

    fine_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    renewal_count = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", foreign_keys=[user_id], backref="transactions")
    book = db.relationship("Book", backref="transactions")
    processed_by = db.relationship("User", foreign_keys=[processed_by_id])

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_late(self, at: datetime) -> bool:
        return self.is_open and self.due_date < at

    def days_overdue(self, at: datetime) -> int:
        end = self.return_date or at
        if end <= self.due_date:
            return 0
        return math.ceil((end - self.due_date).total_seconds() / DAY_SECONDS)

    def days_until_due(self, at: datetime) -> int:
        if self.status not in ON_LOAN_STATUSES or self.due_date <= at:
            return 0
        return math.ceil((self.due_date - at).total_seconds() / DAY_SECONDS)

    def to_dict(self, at: datetime = None) -> dict:
        at = at or utcnow()
        return {
            "id": self.id,
            "user": self.user.summary() if self.user else {"id": self.user_id},
            "book": self.book.summary() if self.book else {"id": self.book_id},
            "processed_by": self.processed_by.full_name if self.processed_by else None,
            "type": self.type,
            "status": self.status,
            "borrow_date": self.borrow_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "fine_amount": float(self.fine_amount or 0),
            "renewal_count": self.renewal_count,
            "days_overdue": self.days_overdue(at),
            "days_until_due": self.days_until_due(at),
            "notes": self.notes,
        }
