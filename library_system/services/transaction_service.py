# library_system/services/transaction_service.py
"""
Borrow / return / renew lifecycle.

Every mutation runs as one database unit: guarded UPDATE statements on the
book counter and conditional status transitions on the transaction row, so
two concurrent requests cannot both take the last copy or both advance the
same transaction. Notifications go out only after the commit.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from library_system.errors import (
    Conflict, InfrastructureError, LibraryError, NotFound, ValidationError,
)
from library_system.models.transaction import (
    ACTIVE, DAY_SECONDS, ON_LOAN_STATUSES, OPEN_STATUSES, OVERDUE, RENEWED, RETURNED,
    Transaction,
)
from library_system.repositories.book_repo import BookRepo
from library_system.repositories.transaction_repo import TransactionRepo
from library_system.repositories.user_repo import UserRepo
from library_system.services.notification_service import NotificationService
from library_system.utils.clock import now

MAX_RENEWALS = 3
CENTS = Decimal("0.01")


def recompute_fine(tx: Transaction, at: datetime, fine_per_day=None) -> Decimal:
    """
    Fine owed at `at`: one `fine_per_day` per started day past the due date.
    Never lower than what was already assessed; frozen once returned.
    """
    if fine_per_day is None:
        fine_per_day = current_app.config["FINE_PER_DAY"]
    current = Decimal(tx.fine_amount or 0)
    if tx.status == RETURNED or at <= tx.due_date:
        return current
    days = math.ceil((at - tx.due_date).total_seconds() / DAY_SECONDS)
    return max(current, (Decimal(fine_per_day) * days).quantize(CENTS))


class TransactionService:
    @staticmethod
    def _config(name):
        return current_app.config[name]

    @staticmethod
    def _run_unit(label: str, fn):
        """Runs fn inside a session unit: commit on success, rollback on any failure."""
        try:
            result = fn()
            TransactionRepo.commit()
            return result
        except LibraryError:
            TransactionRepo.rollback()
            raise
        except SQLAlchemyError as e:
            TransactionRepo.rollback()
            current_app.logger.exception(f"[transactions] {label} failed: {e}")
            raise InfrastructureError(f"Could not {label}, please retry") from e

    # Overdue detection ---------------------------------------------------

    @staticmethod
    def _mark_overdue(tx: Transaction, at: datetime) -> bool:
        fine = recompute_fine(tx, at)
        return TransactionRepo.transition(tx.id, ON_LOAN_STATUSES, {"status": OVERDUE, "fine_amount": fine})

    @staticmethod
    def refresh_overdue(user_id: int | None = None) -> int:
        """Lazy promotion of late on-loan transactions (optionally for one borrower)."""
        at = now()

        def _promote():
            return sum(1 for tx in TransactionRepo.find_late(at, user_id=user_id)
                       if TransactionService._mark_overdue(tx, at))

        promoted = TransactionService._run_unit("refresh overdue status", _promote)
        if promoted:
            current_app.logger.info(f"[transactions] {promoted} transaction(s) promoted to overdue")
        return promoted

    @staticmethod
    def sweep_overdue() -> list[Transaction]:
        """
        Promotes every late active/renewed transaction to overdue (fine
        computed), refreshes fines of transactions already overdue and returns
        the newly promoted ones. Each row is committed on its own so one bad
        row does not stop the sweep. Running it twice without the clock moving
        changes nothing the second time.
        """
        at = now()
        promoted_ids = []

        for tx in TransactionRepo.find_late(at):
            tx_id = tx.id
            try:
                if TransactionService._mark_overdue(tx, at):
                    promoted_ids.append(tx_id)
                TransactionRepo.commit()
            except Exception as e:
                TransactionRepo.rollback()
                current_app.logger.exception(f"[transactions] sweep: transaction {tx_id} failed: {e}")

        refreshed = 0
        for tx in TransactionRepo.find_overdue():
            tx_id = tx.id
            try:
                fine = recompute_fine(tx, at)
                if fine != Decimal(tx.fine_amount or 0):
                    if TransactionRepo.transition(tx_id, (OVERDUE,), {"fine_amount": fine}):
                        refreshed += 1
                    TransactionRepo.commit()
            except Exception as e:
                TransactionRepo.rollback()
                current_app.logger.exception(f"[transactions] sweep: fine refresh for {tx_id} failed: {e}")

        current_app.logger.info(
            f"[transactions] sweep at {at.isoformat()}: newly_overdue={len(promoted_ids)} "
            f"fines_refreshed={refreshed}"
        )
        return [TransactionRepo.get(tx_id) for tx_id in promoted_ids]

    # Mutations -----------------------------------------------------------

    @staticmethod
    def issue(book_id: int, user_id: int, processed_by_id: int,
              requested_due_date: datetime | None = None, notes: str | None = None) -> Transaction:
        at = now()
        if requested_due_date is not None and requested_due_date <= at:
            raise ValidationError("Due date must be in the future")
        max_days = TransactionService._config("MAX_LOAN_DAYS")
        if requested_due_date is not None and requested_due_date > at + timedelta(days=max_days):
            raise ValidationError(f"Due date cannot be more than {max_days} days ahead")
        if notes is not None and len(notes) > 500:
            raise ValidationError("Notes cannot exceed 500 characters")

        # persisted on its own so the overdue check below sees it even if issue fails
        TransactionService.refresh_overdue(user_id=user_id)

        def _issue():
            book = BookRepo.get(book_id)
            if not book or not book.is_active:
                raise NotFound("Book not found")

            user = UserRepo.get_for_update(user_id)
            if not user or not user.is_active:
                raise NotFound("User not found")

            if book.available_copies <= 0:
                raise Conflict("Book is not available for borrowing")

            if TransactionRepo.count_for_user(user_id, (OVERDUE,)) > 0:
                raise Conflict("User has overdue books. Please return them before borrowing new books.")

            limit = TransactionService._config("BORROW_LIMIT")
            if TransactionRepo.count_for_user(user_id, OPEN_STATUSES) >= limit:
                raise Conflict(f"User has reached maximum borrowing limit ({limit} books)")

            if not BookRepo.take_copy(book_id, at):
                # lost the race for the last copy
                raise Conflict("Book is not available for borrowing")

            due = requested_due_date or at + timedelta(days=TransactionService._config("LOAN_PERIOD_DAYS"))
            return TransactionRepo.add(Transaction(
                user_id=user_id,
                book_id=book_id,
                processed_by_id=processed_by_id,
                type="borrow",
                status=ACTIVE,
                borrow_date=at,
                due_date=due,
                fine_amount=Decimal("0.00"),
                renewal_count=0,
                notes=notes,
                created_at=at,
            ))

        try:
            tx = TransactionService._run_unit("issue book", _issue)
        except Conflict as e:
            current_app.logger.info(f"[transactions] issue book={book_id} user={user_id} rejected: {e.message}")
            raise

        current_app.logger.info(
            f"[transactions] issued tx={tx.id} book={book_id} user={user_id} due={tx.due_date.isoformat()}"
        )
        NotificationService.notify_transaction("book_issued", tx)
        return tx

    @staticmethod
    def return_transaction(transaction_id: int) -> Transaction:
        at = now()

        def _return():
            tx = TransactionRepo.get(transaction_id)
            if not tx:
                raise NotFound("Transaction not found")
            if tx.status == RETURNED:
                raise Conflict("Book already returned")

            # fine is finalized against the due date as it stood before the return
            fine = recompute_fine(tx, at)
            changed = TransactionRepo.transition(tx.id, OPEN_STATUSES, {
                "status": RETURNED,
                "type": "return",
                "return_date": at,
                "fine_amount": fine,
            })
            if not changed:
                raise Conflict("Book already returned")

            if not BookRepo.put_back_copy(tx.book_id):
                current_app.logger.warning(
                    f"[transactions] book={tx.book_id} already has every copy available; counter left as is"
                )
            return tx

        tx = TransactionService._run_unit("return book", _return)
        TransactionRepo.refresh(tx)

        current_app.logger.info(
            f"[transactions] returned tx={tx.id} book={tx.book_id} fine={tx.fine_amount}"
        )
        NotificationService.notify_transaction("book_returned", tx)
        return tx

    @staticmethod
    def renew(transaction_id: int) -> Transaction:
        at = now()

        tx = TransactionRepo.get(transaction_id)
        if not tx:
            raise NotFound("Transaction not found")
        if tx.status == RETURNED:
            raise Conflict("Returned transactions cannot be renewed")

        if tx.status in ON_LOAN_STATUSES and tx.due_date < at:
            TransactionService._run_unit("mark overdue", lambda: TransactionService._mark_overdue(tx, at))
            raise Conflict("Overdue transactions cannot be renewed")
        if tx.status == OVERDUE:
            raise Conflict("Overdue transactions cannot be renewed")

        if tx.renewal_count >= MAX_RENEWALS:
            raise Conflict(f"Maximum renewals reached ({MAX_RENEWALS})")

        old_count, old_due = tx.renewal_count, tx.due_date
        new_due = old_due + timedelta(days=TransactionService._config("RENEWAL_PERIOD_DAYS"))

        def _renew():
            changed = TransactionRepo.transition(
                tx.id, ON_LOAN_STATUSES,
                {"renewal_count": old_count + 1, "due_date": new_due, "status": RENEWED, "type": "renewal"},
                renewal_count=old_count,
                due_date=old_due,
            )
            if not changed:
                raise Conflict("Transaction was changed by another request, please retry")
            return tx

        TransactionService._run_unit("renew book", _renew)
        TransactionRepo.refresh(tx)

        current_app.logger.info(
            f"[transactions] renewed tx={tx.id} count={tx.renewal_count} due={tx.due_date.isoformat()}"
        )
        NotificationService.notify_transaction("book_renewed", tx)
        return tx

    # Reads ---------------------------------------------------------------

    @staticmethod
    def get(transaction_id: int) -> Transaction:
        tx = TransactionRepo.get(transaction_id)
        if not tx:
            raise NotFound("Transaction not found")
        at = now()
        if tx.is_late(at) and tx.status in ON_LOAN_STATUSES:
            TransactionService._run_unit("mark overdue", lambda: TransactionService._mark_overdue(tx, at))
            TransactionRepo.refresh(tx)
        return tx

    @staticmethod
    def list_transactions(status=None, user_id=None, book_id=None, page: int = 1, limit: int = 10):
        TransactionService.refresh_overdue(user_id=user_id)
        return TransactionRepo.search(status=status, user_id=user_id, book_id=book_id, page=page, limit=limit)

    @staticmethod
    def list_overdue() -> list[Transaction]:
        TransactionService.refresh_overdue()
        return TransactionRepo.find_overdue()

    @staticmethod
    def current_books(user_id: int) -> list[Transaction]:
        TransactionService.refresh_overdue(user_id=user_id)
        return TransactionRepo.list_open_for_user(user_id)

    @staticmethod
    def send_reminder(transaction_id: int) -> bool:
        tx = TransactionService.get(transaction_id)
        if tx.status == RETURNED:
            raise Conflict("Book already returned")
        return NotificationService.notify_transaction("due_reminder", tx)
