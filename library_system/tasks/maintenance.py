# library_system/tasks/maintenance.py
"""
Periodic jobs. Each one runs inside an app context (the scheduler provides
it), reads time from the app clock, keeps going when a single item fails and
returns a small summary dict that ends up in the log and in the manual-run
API response.
"""
from datetime import timedelta

from flask import current_app

from library_system.repositories.transaction_repo import TransactionRepo
from library_system.repositories.user_repo import UserRepo
from library_system.services.auth_service import AuthService
from library_system.services.notification_service import NotificationService
from library_system.services.transaction_service import TransactionService
from library_system.utils.clock import now


def _notify_each(kind: str, transactions, at) -> dict:
    sent = failed = 0
    for tx in transactions:
        try:
            extra = {"days_overdue": tx.days_overdue(at)} if kind == "overdue_notice" else {}
            if NotificationService.notify_transaction(kind, tx, **extra):
                sent += 1
            else:
                failed += 1
        except Exception as e:
            failed += 1
            current_app.logger.exception(f"[maintenance] {kind} for transaction {tx.id} failed: {e}")
    return {"sent": sent, "failed": failed}


def run_overdue_sweep() -> dict:
    at = now()
    newly_overdue = TransactionService.sweep_overdue()
    summary = {"newly_overdue": len(newly_overdue), **_notify_each("overdue_notice", newly_overdue, at)}
    current_app.logger.info(f"[maintenance] overdue sweep: {summary}")
    return summary


def send_due_reminders() -> dict:
    """Reminds borrowers whose books fall due within the day ending `lookahead` days from now."""
    at = now()
    lookahead = timedelta(days=current_app.config["DUE_REMINDER_LOOKAHEAD_DAYS"])
    window_end = at + lookahead
    window_start = window_end - timedelta(days=1)

    due_soon = TransactionRepo.find_due_between(window_start, window_end)
    summary = {"due_soon": len(due_soon), **_notify_each("due_reminder", due_soon, at)}
    current_app.logger.info(
        f"[maintenance] due reminders for {window_start.isoformat()}..{window_end.isoformat()}: {summary}"
    )
    return summary


def send_overdue_notices() -> dict:
    at = now()
    # brings fines up to date before quoting them
    TransactionService.sweep_overdue()
    overdue = TransactionRepo.find_overdue()
    summary = {"overdue": len(overdue), **_notify_each("overdue_notice", overdue, at)}
    current_app.logger.info(f"[maintenance] overdue notices: {summary}")
    return summary


def purge_expired_tokens() -> dict:
    at = now()
    summary = UserRepo.purge_expired_tokens(at)
    summary["revoked_jwts"] = AuthService.purge_revoked(at - current_app.config["JWT_REFRESH_TOKEN_EXPIRES"])
    current_app.logger.info(f"[maintenance] token purge: {summary}")
    return summary
