import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import START, make_book, make_user
from library_system import create_app
from library_system.config import TestConfig
from library_system.errors import Conflict, InfrastructureError, NotFound, ValidationError
from library_system.extensions import db
from library_system.models.book import Book
from library_system.models.transaction import Transaction
from library_system.repositories.book_repo import BookRepo
from library_system.repositories.transaction_repo import TransactionRepo
from library_system.services.transaction_service import MAX_RENEWALS, TransactionService, recompute_fine


def issue(book, user, admin, **kwargs):
    return TransactionService.issue(book.id, user.id, admin.id, **kwargs)


def available(book_id):
    return db.session.get(Book, book_id).available_copies


def test_issue_takes_a_copy_and_sets_due_date(app, admin, member, book):
    tx = issue(book, member, admin)

    assert tx.status == "active"
    assert tx.type == "borrow"
    assert tx.borrow_date == START
    assert tx.due_date == START + timedelta(days=14)
    assert tx.fine_amount == Decimal("0.00")
    b = db.session.get(Book, book.id)
    assert b.available_copies == 0
    assert b.borrow_count == 1
    assert b.last_borrowed == START


def test_issue_honours_requested_due_date(app, admin, member, book):
    due = START + timedelta(days=3)
    assert issue(book, member, admin, requested_due_date=due).due_date == due


def test_due_date_is_capped_and_renewable_at_the_cap(app, admin, member, book):
    with pytest.raises(ValidationError, match="365 days"):
        issue(book, member, admin, requested_due_date=START + timedelta(days=365, minutes=1))

    tx = issue(book, member, admin, requested_due_date=START + timedelta(days=365))
    assert TransactionService.renew(tx.id).due_date == START + timedelta(days=379)


def test_issue_rejects_due_date_in_the_past(app, admin, member, book):
    with pytest.raises(ValidationError):
        issue(book, member, admin, requested_due_date=START - timedelta(hours=1))
    assert available(book.id) == 1


def test_issue_unknown_book_or_user(app, admin, member, book):
    with pytest.raises(NotFound, match="Book"):
        TransactionService.issue(9999, member.id, admin.id)
    with pytest.raises(NotFound, match="User"):
        TransactionService.issue(book.id, 9999, admin.id)


def test_inactive_user_cannot_borrow(app, admin, book):
    user = make_user(is_active=False)
    with pytest.raises(NotFound):
        issue(book, user, admin)


def test_last_copy_cannot_be_issued_twice(app, admin, member, other_member, book):
    issue(book, member, admin)
    with pytest.raises(Conflict, match="not available"):
        issue(book, other_member, admin)
    assert available(book.id) == 0
    assert TransactionRepo.count() == 1


def test_borrow_cap_is_five_open_transactions(app, admin, member):
    for _ in range(5):
        issue(make_book(), member, admin)

    sixth = make_book()
    with pytest.raises(Conflict, match="maximum borrowing limit"):
        issue(sixth, member, admin)
    assert available(sixth.id) == 1


def test_overdue_transaction_blocks_new_issue(app, clock, admin, member, book):
    issue(book, member, admin)
    clock.advance(days=15)

    other = make_book()
    with pytest.raises(Conflict, match="overdue"):
        issue(other, member, admin)
    # the lazy promotion survived the rejected issue
    assert TransactionRepo.count(Transaction.status == "overdue") == 1
    assert available(other.id) == 1


def test_return_puts_copy_back_and_closes(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=2)

    returned = TransactionService.return_transaction(tx.id)

    assert returned.status == "returned"
    assert returned.type == "return"
    assert returned.return_date == START + timedelta(days=2)
    assert returned.fine_amount == Decimal("0.00")
    assert available(book.id) == 1


def test_second_return_is_a_conflict(app, admin, member, book):
    tx = issue(book, member, admin)
    TransactionService.return_transaction(tx.id)
    with pytest.raises(Conflict, match="already returned"):
        TransactionService.return_transaction(tx.id)
    assert available(book.id) == 1


def test_return_unknown_transaction(app):
    with pytest.raises(NotFound):
        TransactionService.return_transaction(424242)


def test_available_copies_never_exceed_total(app, admin, member):
    book = make_book(total=2)
    tx = issue(book, member, admin)
    # counter drifted upward out of band: the return must not push it past the total
    BookRepo.put_back_copy(book.id)
    db.session.commit()
    TransactionService.return_transaction(tx.id)
    b = db.session.get(Book, book.id)
    assert b.available_copies == b.total_copies == 2


def test_late_return_scenario(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    assert available(book.id) == 0

    clock.advance(days=15)
    promoted = TransactionService.sweep_overdue()
    assert [t.id for t in promoted] == [tx.id]

    tx = TransactionRepo.get(tx.id)
    assert tx.status == "overdue"
    assert tx.fine_amount == Decimal("1.00")

    returned = TransactionService.return_transaction(tx.id)
    assert returned.status == "returned"
    assert returned.return_date == START + timedelta(days=15)
    assert returned.fine_amount >= Decimal("1.00")
    assert available(book.id) == 1


def test_fine_keeps_growing_until_return(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=15)
    TransactionService.sweep_overdue()
    clock.advance(days=3, hours=1)

    returned = TransactionService.return_transaction(tx.id)
    # 4 days and 1 hour late -> five started days
    assert returned.fine_amount == Decimal("5.00")


def test_returned_fine_is_frozen(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=16)
    TransactionService.return_transaction(tx.id)

    clock.advance(days=30)
    TransactionService.sweep_overdue()
    assert TransactionRepo.get(tx.id).fine_amount == Decimal("2.00")


def test_sweep_is_idempotent(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=15)

    first = TransactionService.sweep_overdue()
    second = TransactionService.sweep_overdue()

    assert len(first) == 1
    assert second == []
    assert TransactionRepo.get(tx.id).fine_amount == Decimal("1.00")


def test_sweep_refreshes_fines_of_overdue_rows(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=15)
    TransactionService.sweep_overdue()
    clock.advance(days=2)

    assert TransactionService.sweep_overdue() == []
    assert TransactionRepo.get(tx.id).fine_amount == Decimal("3.00")


def test_sweep_ignores_transactions_not_yet_due(app, clock, admin, member, book):
    issue(book, member, admin)
    clock.advance(days=14)
    assert TransactionService.sweep_overdue() == []


def test_renew_extends_due_date(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=10)

    renewed = TransactionService.renew(tx.id)

    assert renewed.status == "renewed"
    assert renewed.type == "renewal"
    assert renewed.renewal_count == 1
    assert renewed.due_date == START + timedelta(days=28)


def test_renewal_limit(app, admin, member, book):
    tx = issue(book, member, admin)
    for expected in range(1, MAX_RENEWALS + 1):
        assert TransactionService.renew(tx.id).renewal_count == expected

    with pytest.raises(Conflict, match="Maximum renewals"):
        TransactionService.renew(tx.id)
    tx = TransactionRepo.get(tx.id)
    assert tx.renewal_count == MAX_RENEWALS
    assert tx.due_date == START + timedelta(days=14 * (MAX_RENEWALS + 1))


def test_late_transaction_cannot_be_renewed(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    clock.advance(days=15)

    with pytest.raises(Conflict, match="Overdue"):
        TransactionService.renew(tx.id)
    tx = TransactionRepo.get(tx.id)
    assert tx.status == "overdue"
    assert tx.renewal_count == 0


def test_returned_transaction_cannot_be_renewed(app, admin, member, book):
    tx = issue(book, member, admin)
    TransactionService.return_transaction(tx.id)
    with pytest.raises(Conflict):
        TransactionService.renew(tx.id)


def test_recompute_fine_rules(app, admin, member, book):
    tx = issue(book, member, admin)
    due = tx.due_date

    assert recompute_fine(tx, due) == Decimal("0.00")
    assert recompute_fine(tx, due + timedelta(minutes=1)) == Decimal("1.00")
    assert recompute_fine(tx, due + timedelta(days=3)) == Decimal("3.00")
    assert recompute_fine(tx, due + timedelta(days=3), fine_per_day=Decimal("0.50")) == Decimal("1.50")

    tx.fine_amount = Decimal("4.00")
    # never lower than what was already assessed
    assert recompute_fine(tx, due + timedelta(days=1)) == Decimal("4.00")
    db.session.rollback()


def test_guarded_updates_refuse_stale_writers(app, admin, member, book):
    tx = issue(book, member, admin)

    assert BookRepo.take_copy(book.id, START) is False
    assert TransactionRepo.transition(tx.id, ("active",), {"renewal_count": 1}, renewal_count=5) is False
    assert TransactionRepo.transition(tx.id, ("returned",), {"status": "overdue"}) is False
    db.session.rollback()
    assert TransactionRepo.get(tx.id).renewal_count == 0


def test_notification_failure_does_not_undo_issue(app, monkeypatch, admin, member, book):
    from library_system.services.mail_service import MailService
    from library_system.services.sms_service import SmsService

    def broken(*_args):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(MailService, "send_email", staticmethod(broken))
    monkeypatch.setattr(SmsService, "send_sms", staticmethod(broken))

    tx = issue(book, member, admin)
    assert TransactionRepo.get(tx.id).status == "active"
    assert available(book.id) == 0


def test_issue_notifies_borrower(app, outbox, admin, member, book):
    issue(book, member, admin)
    channels = sorted(channel for channel, *_ in outbox)
    assert channels == ["email", "sms"]
    assert all("Dune" in body for *_, body in outbox)


def test_current_books_and_overdue_list(app, clock, admin, member, book):
    tx = issue(book, member, admin)
    issue(make_book(), member, admin, requested_due_date=START + timedelta(days=30))
    clock.advance(days=15)

    assert len(TransactionService.current_books(member.id)) == 2
    overdue = TransactionService.list_overdue()
    assert [t.id for t in overdue] == [tx.id]
    assert overdue[0].days_overdue(clock.now()) == 1


def test_concurrent_issues_for_last_copy(tmp_path, clock):
    class FileDbConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 15}}

    race_app = create_app(FileDbConfig, clock=clock)
    with race_app.app_context():
        db.create_all()
        staff_id = make_user(role="admin").id
        borrower_ids = [make_user().id, make_user().id]
        book_id = make_book(total=1).id

    barrier = threading.Barrier(len(borrower_ids))
    outcomes = []

    def borrow(user_id):
        with race_app.app_context():
            barrier.wait()
            try:
                TransactionService.issue(book_id, user_id, staff_id)
                outcomes.append("issued")
            except (Conflict, InfrastructureError) as e:
                outcomes.append(type(e).__name__)
            except Exception as e:
                outcomes.append(repr(e))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=borrow, args=(user_id,)) for user_id in borrower_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    # the loser either sees the copy gone or is refused by the database lock
    assert sorted(outcomes) in (["Conflict", "issued"], ["InfrastructureError", "issued"])
    with race_app.app_context():
        assert db.session.get(Book, book_id).available_copies == 0
        assert Transaction.query.filter_by(book_id=book_id).count() == 1
        db.drop_all()
        db.engine.dispose()
