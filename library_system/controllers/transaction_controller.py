# library_system/controllers/transaction_controller.py

from flask import Blueprint, jsonify, request

from library_system.errors import ValidationError
from library_system.models.transaction import STATUSES
from library_system.services.transaction_service import TransactionService
from library_system.utils import policy
from library_system.utils import validators as v
from library_system.utils.clock import now
from library_system.utils.decorators import authorize, current_user

transaction_bp = Blueprint("transactions", __name__)


def _transaction_id(data: dict) -> int:
    tx_id = v.to_int(data.get("transaction_id"), "transaction_id", minimum=1)
    if tx_id is None:
        raise ValidationError("Valid transaction ID is required")
    return tx_id


def _page(pager) -> dict:
    at = now()
    return {
        "transactions": [tx.to_dict(at) for tx in pager.items],
        "pagination": v.pagination_meta(pager, "total_transactions"),
    }


@transaction_bp.post("/issue")
@authorize("transaction:issue")
def issue_book():
    data = request.get_json(silent=True) or {}
    book_id = v.to_int(data.get("book_id"), "book_id", minimum=1)
    user_id = v.to_int(data.get("user_id"), "user_id", minimum=1)
    errors = []
    if book_id is None:
        errors.append("Valid book ID is required")
    if user_id is None:
        errors.append("Valid user ID is required")
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    tx = TransactionService.issue(
        book_id=book_id,
        user_id=user_id,
        processed_by_id=current_user().id,
        requested_due_date=v.to_datetime(data.get("due_date"), "due date"),
        notes=v.clean_str(data.get("notes"), "notes", 500),
    )
    return jsonify({"success": True, "message": "Book issued successfully", "data": tx.to_dict(now())}), 201


@transaction_bp.post("/return")
@authorize("transaction:return")
def return_book():
    tx = TransactionService.return_transaction(_transaction_id(request.get_json(silent=True) or {}))
    return jsonify({"success": True, "message": "Book returned successfully", "data": tx.to_dict(now())})


@transaction_bp.post("/renew")
@authorize("transaction:renew")
def renew_book():
    tx_id = _transaction_id(request.get_json(silent=True) or {})
    policy.require(current_user(), "transaction:renew", TransactionService.get(tx_id))
    tx = TransactionService.renew(tx_id)
    return jsonify({"success": True, "message": "Book renewed successfully", "data": tx.to_dict(now())})


@transaction_bp.get("/my-transactions")
@authorize("transaction:list_own")
def my_transactions():
    page, limit = v.pagination(request.args)
    status = v.one_of(request.args.get("status"), "status", STATUSES)
    pager = TransactionService.list_transactions(status=status, user_id=current_user().id, page=page, limit=limit)
    return jsonify({"success": True, "data": _page(pager)})


@transaction_bp.get("/")
@authorize("transaction:list")
def list_transactions():
    args = request.args
    page, limit = v.pagination(args)
    pager = TransactionService.list_transactions(
        status=v.one_of(args.get("status"), "status", STATUSES),
        user_id=v.to_int(args.get("user_id"), "user_id", minimum=1),
        book_id=v.to_int(args.get("book_id"), "book_id", minimum=1),
        page=page,
        limit=limit,
    )
    return jsonify({"success": True, "data": _page(pager)})


@transaction_bp.get("/overdue/list")
@authorize("transaction:overdue")
def overdue_list():
    at = now()
    return jsonify({"success": True, "data": [tx.to_dict(at) for tx in TransactionService.list_overdue()]})


@transaction_bp.get("/<int:transaction_id>")
@authorize("transaction:view")
def get_transaction(transaction_id: int):
    tx = TransactionService.get(transaction_id)
    policy.require(current_user(), "transaction:view", tx)
    return jsonify({"success": True, "data": tx.to_dict(now())})


@transaction_bp.post("/send-reminder/<int:transaction_id>")
@authorize("transaction:remind")
def send_reminder(transaction_id: int):
    delivered = TransactionService.send_reminder(transaction_id)
    return jsonify({
        "success": True,
        "message": "Reminder sent successfully" if delivered else "Reminder queued but could not be delivered",
        "data": {"delivered": delivered},
    })
