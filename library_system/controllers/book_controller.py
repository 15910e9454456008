# library_system/controllers/book_controller.py

from flask import Blueprint, jsonify, request

from library_system.services.book_service import BookService
from library_system.utils import validators as v
from library_system.utils.decorators import authorize, current_user

book_bp = Blueprint("books", __name__)


@book_bp.get("/")
def list_books():
    pager = BookService.list_books(request.args)
    return jsonify({
        "success": True,
        "data": {
            "books": [b.to_dict() for b in pager.items],
            "pagination": v.pagination_meta(pager, "total_books"),
        },
    })


@book_bp.get("/popular")
def popular_books():
    limit = v.to_int(request.args.get("limit"), "limit", minimum=1, maximum=50, default=10)
    return jsonify({"success": True, "data": [b.to_dict() for b in BookService.popular(limit)]})


@book_bp.get("/stats/overview")
@authorize("book:stats")
def stats_overview():
    return jsonify({"success": True, "data": BookService.stats_overview()})


@book_bp.get("/<int:book_id>")
def get_book(book_id: int):
    return jsonify({"success": True, "data": BookService.get_book(book_id).to_dict()})


@book_bp.post("/")
@authorize("book:create")
def create_book():
    data = request.get_json(silent=True) or {}
    book = BookService.create_book(data, added_by_id=current_user().id)
    return jsonify({"success": True, "message": "Book created successfully", "data": book.to_dict()}), 201


@book_bp.put("/<int:book_id>")
@authorize("book:update")
def update_book(book_id: int):
    data = request.get_json(silent=True) or {}
    book = BookService.update_book(book_id, data)
    return jsonify({"success": True, "message": "Book updated successfully", "data": book.to_dict()})


@book_bp.delete("/<int:book_id>")
@authorize("book:delete")
def delete_book(book_id: int):
    outcome = BookService.delete_book(book_id)
    message = "Book deleted successfully" if outcome == "deleted" else "Book deactivated successfully"
    return jsonify({"success": True, "message": message, "data": {"id": book_id, "result": outcome}})
