from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.exc import IntegrityError

from library_system.errors import Conflict, NotFound, ValidationError
from library_system.extensions import db
from library_system.models.book import GENRES, Book
from library_system.models.transaction import OPEN_STATUSES, Transaction
from library_system.repositories.book_repo import BookRepo
from library_system.repositories.transaction_repo import TransactionRepo
from library_system.utils import validators as v
from library_system.utils.clock import now

TEXT_FIELDS = {
    "title": 200,
    "author": 100,
    "publisher": 100,
    "language": 50,
    "description": 2000,
    "cover_image": 500,
}


def _price(value):
    if value is None or value == "":
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("price must be a number")
    if price < 0:
        raise ValidationError("Price cannot be negative")
    return price


def _tags(value):
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("tags must be a list")
    tags = [v.clean_str(t, "tag", 50) for t in value]
    return [t for t in tags if t]


def _year(value):
    return v.to_int(value, "publication_year", minimum=1000, maximum=now().year, required=True)


def _save_failed(book_id, isbn) -> Conflict:
    other = BookRepo.get_by_isbn(isbn) if isbn else None
    if other and other.id != book_id:
        return Conflict("A book with this ISBN already exists")
    return Conflict("Book could not be saved, it conflicts with existing data")


def _location(data: dict) -> dict:
    loc = data.get("location") or {}
    return {
        "shelf": v.clean_str(loc.get("shelf", data.get("shelf")), "shelf", 50),
        "row": v.clean_str(loc.get("row", data.get("row")), "row", 50),
    }


class BookService:
    @staticmethod
    def list_books(args):
        page, limit = v.pagination(args)
        genre = v.one_of(args.get("genre"), "genre", GENRES)
        return BookRepo.search(
            search=(args.get("search") or "").strip() or None,
            genre=genre,
            author=(args.get("author") or "").strip() or None,
            available=v.to_bool(args.get("available"), "available"),
            page=page,
            limit=limit,
        )

    @staticmethod
    def get_book(book_id: int, include_inactive: bool = False):
        book = BookRepo.get(book_id)
        if not book or (not book.is_active and not include_inactive):
            raise NotFound("Book not found")
        return book

    @staticmethod
    def create_book(data: dict, added_by_id: int):
        v.require_fields(data, "title", "author", "isbn", "publisher", "publication_year", "genre", "total_copies")

        isbn = v.isbn(data["isbn"])
        if BookRepo.get_by_isbn(isbn):
            raise Conflict("A book with this ISBN already exists")

        total = v.to_int(data["total_copies"], "total_copies", minimum=1, maximum=1000)
        location = _location(data)
        book = Book(
            title=v.clean_str(data["title"], "title", TEXT_FIELDS["title"], required=True),
            author=v.clean_str(data["author"], "author", TEXT_FIELDS["author"], required=True),
            isbn=isbn,
            publisher=v.clean_str(data["publisher"], "publisher", TEXT_FIELDS["publisher"], required=True),
            publication_year=_year(data["publication_year"]),
            genre=v.one_of(data["genre"], "genre", GENRES),
            language=v.clean_str(data.get("language"), "language", 50) or "English",
            pages=v.to_int(data.get("pages"), "pages", minimum=1, maximum=10000),
            description=v.clean_str(data.get("description"), "description", TEXT_FIELDS["description"]),
            cover_image=v.clean_str(data.get("cover_image"), "cover_image", 500) or "",
            shelf=location["shelf"],
            row=location["row"],
            price=_price(data.get("price")),
            tags=_tags(data.get("tags")),
            total_copies=total,
            available_copies=total,
            added_by_id=added_by_id,
            created_at=now(),
        )
        try:
            BookRepo.create(book)
        except IntegrityError:
            db.session.rollback()
            raise _save_failed(None, isbn)

        current_app.logger.info(f"[books] created book={book.id} isbn={book.isbn}")
        return book

    @staticmethod
    def update_book(book_id: int, data: dict):
        book = BookService.get_book(book_id)

        if "available_copies" in data:
            raise ValidationError("available_copies is maintained by issue/return and cannot be edited")

        for field, max_len in TEXT_FIELDS.items():
            if field in data:
                required = field in ("title", "author", "publisher")
                value = v.clean_str(data[field], field, max_len, required=required)
                setattr(book, field, value if value is not None else ("" if field == "cover_image" else None))

        if "isbn" in data:
            isbn = v.isbn(data["isbn"])
            other = BookRepo.get_by_isbn(isbn)
            if other and other.id != book.id:
                raise Conflict("A book with this ISBN already exists")
            book.isbn = isbn
        if "publication_year" in data:
            book.publication_year = _year(data["publication_year"])
        if "genre" in data:
            book.genre = v.one_of(data["genre"], "genre", GENRES) or book.genre
        if "pages" in data:
            book.pages = v.to_int(data["pages"], "pages", minimum=1, maximum=10000)
        if "price" in data:
            book.price = _price(data["price"])
        if "tags" in data:
            book.tags = _tags(data["tags"])
        if "location" in data or "shelf" in data or "row" in data:
            location = _location(data)
            book.shelf, book.row = location["shelf"], location["row"]

        isbn = book.isbn
        try:
            if "total_copies" in data:
                new_total = v.to_int(data["total_copies"], "total_copies", minimum=1, maximum=1000, required=True)
                db.session.flush()
                if not BookRepo.resize(book.id, new_total):
                    raise Conflict("total_copies cannot be lower than the number of copies on loan")
            BookRepo.update()
        except Conflict:
            db.session.rollback()
            raise
        except IntegrityError:
            db.session.rollback()
            raise _save_failed(book_id, isbn)

        db.session.refresh(book)
        current_app.logger.info(f"[books] updated book={book.id}")
        return book

    @staticmethod
    def delete_book(book_id: int) -> str:
        """
        Hard delete when no transaction ever referenced the book, soft delete
        (is_active=False) otherwise. Refused while copies are on loan.
        """
        book = BookService.get_book(book_id)

        if TransactionRepo.count_for_book(book.id, OPEN_STATUSES) > 0:
            raise Conflict("Cannot delete book with active transactions")

        if TransactionRepo.count_for_book(book.id) > 0:
            book.is_active = False
            BookRepo.update()
            current_app.logger.info(f"[books] soft-deleted book={book.id}")
            return "deactivated"

        BookRepo.delete(book)
        current_app.logger.info(f"[books] deleted book={book_id}")
        return "deleted"

    @staticmethod
    def stats_overview() -> dict:
        active = Book.is_active.is_(True)
        return {
            "total_books": BookRepo.count(active),
            "available_books": BookRepo.count(active, Book.available_copies > 0),
            "borrowed_books": BookRepo.count(active, Book.available_copies == 0),
            "total_transactions": TransactionRepo.count(),
            "active_transactions": TransactionRepo.count(Transaction.status.in_(OPEN_STATUSES)),
            "overdue_transactions": TransactionRepo.count(Transaction.status == "overdue"),
        }

    @staticmethod
    def popular(limit: int = 10):
        return BookRepo.popular(limit)
