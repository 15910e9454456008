from sqlalchemy import func, or_, update

from library_system.extensions import db
from library_system.models.book import Book


class BookRepo:
    @staticmethod
    def get(book_id: int):
        return db.session.get(Book, book_id)

    @staticmethod
    def get_by_isbn(isbn: str):
        return Book.query.filter_by(isbn=isbn).first()

    @staticmethod
    def search(search=None, genre=None, author=None, available=None, page: int = 1, limit: int = 10):
        q = Book.query.filter(Book.is_active.is_(True))
        if genre:
            q = q.filter(Book.genre == genre)
        if author:
            q = q.filter(Book.author.ilike(f"%{author}%"))
        if available is True:
            q = q.filter(Book.available_copies > 0)
        elif available is False:
            q = q.filter(Book.available_copies == 0)
        if search:
            like = f"%{search}%"
            q = q.filter(or_(
                Book.title.ilike(like),
                Book.author.ilike(like),
                Book.isbn.ilike(like),
                Book.description.ilike(like),
            ))
        return q.order_by(Book.created_at.desc(), Book.id.desc()).paginate(
            page=page, per_page=limit, error_out=False
        )

    @staticmethod
    def popular(limit: int = 10):
        return (
            Book.query.filter(Book.is_active.is_(True))
            .order_by(Book.borrow_count.desc(), Book.last_borrowed.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def count(*criteria) -> int:
        return db.session.scalar(db.select(func.count(Book.id)).where(*criteria)) or 0

    @staticmethod
    def create(book: Book):
        db.session.add(book)
        db.session.commit()
        return book

    @staticmethod
    def update():
        db.session.commit()

    @staticmethod
    def delete(book: Book):
        db.session.delete(book)
        db.session.commit()

    @staticmethod
    def take_copy(book_id: int, at) -> bool:
        """Guarded decrement; False when no copy is left (or the book went inactive)."""
        result = db.session.execute(
            update(Book)
            .where(Book.id == book_id, Book.is_active.is_(True), Book.available_copies > 0)
            .values(
                available_copies=Book.available_copies - 1,
                borrow_count=Book.borrow_count + 1,
                last_borrowed=at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def resize(book_id: int, new_total: int) -> bool:
        """Sets total_copies keeping the copies on loan; False if more are on loan than new_total."""
        result = db.session.execute(
            update(Book)
            .where(Book.id == book_id, Book.total_copies - Book.available_copies <= new_total)
            .values(
                available_copies=Book.available_copies + (new_total - Book.total_copies),
                total_copies=new_total,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def put_back_copy(book_id: int) -> bool:
        """Guarded increment capped at total_copies; False when every copy is already on the shelf."""
        result = db.session.execute(
            update(Book)
            .where(Book.id == book_id, Book.available_copies < Book.total_copies)
            .values(available_copies=Book.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
