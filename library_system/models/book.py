from library_system.extensions import db
from library_system.utils.clock import utcnow

GENRES = (
    "Fiction", "Non-Fiction", "Science Fiction", "Fantasy", "Mystery",
    "Romance", "Thriller", "Biography", "History", "Science",
    "Technology", "Philosophy", "Religion", "Self-Help", "Business",
    "Education", "Art", "Poetry", "Drama", "Comedy", "Other",
)


class Book(db.Model):
    __tablename__ = "books"
    __table_args__ = (
        db.CheckConstraint("total_copies >= 1", name="ck_books_total_copies"),
        db.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    author = db.Column(db.String(100), nullable=False, index=True)
    isbn = db.Column(db.String(32), unique=True, nullable=False, index=True)
    publisher = db.Column(db.String(100), nullable=False)
    publication_year = db.Column(db.Integer, nullable=False)
    genre = db.Column(db.String(30), nullable=False, index=True)
    language = db.Column(db.String(50), nullable=False, default="English")
    pages = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(2000), nullable=True)
    cover_image = db.Column(db.String(500), nullable=False, default="")
    shelf = db.Column(db.String(50), nullable=True)
    row = db.Column(db.String(50), nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)

    total_copies = db.Column(db.Integer, nullable=False, default=1)
    available_copies = db.Column(db.Integer, nullable=False, default=1, index=True)

    borrow_count = db.Column(db.Integer, nullable=False, default=0)
    last_borrowed = db.Column(db.DateTime, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    added_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    added_by = db.relationship("User", foreign_keys=[added_by_id])

    @property
    def is_available(self) -> bool:
        return bool(self.is_active and self.available_copies > 0)

    @property
    def copies_on_loan(self) -> int:
        return self.total_copies - self.available_copies

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "publication_year": self.publication_year,
            "genre": self.genre,
            "language": self.language,
            "pages": self.pages,
            "description": self.description,
            "cover_image": self.cover_image,
            "location": {"shelf": self.shelf, "row": self.row},
            "price": float(self.price) if self.price is not None else None,
            "tags": list(self.tags or []),
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "copies_on_loan": self.copies_on_loan,
            "is_available": self.is_available,
            "borrow_count": self.borrow_count,
            "last_borrowed": self.last_borrowed.isoformat() if self.last_borrowed else None,
            "is_active": self.is_active,
            "added_by": self.added_by.full_name if self.added_by else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def summary(self) -> dict:
        return {"id": self.id, "title": self.title, "author": self.author, "isbn": self.isbn}
