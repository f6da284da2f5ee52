from __future__ import annotations

BOOK_STATES = ("to-read", "reading", "finished")


class Book:
    """A single book of the library."""

    def __init__(self, id: int, title: str, genre: str, published: str, state: str | None = None) -> None:
        self.id = id
        self.title = title
        self.genre = genre
        # ISO date kept as normalized text, e.g. "2024-01-15"
        self.published = published
        self.state = state

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} ({self.genre}, {self.published})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "genre": self.genre,
            "published": self.published,
            "state": self.state,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            genre=data["genre"],
            published=data["published"],
            state=data.get("state"),
        )


class BookAuthorRow:
    """One row of the book/author join: book fields plus (possibly null) author fields.

    A book with several authors produces one row per author; a book without
    authors produces a single row whose author fields are all None.
    """

    def __init__(self, book_id: int, title: str, genre: str, published: str, state: str | None,
                 author_id: int | None = None, first_name: str | None = None,
                 last_name: str | None = None) -> None:
        self.book_id = book_id
        self.title = title
        self.genre = genre
        self.published = published
        self.state = state
        self.author_id = author_id
        self.first_name = first_name
        self.last_name = last_name

    def to_dict(self) -> dict:
        return {
            "bookId": self.book_id,
            "title": self.title,
            "genre": self.genre,
            "published": self.published,
            "state": self.state,
            "authorId": self.author_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }

    @staticmethod
    def from_dict(data: dict) -> "BookAuthorRow":
        return BookAuthorRow(
            book_id=data["bookId"],
            title=data["title"],
            genre=data["genre"],
            published=data["published"],
            state=data.get("state"),
            author_id=data.get("authorId"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
        )
