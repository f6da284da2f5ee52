import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

import library as library_module

from database import get_db_connection
from library import (
    Library,
    NotFoundError,
    StoreError,
    ValidationError,
    clean_string,
    validate_string,
)


def _association_count() -> int:
    return get_db_connection().execute("SELECT COUNT(*) FROM book_author").fetchone()[0]


def test_clean_string_lowercases_and_collapses_whitespace():
    assert clean_string("  Le   Chevalier\tNOIR \n") == "le chevalier noir"


def test_validate_string_rejects_blank():
    with pytest.raises(ValidationError) as exc_info:
        validate_string("   ", "title")
    assert exc_info.value.field == "title"
    assert validate_string("ok", "title") == "ok"


# ------------------------- Authors ------------------------- #
def test_create_and_get_author_normalizes(lib):
    author_id = lib.create_author("  Jane ", "DOE   Smith")

    author = lib.get_author(author_id)
    assert author is not None
    assert author.id == author_id
    assert author.first_name == "jane"
    assert author.last_name == "doe smith"


def test_get_author_missing_returns_none(lib):
    assert lib.get_author(999) is None


@pytest.mark.parametrize("first_name,last_name,field", [
    ("", "Doe", "firstName"),
    ("Jane", "   ", "lastName"),
])
def test_create_author_rejects_empty_names(lib, first_name, last_name, field):
    with pytest.raises(ValidationError) as exc_info:
        lib.create_author(first_name, last_name)
    assert exc_info.value.field == field
    assert lib.list_authors() == []


def test_list_authors_sorted_by_last_then_first_name(lib):
    lib.create_author("Bob", "Zed")
    lib.create_author("Carl", "Adams")
    lib.create_author("Anna", "Zed")

    names = [(a.last_name, a.first_name) for a in lib.list_authors()]
    assert names == [("adams", "carl"), ("zed", "anna"), ("zed", "bob")]


def test_update_author(lib):
    author_id = lib.create_author("Jane", "Doe")

    assert lib.update_author(author_id, "JOHN", "Roe") == 1
    author = lib.get_author(author_id)
    assert (author.first_name, author.last_name) == ("john", "roe")


def test_update_author_missing_is_noop(lib):
    assert lib.update_author(42, "John", "Roe") == 0
    assert lib.list_authors() == []


def test_delete_author_removes_associations(lib):
    author_id = lib.create_author("George", "Orwell")
    other_id = lib.create_author("Aldous", "Huxley")
    book_id = lib.create_book("1984", "Fiction", "1949-06-08")
    lib.associate_author_with_book("George", "Orwell", "1984")
    lib.associate_author_with_book("Aldous", "Huxley", "1984")

    assert lib.delete_author(author_id) == 1

    assert lib.get_author(author_id) is None
    rows = lib.get_book_with_authors(book_id)
    assert [row.author_id for row in rows] == [other_id]
    assert _association_count() == 1


def test_delete_author_missing_is_noop(lib):
    assert lib.delete_author(999) == 0


# ------------------------- Books ------------------------- #
def test_create_and_get_book(lib):
    book_id = lib.create_book("  Brave New   World ", "Dystopia", "1932-01-01", "reading")

    book = lib.get_book(book_id)
    assert book.to_dict() == {
        "id": book_id,
        "title": "brave new world",
        "genre": "dystopia",
        "published": "1932-01-01",
        "state": "reading",
    }


def test_create_book_without_state(lib):
    book_id = lib.create_book("1984", "Fiction", "2024-01-15")
    assert lib.get_book(book_id).state is None


def test_create_book_rejects_unknown_state(lib):
    with pytest.raises(ValidationError) as exc_info:
        lib.create_book("1984", "Fiction", "2024-01-15", "abandoned")
    assert exc_info.value.field == "state"


@pytest.mark.parametrize("title,genre,published,field", [
    ("", "Fiction", "2024-01-15", "title"),
    ("1984", " ", "2024-01-15", "genre"),
    ("1984", "Fiction", "", "published"),
])
def test_create_book_rejects_empty_fields(lib, title, genre, published, field):
    with pytest.raises(ValidationError) as exc_info:
        lib.create_book(title, genre, published)
    assert exc_info.value.field == field


def test_list_books_sorted_by_title(lib):
    lib.create_book("Walden", "Essay", "1854-08-09")
    lib.create_book("Animal Farm", "Fiction", "1945-08-17")
    lib.create_book("moby dick", "Novel", "1851-10-18")

    assert [b.title for b in lib.list_books()] == ["animal farm", "moby dick", "walden"]


def test_update_book(lib):
    book_id = lib.create_book("1984", "Fiction", "2024-01-15", "to-read")

    assert lib.update_book(book_id, "Nineteen Eighty-Four", "Dystopia", "1949-06-08", "finished") == 1
    book = lib.get_book(book_id)
    assert book.title == "nineteen eighty-four"
    assert book.state == "finished"

    # Omitting the state clears it
    lib.update_book(book_id, "1984", "Dystopia", "1949-06-08")
    assert lib.get_book(book_id).state is None


def test_update_book_missing_is_noop(lib):
    assert lib.update_book(7, "1984", "Fiction", "2024-01-15") == 0


def test_delete_book_removes_associations(lib):
    lib.create_author("George", "Orwell")
    book_id = lib.create_book("1984", "Fiction", "1949-06-08")
    lib.associate_author_with_book("George", "Orwell", "1984")

    assert lib.delete_book(book_id) == 1
    assert lib.get_book(book_id) is None
    assert lib.get_book_with_authors(book_id) == []
    assert _association_count() == 0


# ------------------------- Associations ------------------------- #
def test_book_without_authors_yields_single_null_row(lib):
    book_id = lib.create_book("1984", "Fiction", "2024-01-15")

    rows = lib.get_book_with_authors(book_id)
    assert [row.to_dict() for row in rows] == [{
        "bookId": book_id,
        "title": "1984",
        "genre": "fiction",
        "published": "2024-01-15",
        "state": None,
        "authorId": None,
        "firstName": None,
        "lastName": None,
    }]


def test_book_with_several_authors_yields_one_row_each(lib):
    book_id = lib.create_book("Good Omens", "Fantasy", "1990-05-01")
    lib.create_author("Terry", "Pratchett")
    lib.create_author("Neil", "Gaiman")
    lib.associate_author_with_book("Terry", "Pratchett", "Good Omens")
    lib.associate_author_with_book("Neil", "Gaiman", "Good Omens")

    rows = lib.get_book_with_authors(book_id)
    assert len(rows) == 2
    assert {row.book_id for row in rows} == {book_id}
    assert sorted(row.last_name for row in rows) == ["gaiman", "pratchett"]


def test_get_book_with_authors_unknown_book(lib):
    assert lib.get_book_with_authors(12345) == []


def test_associate_is_case_and_space_insensitive(lib):
    author_id = lib.create_author("Jane", "Doe")
    book_id = lib.create_book("The  Long Walk", "Fiction", "2024-01-15")

    lib.associate_author_with_book("  JANE", "doe ", "the long   WALK")

    rows = lib.get_book_with_authors(book_id)
    assert [row.author_id for row in rows] == [author_id]


def test_associate_is_idempotent(lib):
    lib.create_author("Jane", "Doe")
    lib.create_book("1984", "Fiction", "2024-01-15")

    lib.associate_author_with_book("Jane", "Doe", "1984")
    lib.associate_author_with_book("Jane", "Doe", "1984")

    assert _association_count() == 1


@pytest.mark.parametrize("first_name,last_name,title", [
    ("Jane", "Doe", "Unknown Title"),
    ("John", "Doe", "1984"),
])
def test_associate_missing_entity_writes_nothing(lib, first_name, last_name, title):
    lib.create_author("Jane", "Doe")
    lib.create_book("1984", "Fiction", "2024-01-15")
    before = lib.count_entities()

    with pytest.raises(NotFoundError, match="book or author not found"):
        lib.associate_author_with_book(first_name, last_name, title)

    assert lib.count_entities() == before


def test_associate_rejects_empty_title(lib):
    with pytest.raises(ValidationError):
        lib.associate_author_with_book("Jane", "Doe", "")


# ------------------------- Bootstrap ------------------------- #
def test_initialize_if_empty_seeds_reference_dataset(lib):
    assert lib.initialize_if_empty() is True
    assert lib.count_entities() == {"authors": 3, "books": 4, "associations": 6}

    chevalier = next(b for b in lib.list_books() if b.title == "le chevalier noir")
    assert chevalier.state == "to-read"
    rows = lib.get_book_with_authors(chevalier.id)
    assert [row.last_name for row in rows] == ["palamos", "porgia"]


def test_initialize_if_empty_runs_once(lib):
    lib.initialize_if_empty()
    assert lib.initialize_if_empty() is False
    assert lib.count_entities() == {"authors": 3, "books": 4, "associations": 6}


def test_initialize_if_empty_skips_non_empty_database(lib):
    lib.create_book("1984", "Fiction", "2024-01-15")

    assert lib.initialize_if_empty() is False
    assert lib.count_entities() == {"authors": 0, "books": 1, "associations": 0}


def test_store_failure_is_wrapped(lib):
    get_db_connection().execute("DROP TABLE book_author")

    with pytest.raises(StoreError):
        lib.delete_author(1)


def test_library_reopens_after_close(lib):
    author_id = lib.create_author("Jane", "Doe")
    lib.close()

    assert Library().get_author(author_id).first_name == "jane"


def test_fetch_failure_is_wrapped(lib, monkeypatch):
    class FailingCursor:
        def fetchall(self):
            raise sqlite3.OperationalError("disk I/O error")

    class FailingConnection:
        def execute(self, sql, params=()):
            return FailingCursor()

    monkeypatch.setattr(library_module, "get_db_connection", lambda: FailingConnection())

    with pytest.raises(StoreError, match="disk I/O error"):
        lib.list_authors()


@pytest.mark.parametrize("entity_id", [2 ** 63, -2 ** 63 - 1, 10 ** 20])
def test_ids_beyond_sqlite_range_match_nothing(lib, entity_id):
    lib.create_author("Jane", "Doe")
    lib.create_book("1984", "Fiction", "2024-01-15")

    assert lib.get_author(entity_id) is None
    assert lib.get_book(entity_id) is None
    assert lib.get_book_with_authors(entity_id) == []
    assert lib.update_author(entity_id, "Jane", "Doe") == 0
    assert lib.update_book(entity_id, "1984", "Fiction", "2024-01-15") == 0
    assert lib.delete_author(entity_id) == 0
    assert lib.delete_book(entity_id) == 0
    assert lib.count_entities() == {"authors": 1, "books": 1, "associations": 0}


def test_update_with_oversized_id_still_validates(lib):
    with pytest.raises(ValidationError):
        lib.update_author(2 ** 64, "  ", "Doe")


def test_concurrent_creates_return_their_own_ids(lib):
    def create_many(worker):
        created = []
        for i in range(50):
            name = f"w{worker}x{i}"
            created.append((lib.create_author(name, "race"), name))
        return created

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = [pair for batch in pool.map(create_many, range(8)) for pair in batch]

    ids = [author_id for author_id, _ in results]
    assert len(set(ids)) == len(ids) == 400
    for author_id, name in results:
        assert lib.get_author(author_id).first_name == name
