import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

import database
from config import settings
from library import Library, LibraryError

APP_NAME = "Library CLI"

console = Console()

app = typer.Typer(help=APP_NAME)


def _library(db_file: Optional[str]) -> Library:
    return Library(db_file=db_file or database.DATABASE_FILE)


DbOption = typer.Option(None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE)")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    reload: Optional[bool] = typer.Option(
        None, "--reload/--no-reload", help="Restart on code changes (defaults to DEBUG)"
    ),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    if reload is None:
        reload = settings.debug
    url = f"http://{host}:{port}/"
    console.print(f"Starting Library API on {url} (docs at {url}docs)")

    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db(db: Optional[str] = DbOption):
    """Create the tables and load the reference dataset into an empty database."""
    lib = _library(db)
    if lib.initialize_if_empty():
        console.print("Database seeded with the reference dataset.")
    else:
        console.print("Database already has data, nothing to seed.")
    counts = lib.count_entities()
    console.print(
        f"Authors: {counts['authors']}  Books: {counts['books']}  "
        f"Associations: {counts['associations']}"
    )


@app.command("authors")
def list_authors(db: Optional[str] = DbOption):
    """List all authors sorted by last name, then first name."""
    authors = _library(db).list_authors()
    if not authors:
        console.print("No authors in library.")
        return

    table = Table(title="Authors", header_style="bold cyan")
    table.add_column("ID", style="magenta", no_wrap=True)
    table.add_column("First name")
    table.add_column("Last name")
    for author in authors:
        table.add_row(str(author.id), author.first_name, author.last_name)
    console.print(table)


@app.command("books")
def list_books(db: Optional[str] = DbOption):
    """List all books sorted by title."""
    books = _library(db).list_books()
    if not books:
        console.print("No books in library.")
        return

    table = Table(title="Books", header_style="bold cyan")
    table.add_column("ID", style="magenta", no_wrap=True)
    table.add_column("Title")
    table.add_column("Genre")
    table.add_column("Published", no_wrap=True)
    table.add_column("State", no_wrap=True)
    for book in books:
        table.add_row(str(book.id), book.title, book.genre, book.published, book.state or "-")
    console.print(table)


@app.command("book-authors")
def book_authors(book_id: int, db: Optional[str] = DbOption):
    """Show a book together with its authors."""
    rows = _library(db).get_book_with_authors(book_id)
    if not rows:
        console.print(f"Book with ID {book_id} not found.")
        return

    console.print(f"{rows[0].title} ({rows[0].genre}, {rows[0].published})")
    if rows[0].author_id is None:
        console.print("No authors linked to this book.")
        return
    for row in rows:
        console.print(f"- {row.first_name} {row.last_name} (#{row.author_id})")


@app.command("link")
def link(first_name: str, last_name: str, title: str, db: Optional[str] = DbOption):
    """Associate an author with a book, both looked up by name/title."""
    try:
        _library(db).associate_author_with_book(first_name, last_name, title)
    except LibraryError as e:
        console.print(f"Error: {e}")
        raise typer.Exit(code=1)
    console.print(f"Linked {first_name} {last_name} to '{title}'.")


if __name__ == "__main__":
    app()
