import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from library import IntegrityError, Library, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

# Shared Library instance, created on startup (or on first request)
library: Optional[Library] = None


def get_library() -> Library:
    global library
    if library is None:
        library = Library()
    return library


@asynccontextmanager
async def lifespan(app: FastAPI):
    lib = get_library()
    if settings.seed_on_startup:
        try:
            if lib.initialize_if_empty():
                logger.info("Empty database seeded with the reference dataset")
        except Exception as e:
            # A failed seed must not keep the API from starting
            logger.warning(f"Database seeding failed: {e}")
    yield


app = FastAPI(
    redirect_slashes=False,
    title=settings.app_name,
    version=settings.app_version,
    description=settings.app_description,
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Models ---
BookState = Literal["to-read", "reading", "finished"]


class AuthorCreateModel(BaseModel):
    firstName: str = Field(..., min_length=1, examples=["Jane"])
    lastName: str = Field(..., min_length=1, examples=["Doe"])


class AuthorModel(BaseModel):
    id: int
    firstName: str
    lastName: str


class BookCreateModel(BaseModel):
    title: str = Field(..., min_length=1, examples=["1984"])
    genre: str = Field(..., min_length=1, examples=["Fiction"])
    published: str = Field(..., min_length=1, description="ISO date", examples=["2024-01-15"])
    state: Optional[BookState] = Field(default=None, examples=["to-read"])


class BookModel(BaseModel):
    id: int
    title: str
    genre: str
    published: str
    state: Optional[BookState] = None


class BookAuthorCreateModel(BaseModel):
    firstName: str = Field(..., min_length=1, examples=["George"])
    lastName: str = Field(..., min_length=1, examples=["Orwell"])
    title: str = Field(..., min_length=1, examples=["1984"])


class BookAuthorRowModel(BaseModel):
    bookId: int
    title: str
    genre: str
    published: str
    state: Optional[BookState] = None
    authorId: Optional[int] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None


class CreatedModel(BaseModel):
    id: int


class OkModel(BaseModel):
    ok: bool = True


class ErrorModel(BaseModel):
    error: str


class IssueModel(BaseModel):
    path: List[Any]
    message: str


class InvalidPayloadModel(ErrorModel):
    issues: List[IssueModel]


NOT_FOUND = {404: {"model": ErrorModel, "description": "Not found"}}
INVALID_PAYLOAD = {400: {"model": InvalidPayloadModel, "description": "Invalid request payload"}}


# --- Error Handlers ---
def _invalid_payload(issues: List[Dict[str, Any]]) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid payload", "issues": issues})


def _endpoint_not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "endpoint not found"})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    # A non-numeric id segment means the path itself does not match any route
    if errors and all((err.get("loc") or ("",))[0] == "path" for err in errors):
        return _endpoint_not_found()
    issues = [
        {"path": list(err.get("loc", ()))[1:], "message": err.get("msg", "invalid value")}
        for err in errors
    ]
    return _invalid_payload(issues)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (404, 405):
        return _endpoint_not_found()
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(ValidationError)
async def library_validation_handler(request: Request, exc: ValidationError):
    return _invalid_payload([{"path": [exc.field], "message": exc.message}])


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": str(exc) or "server error"})


# --- Health Check ---
@app.get("/health", response_model=OkModel)
def health():
    """Lightweight liveness check."""
    return {"ok": True}


# --- Author Endpoints ---
@app.get("/authors", response_model=List[AuthorModel], summary="Get all authors")
def list_authors(lib: Library = Depends(get_library)):
    return [author.to_dict() for author in lib.list_authors()]


@app.post("/authors", status_code=201, response_model=CreatedModel,
          responses=INVALID_PAYLOAD, summary="Create a new author")
def create_author(payload: AuthorCreateModel, lib: Library = Depends(get_library)):
    author_id = lib.create_author(payload.firstName, payload.lastName)
    return {"id": author_id}


@app.get("/authors/{author_id}", response_model=AuthorModel, responses=NOT_FOUND,
         summary="Get author by ID")
def get_author(author_id: int, lib: Library = Depends(get_library)):
    author = lib.get_author(author_id)
    if author is None:
        return JSONResponse(status_code=404, content={"error": "not found"})
    return author.to_dict()


@app.put("/authors/{author_id}", status_code=204, response_class=Response,
         responses=INVALID_PAYLOAD, summary="Update author")
def update_author(author_id: int, payload: AuthorCreateModel, lib: Library = Depends(get_library)):
    lib.update_author(author_id, payload.firstName, payload.lastName)
    return Response(status_code=204)


@app.delete("/authors/{author_id}", status_code=204, response_class=Response,
            summary="Delete author")
def delete_author(author_id: int, lib: Library = Depends(get_library)):
    lib.delete_author(author_id)
    return Response(status_code=204)


# --- Book Endpoints ---
@app.get("/books", response_model=List[BookModel], summary="Get all books")
def list_books(lib: Library = Depends(get_library)):
    return [book.to_dict() for book in lib.list_books()]


@app.post("/books", status_code=201, response_model=CreatedModel,
          responses=INVALID_PAYLOAD, summary="Create a new book")
def create_book(payload: BookCreateModel, lib: Library = Depends(get_library)):
    book_id = lib.create_book(payload.title, payload.genre, payload.published, payload.state)
    return {"id": book_id}


@app.get("/books/{book_id}", response_model=BookModel, responses=NOT_FOUND,
         summary="Get book by ID")
def get_book(book_id: int, lib: Library = Depends(get_library)):
    book = lib.get_book(book_id)
    if book is None:
        return JSONResponse(status_code=404, content={"error": "not found"})
    return book.to_dict()


@app.put("/books/{book_id}", status_code=204, response_class=Response,
         responses=INVALID_PAYLOAD, summary="Update book")
def update_book(book_id: int, payload: BookCreateModel, lib: Library = Depends(get_library)):
    lib.update_book(book_id, payload.title, payload.genre, payload.published, payload.state)
    return Response(status_code=204)


@app.delete("/books/{book_id}", status_code=204, response_class=Response,
            summary="Delete book")
def delete_book(book_id: int, lib: Library = Depends(get_library)):
    lib.delete_book(book_id)
    return Response(status_code=204)


@app.get("/books/{book_id}/authors", response_model=List[BookAuthorRowModel],
         summary="Get book with its authors")
def get_book_with_authors(book_id: int, lib: Library = Depends(get_library)):
    """One row per author; a book without authors gives one row with null author fields."""
    return [row.to_dict() for row in lib.get_book_with_authors(book_id)]


# --- Association Endpoint ---
@app.post("/book-author", status_code=201, response_model=OkModel,
          responses={**INVALID_PAYLOAD, **NOT_FOUND}, summary="Associate author with book")
def associate_author_with_book(payload: BookAuthorCreateModel, lib: Library = Depends(get_library)):
    lib.associate_author_with_book(payload.firstName, payload.lastName, payload.title)
    return {"ok": True}
