"""
FastAPI main application for the Book Review API.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import AuthService, get_current_user_id
from api.config import config as api_config
from api.models import (
    AuthResponse, BookCreateRequest, BookListResponse, BookMessageResponse, BookResponse,
    ErrorResponse, FieldError, HealthResponse, LoginRequest, ReviewRequest, SignupRequest,
    UserResponse,
)
from catalog.database import MongoDBManager
from catalog.errors import CatalogError, ValidationError
from catalog.repository import BookRepository, UserRepository
from utilities.config import config
from utilities.logger import get_logger, setup_logging

logger = get_logger(__name__)

# Set during lifespan startup
db_manager: Optional[MongoDBManager] = None
book_repository: Optional[BookRepository] = None
user_repository: Optional[UserRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global db_manager, book_repository, user_repository

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info("Starting Book Review API")

    try:
        db_manager = MongoDBManager(
            connection_url=config.mongodb_url,
            database_name=config.mongodb_database,
            books_collection=config.books_collection,
            users_collection=config.users_collection,
        )
        await db_manager.connect()

        user_repository = UserRepository(db_manager.users)
        book_repository = BookRepository(db_manager.books, user_repository)

    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    yield

    logger.info("Shutting down Book Review API")
    await db_manager.disconnect()


app = FastAPI(
    title=api_config.api_title,
    description=api_config.api_description,
    version=api_config.api_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log one line per request."""
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "HTTP request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


# Dependencies
def get_book_repository() -> BookRepository:
    if book_repository is None:
        raise CatalogError("Database service not available")
    return book_repository


def get_user_repository() -> UserRepository:
    if user_repository is None:
        raise CatalogError("Database service not available")
    return user_repository


def get_auth_service(users: UserRepository = Depends(get_user_repository)) -> AuthService:
    return AuthService(users)


def _error_content(message: str, status_code: int, error: Optional[str] = None,
                   errors: Optional[List[FieldError]] = None) -> dict:
    return ErrorResponse(
        message=message,
        error=error,
        errors=errors,
        status_code=status_code
    ).model_dump(by_alias=True, exclude_none=True)


# Exception handlers
@app.exception_handler(CatalogError)
async def catalog_exception_handler(request: Request, exc: CatalogError):
    """Translate typed catalog errors into the error envelope."""
    errors = None
    if isinstance(exc, ValidationError):
        errors = [FieldError(field=e["field"], message=e["message"]) for e in exc.errors]

    if exc.status_code >= 500:
        logger.error("Request failed", error=exc.message, path=request.url.path)
    else:
        logger.warning("Request rejected", error=exc.message, status_code=exc.status_code,
                       path=request.url.path)

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc.message, exc.status_code, errors=errors),
        headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 with per-field messages."""
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        errors.append(FieldError(field=".".join(loc) or "body", message=error.get("msg", "Invalid value")))

    logger.warning("Validation error", path=request.url.path, errors=[e.model_dump() for e in errors])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_content("Validation Error", status.HTTP_400_BAD_REQUEST, errors=errors)
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_content(
            "Internal server error",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error=str(exc) if api_config.debug else None
        )
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    db_status = "unavailable"
    if db_manager:
        health_info = await db_manager.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=api_config.api_version,
        database_status=db_status
    )


# Auth endpoints
@app.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
async def signup(body: SignupRequest, auth: AuthService = Depends(get_auth_service)):
    """Register a new user and return a bearer token."""
    user, token = await auth.signup(body.username, body.email, body.password)
    return AuthResponse(message="User registered successfully", token=token, user=UserResponse.from_user(user))


@app.post("/auth/login", response_model=AuthResponse, tags=["Auth"])
async def login(body: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    """Exchange email and password for a bearer token."""
    user, token = await auth.login(body.email, body.password)
    return AuthResponse(message="Login successful", token=token, user=UserResponse.from_user(user))


# Books endpoints
@app.post("/books", response_model=BookMessageResponse, status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(
    body: BookCreateRequest,
    user_id: str = Depends(get_current_user_id),
    books: BookRepository = Depends(get_book_repository),
):
    """Create a book with no reviews."""
    resolved = await books.create(body.model_dump())
    logger.debug("Book created by user", book_id=resolved.book.id, user_id=user_id)
    return BookMessageResponse(message="Book created successfully", data=BookResponse.from_resolved(resolved))


@app.get("/books", response_model=BookListResponse, tags=["Books"])
async def list_books(
    author: Optional[str] = None,
    genre: Optional[str] = None,
    page: int = Query(1, ge=1, description="Page number (starts from 1)"),
    limit: int = Query(api_config.default_page_size, ge=1, le=api_config.max_page_size,
                       description="Books per page"),
    books: BookRepository = Depends(get_book_repository),
):
    """
    List books, newest first.

    - **author**: Case-insensitive partial match on author
    - **genre**: Case-insensitive partial match on genre
    - **page**: Page number (starts from 1)
    - **limit**: Books per page
    """
    result = await books.list(author=author, genre=genre, page=page, limit=limit)
    return BookListResponse.from_page(result)


@app.get("/books/search", response_model=List[BookResponse], tags=["Books"])
async def search_books(
    query: Optional[str] = None,
    books: BookRepository = Depends(get_book_repository),
):
    """Full-text search over title and author, best matches first (at most 10)."""
    results = await books.search(query)
    return [BookResponse.from_resolved(resolved) for resolved in results]


@app.get("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(book_id: str, books: BookRepository = Depends(get_book_repository)):
    """Get a single book with its reviews."""
    return BookResponse.from_resolved(await books.get_by_id(book_id))


# Review endpoints
@app.post(
    "/books/{book_id}/reviews",
    response_model=BookMessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Reviews"],
)
async def add_review(
    book_id: str,
    body: ReviewRequest,
    user_id: str = Depends(get_current_user_id),
    books: BookRepository = Depends(get_book_repository),
):
    """Add the authenticated user's review to a book."""
    resolved = await books.add_review(book_id, user_id, body.rating, body.comment)
    return BookMessageResponse(message="Review added successfully", data=BookResponse.from_resolved(resolved))


@app.put("/books/{book_id}/reviews/{review_id}", response_model=BookMessageResponse, tags=["Reviews"])
async def update_review(
    book_id: str,
    review_id: str,
    body: ReviewRequest,
    user_id: str = Depends(get_current_user_id),
    books: BookRepository = Depends(get_book_repository),
):
    """Update the authenticated user's review, adding it if the user has none yet."""
    resolved, created = await books.update_review(book_id, user_id, body.rating, body.comment,
                                                  review_id=review_id)
    message = "Review added successfully" if created else "Review updated successfully"
    return BookMessageResponse(message=message, data=BookResponse.from_resolved(resolved))


@app.delete("/books/{book_id}/reviews/{review_id}", response_model=BookMessageResponse, tags=["Reviews"])
async def delete_review(
    book_id: str,
    review_id: str,
    user_id: str = Depends(get_current_user_id),
    books: BookRepository = Depends(get_book_repository),
):
    """Delete a review; only its author may do so."""
    resolved = await books.delete_review(book_id, review_id, user_id)
    return BookMessageResponse(message="Review deleted successfully", data=BookResponse.from_resolved(resolved))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level="info"
    )
