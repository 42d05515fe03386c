import logging
from contextlib import asynccontextmanager
from typing import Annotated, List

from fastapi import Body, Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .auth import (
    TOKEN_COOKIE,
    cookie_options,
    creator_reference,
    issue_token,
    verify_token,
)
from .config import Settings, get_settings
from .crud import (
    borrow_book,
    count_books,
    create_book,
    filter_books,
    get_book,
    list_all_books,
    list_borrowed_books,
    return_book,
    update_book,
)
from .exceptions import add_exception_handlers
from .models import BookModel, BorrowModel
from .schemas import (
    BookCreate,
    BookFilterParams,
    BookPageParams,
    BookUpdate,
    BorrowRequestSchema,
    CountSchema,
    DeleteResultSchema,
    InsertResultSchema,
    ReturnRequestSchema,
    SuccessSchema,
    UpdateResultSchema,
)
from .storage import Storage

settings = get_settings()

# Set up logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing database connection")
        app.state.db = Storage.from_settings(settings)
        await app.state.db.ping()
    await app.state.db.ensure_indexes()
    yield
    if not app.state.testing:
        app.state.db.close()


app = FastAPI(
    title="Bookify Library API",
    lifespan=lifespan,
    description="Book catalog, borrowing and returns for the Bookify library app",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)


def get_db() -> Storage:
    return app.state.db


@app.get("/", response_class=PlainTextResponse)
def read_root():
    return "Hello from bookify Server...."


# Auth
@app.post("/jwt", response_model=SuccessSchema)
def create_token(claims: dict = Body(...), settings: Settings = Depends(get_settings)):
    token = issue_token(claims, settings)
    response = JSONResponse(content={"success": True})
    response.set_cookie(TOKEN_COOKIE, token, **cookie_options(settings))
    return response


@app.get("/logout", response_model=SuccessSchema)
def logout(settings: Settings = Depends(get_settings)):
    response = JSONResponse(content={"success": True})
    response.delete_cookie(TOKEN_COOKIE, **cookie_options(settings))
    return response


# Books
@app.get("/books", response_model=List[BookModel])
async def list_books(db: Storage = Depends(get_db)):
    return await list_all_books(db)


@app.get("/books/{book_id}", response_model=BookModel)
async def fetch_single_book(book_id: str, db: Storage = Depends(get_db)):
    return await get_book(db, book_id)


@app.post("/book", response_model=InsertResultSchema)
async def add_book(
    book: BookCreate,
    claims: dict = Depends(verify_token),
    db: Storage = Depends(get_db),
):
    return await create_book(db, book, creator_reference(claims))


@app.put(
    "/books/{book_id}",
    response_model=UpdateResultSchema,
    dependencies=[Depends(verify_token)],
)
async def modify_book(
    book_id: str,
    book_update: BookUpdate,
    db: Storage = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await update_book(db, book_id, book_update, settings.book_update_mode)


@app.get("/all-books", response_model=List[BookModel])
async def list_books_page(
    params: Annotated[BookPageParams, Query()],
    db: Storage = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await filter_books(db, params, settings.default_page_size)


@app.get("/books-count", response_model=CountSchema)
async def books_count(
    params: Annotated[BookFilterParams, Query()], db: Storage = Depends(get_db)
):
    return {"count": await count_books(db, params)}


# Borrowing
@app.post("/borrow", response_model=InsertResultSchema, status_code=status.HTTP_200_OK)
async def borrow_book_item(
    borrow_request: BorrowRequestSchema,
    db: Storage = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await borrow_book(db, borrow_request, settings.track_quantity)


@app.get("/borrowed-books", response_model=List[BorrowModel])
async def borrowed_books(
    email: str = Query(..., min_length=1), db: Storage = Depends(get_db)
):
    return await list_borrowed_books(db, email)


@app.post("/return", response_model=DeleteResultSchema)
async def return_book_item(
    return_request: ReturnRequestSchema,
    db: Storage = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await return_book(db, return_request, settings.track_quantity)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
