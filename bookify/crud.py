import logging
import re
from typing import List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import UpdateMode
from .exceptions import (
    BookNotAvailableError,
    BookNotFoundError,
    BorrowConflictError,
    DatabaseError,
    InvalidBookDataError,
    InvalidIdError,
)
from .schemas import (
    BookCreate,
    BookFilterParams,
    BookPageParams,
    BookUpdate,
    BorrowRequestSchema,
    FilterKind,
    ReturnRequestSchema,
)
from .storage import Storage

logger = logging.getLogger(__name__)

# Set by the store or from the caller's identity, never from the request body.
RESERVED_BOOK_FIELDS = ("_id", "createdBy")


def _without(data: dict, keys) -> dict:
    return {k: v for k, v in data.items() if k not in keys}


def to_object_id(value: str) -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise InvalidIdError(value)
    return ObjectId(value)


def build_book_query(params: BookFilterParams) -> dict:
    """Shared predicate for the paginated listing and the count."""
    query = {}
    if params.search:
        query["name"] = {"$regex": re.escape(params.search), "$options": "i"}

    kind = params.filter_kind
    if kind == FilterKind.AVAILABLE:
        query["quantity"] = {"$gt": 0}
    elif kind == FilterKind.CATEGORY:
        query["category"] = params.filter
    return query


async def list_all_books(db: Storage) -> List[dict]:
    try:
        return await db.books.find().to_list(length=None)
    except PyMongoError as e:
        raise DatabaseError("list books", str(e))


async def filter_books(
    db: Storage, params: BookPageParams, default_page_size: int
) -> List[dict]:
    size = params.size or default_page_size
    sort = None
    if params.sort:
        sort = [("rating", 1 if params.sort == "asc" else -1)]

    try:
        cursor = db.books.find(
            build_book_query(params),
            sort=sort,
            skip=(params.page - 1) * size,
            limit=size,
        )
        return await cursor.to_list(length=None)
    except PyMongoError as e:
        raise DatabaseError("fetch books", str(e))


async def count_books(db: Storage, params: BookFilterParams) -> int:
    try:
        return await db.books.count_documents(build_book_query(params))
    except PyMongoError as e:
        raise DatabaseError("count books", str(e))


async def get_book(db: Storage, book_id: str) -> dict:
    if not ObjectId.is_valid(book_id):
        raise BookNotFoundError(book_id)
    try:
        book = await db.books.find_one({"_id": ObjectId(book_id)})
    except PyMongoError as e:
        raise DatabaseError("fetch book", str(e))
    if book is None:
        raise BookNotFoundError(book_id)
    return book


async def create_book(db: Storage, book: BookCreate, created_by: Optional[str]):
    book_data = _without(book.model_dump(exclude_none=True), RESERVED_BOOK_FIELDS)
    if created_by is not None:
        book_data["createdBy"] = created_by
    try:
        result = await db.books.insert_one(book_data)
    except PyMongoError as e:
        raise DatabaseError("save book", str(e))
    logger.info(f"Book {book.name!r} saved as {result.inserted_id}")
    return {"acknowledged": result.acknowledged, "insertedId": str(result.inserted_id)}


async def update_book(
    db: Storage, book_id: str, book_update: BookUpdate, mode: UpdateMode
):
    update_data = _without(
        book_update.model_dump(exclude_unset=True), RESERVED_BOOK_FIELDS
    )
    if not update_data:
        raise InvalidBookDataError("no fields to update")

    upsert = mode == UpdateMode.UPSERT
    if upsert:
        book_oid = to_object_id(book_id)
    elif ObjectId.is_valid(book_id):
        book_oid = ObjectId(book_id)
    else:
        raise BookNotFoundError(book_id)

    try:
        result = await db.books.update_one(
            {"_id": book_oid}, {"$set": update_data}, upsert=upsert
        )
    except PyMongoError as e:
        raise DatabaseError("update book", str(e))

    if result.matched_count == 0 and result.upserted_id is None:
        raise BookNotFoundError(book_id)
    return {
        "acknowledged": result.acknowledged,
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedId": str(result.upserted_id) if result.upserted_id else None,
    }


async def _take_copy(db: Storage, book_id: str) -> bool:
    """Decrement the book's quantity; False when the book is not in the catalog."""
    if not ObjectId.is_valid(book_id):
        return False
    book_oid = ObjectId(book_id)
    result = await db.books.update_one(
        {"_id": book_oid, "quantity": {"$gt": 0}}, {"$inc": {"quantity": -1}}
    )
    if result.matched_count:
        return True
    if await db.books.find_one({"_id": book_oid}, {"_id": 1}):
        logger.warning(f"Book {book_id} has no copies left")
        raise BookNotAvailableError(book_id)
    return False


async def _restore_copy(db: Storage, book_id: Optional[str]):
    if not book_id or not ObjectId.is_valid(book_id):
        return
    result = await db.books.update_one(
        {"_id": ObjectId(book_id)}, {"$inc": {"quantity": 1}}
    )
    if not result.matched_count:
        logger.warning(f"Book {book_id} not found while restoring quantity")


async def borrow_book(
    db: Storage, borrow_request: BorrowRequestSchema, track_quantity: bool = True
):
    borrow_data = _without(borrow_request.model_dump(), ("_id",))
    email, book_id = borrow_request.email, borrow_request.bookId

    copy_taken = False
    try:
        already_borrowed = await db.borrows.find_one(
            {"email": email, "bookId": book_id}
        )
        if already_borrowed:
            raise BorrowConflictError(email, book_id)

        if track_quantity:
            copy_taken = await _take_copy(db, book_id)

        try:
            result = await db.borrows.insert_one(borrow_data)
        except DuplicateKeyError:
            # Lost the race against a concurrent borrow of the same pair.
            if copy_taken:
                copy_taken = False
                await _restore_copy(db, book_id)
            raise BorrowConflictError(email, book_id)
    except PyMongoError as e:
        if copy_taken:
            try:
                await _restore_copy(db, book_id)
            except PyMongoError as restore_error:
                logger.error(f"Could not give back a copy of {book_id}: {restore_error}")
        raise DatabaseError("borrow", str(e))

    return {"acknowledged": result.acknowledged, "insertedId": str(result.inserted_id)}


async def list_borrowed_books(db: Storage, email: str) -> List[dict]:
    try:
        return await db.borrows.find({"email": email}).to_list(length=None)
    except PyMongoError as e:
        raise DatabaseError("fetch borrowed books", str(e))


async def return_book(
    db: Storage, return_request: ReturnRequestSchema, track_quantity: bool = True
):
    borrow_oid = to_object_id(return_request.borrowId)
    try:
        record = await db.borrows.find_one_and_delete({"_id": borrow_oid})
        if record is not None and track_quantity:
            await _restore_copy(db, record.get("bookId") or return_request.bookId)
    except PyMongoError as e:
        logger.error(f"Error returning book: {e}")
        raise DatabaseError("return", str(e))

    return {"acknowledged": True, "deletedCount": 1 if record is not None else 0}
