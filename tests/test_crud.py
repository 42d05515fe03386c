import pytest
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from bookify.crud import (
    borrow_book,
    build_book_query,
    count_books,
    filter_books,
    get_book,
    list_all_books,
    return_book,
)
from bookify.exceptions import (
    BookNotFoundError,
    BorrowConflictError,
    DatabaseError,
    InvalidIdError,
)
from bookify.schemas import (
    BookFilterParams,
    BookPageParams,
    BorrowRequestSchema,
    FilterKind,
    ReturnRequestSchema,
)


def mock_storage():
    db = MagicMock()
    db.books = MagicMock()
    db.borrows = MagicMock()
    return db


def test_build_book_query_without_params():
    assert build_book_query(BookFilterParams()) == {}


def test_build_book_query_escapes_search():
    query = build_book_query(BookFilterParams(search="c++"))
    assert query == {"name": {"$regex": r"c\+\+", "$options": "i"}}


@pytest.mark.parametrize("value", ["quantity>0", "available"])
def test_build_book_query_available(value):
    params = BookFilterParams(filter=value)
    assert params.filter_kind == FilterKind.AVAILABLE
    assert build_book_query(params) == {"quantity": {"$gt": 0}}


def test_build_book_query_category():
    params = BookFilterParams(filter="Poetry", search="rose")
    assert params.filter_kind == FilterKind.CATEGORY
    assert build_book_query(params) == {
        "name": {"$regex": "rose", "$options": "i"},
        "category": "Poetry",
    }


@pytest.mark.asyncio
async def test_filter_books_builds_offset_and_sort():
    db = mock_storage()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[])
    db.books.find.return_value = cursor

    params = BookPageParams(page=3, size=4, sort="asc", filter="quantity>0")
    await filter_books(db, params, default_page_size=10)

    db.books.find.assert_called_once_with(
        {"quantity": {"$gt": 0}}, sort=[("rating", 1)], skip=8, limit=4
    )


@pytest.mark.asyncio
async def test_filter_books_uses_default_page_size():
    db = mock_storage()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[])
    db.books.find.return_value = cursor

    await filter_books(db, BookPageParams(), default_page_size=12)

    db.books.find.assert_called_once_with({}, sort=None, skip=0, limit=12)


@pytest.mark.asyncio
async def test_store_failures_become_database_errors():
    db = mock_storage()
    db.books.count_documents = AsyncMock(
        side_effect=ServerSelectionTimeoutError("no servers")
    )
    with pytest.raises(DatabaseError):
        await count_books(db, BookFilterParams())

    db.books.find.return_value.to_list = AsyncMock(
        side_effect=ServerSelectionTimeoutError("no servers")
    )
    with pytest.raises(DatabaseError):
        await list_all_books(db)


@pytest.mark.asyncio
async def test_get_book_missing():
    db = mock_storage()
    db.books.find_one = AsyncMock(return_value=None)
    with pytest.raises(BookNotFoundError):
        await get_book(db, str(ObjectId()))


@pytest.mark.asyncio
async def test_borrow_race_on_unique_index_is_a_conflict():
    db = mock_storage()
    book_id = str(ObjectId())
    db.borrows.find_one = AsyncMock(return_value=None)
    db.borrows.insert_one = AsyncMock(
        side_effect=DuplicateKeyError("E11000 duplicate key error")
    )
    db.books.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

    request = BorrowRequestSchema(email="a@x.com", bookId=book_id)
    with pytest.raises(BorrowConflictError):
        await borrow_book(db, request, track_quantity=True)

    # decrement followed by the compensating increment
    increments = [c.args[1]["$inc"]["quantity"] for c in db.books.update_one.call_args_list]
    assert increments == [-1, 1]


@pytest.mark.asyncio
async def test_borrow_keeps_extra_fields():
    db = mock_storage()
    inserted_id = ObjectId()
    db.borrows.find_one = AsyncMock(return_value=None)
    db.borrows.insert_one = AsyncMock(
        return_value=MagicMock(acknowledged=True, inserted_id=inserted_id)
    )

    request = BorrowRequestSchema(email="a@x.com", bookId="B1", title="Dune")
    result = await borrow_book(db, request, track_quantity=False)

    assert result == {"acknowledged": True, "insertedId": str(inserted_id)}
    db.borrows.insert_one.assert_called_once_with(
        {"email": "a@x.com", "bookId": "B1", "title": "Dune"}
    )


@pytest.mark.asyncio
async def test_return_rejects_malformed_id():
    db = mock_storage()
    with pytest.raises(InvalidIdError):
        await return_book(db, ReturnRequestSchema(bookId="B1", borrowId="123"))


@pytest.mark.asyncio
async def test_return_store_failure():
    db = mock_storage()
    db.borrows.find_one_and_delete = AsyncMock(
        side_effect=ServerSelectionTimeoutError("no servers")
    )
    request = ReturnRequestSchema(bookId="B1", borrowId=str(ObjectId()))
    with pytest.raises(DatabaseError):
        await return_book(db, request)


@pytest.mark.asyncio
async def test_return_restores_quantity_from_record(storage):
    book = await storage.books.insert_one({"name": "Dune", "quantity": 0})
    book_id = str(book.inserted_id)
    borrow = await storage.borrows.insert_one({"email": "a@x.com", "bookId": book_id})

    result = await return_book(
        storage,
        ReturnRequestSchema(bookId=None, borrowId=str(borrow.inserted_id)),
    )

    assert result == {"acknowledged": True, "deletedCount": 1}
    restored = await storage.books.find_one({"_id": book.inserted_id})
    assert restored["quantity"] == 1


@pytest.mark.asyncio
async def test_borrow_store_failure_gives_copy_back():
    db = mock_storage()
    book_id = str(ObjectId())
    db.borrows.find_one = AsyncMock(return_value=None)
    db.borrows.insert_one = AsyncMock(
        side_effect=ServerSelectionTimeoutError("no servers")
    )
    db.books.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

    request = BorrowRequestSchema(email="a@x.com", bookId=book_id)
    with pytest.raises(DatabaseError):
        await borrow_book(db, request, track_quantity=True)

    increments = [c.args[1]["$inc"]["quantity"] for c in db.books.update_one.call_args_list]
    assert increments == [-1, 1]


@pytest.mark.asyncio
async def test_borrow_store_failure_without_copy_taken():
    db = mock_storage()
    db.borrows.find_one = AsyncMock(return_value=None)
    db.borrows.insert_one = AsyncMock(
        side_effect=ServerSelectionTimeoutError("no servers")
    )
    db.books.update_one = AsyncMock()

    request = BorrowRequestSchema(email="a@x.com", bookId="B1")
    with pytest.raises(DatabaseError):
        await borrow_book(db, request, track_quantity=True)

    db.books.update_one.assert_not_called()
