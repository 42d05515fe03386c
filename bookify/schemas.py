from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

AVAILABLE_FILTER_VALUES = ("quantity>0", "available")


class FilterKind(str, Enum):
    NONE = "none"
    AVAILABLE = "available"
    CATEGORY = "category"


class BookCreate(BaseModel):
    name: str
    quantity: int = Field(0, ge=0)
    rating: Optional[float] = None
    category: Optional[str] = None

    class Config:
        extra = "allow"


class BookUpdate(BaseModel):
    name: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = None
    category: Optional[str] = None

    class Config:
        extra = "allow"


class BookFilterParams(BaseModel):
    search: Optional[str] = Field(None, max_length=200)
    filter: Optional[str] = Field(None, max_length=100)

    @property
    def filter_kind(self) -> FilterKind:
        if not self.filter:
            return FilterKind.NONE
        if self.filter in AVAILABLE_FILTER_VALUES:
            return FilterKind.AVAILABLE
        return FilterKind.CATEGORY


class BookPageParams(BookFilterParams):
    page: int = Field(1, ge=1)
    size: Optional[int] = Field(None, ge=1)
    sort: Optional[Literal["asc", "desc"]] = None

    @field_validator("size", "sort", mode="before")
    @classmethod
    def blank_as_missing(cls, value):
        # The web client sends every query parameter, empty when unused.
        if isinstance(value, str) and not value.strip():
            return None
        return value


class BorrowRequestSchema(BaseModel):
    email: str = Field(..., min_length=1)
    bookId: str = Field(..., min_length=1)

    class Config:
        extra = "allow"


class ReturnRequestSchema(BaseModel):
    bookId: Optional[str] = None
    borrowId: str


class InsertResultSchema(BaseModel):
    acknowledged: bool
    insertedId: str


class DeleteResultSchema(BaseModel):
    acknowledged: bool
    deletedCount: int


class UpdateResultSchema(BaseModel):
    acknowledged: bool
    matchedCount: int
    modifiedCount: int
    upsertedId: Optional[str] = None


class CountSchema(BaseModel):
    count: int


class SuccessSchema(BaseModel):
    success: bool = True
