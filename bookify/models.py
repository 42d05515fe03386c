from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator


class MongoDocument(BaseModel):
    """Stored document with its ``_id`` rendered as a string.

    Fields a client stored alongside the known ones are passed through.
    """

    id: Optional[str] = Field(None, alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        if isinstance(value, ObjectId):
            return str(value)
        return value

    class Config:
        populate_by_name = True
        extra = "allow"


class BookModel(MongoDocument):
    name: Optional[str] = None
    quantity: Optional[int] = None
    rating: Optional[float] = None
    category: Optional[str] = None
    createdBy: Optional[str] = None

    @field_validator("createdBy", mode="before")
    @classmethod
    def stringify_creator(cls, value):
        # Older documents may carry numeric or ObjectId creator references.
        return value if value is None else str(value)


class BorrowModel(MongoDocument):
    email: str
    bookId: str
