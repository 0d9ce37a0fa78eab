"""Limit/offset pages for ledger, order and webhook listings."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int


def paginate(limit: int, offset: int, max_limit: int = MAX_LIMIT) -> tuple[int, int]:
    return max(1, min(limit, max_limit)), max(0, offset)
