from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.orm import Query

T = TypeVar("T")

MAX_PAGE_SIZE = 200


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total

    def to_payload(self, serializer: Callable[[T], dict]) -> dict:
        return {
            "items": [serializer(item) for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "has_more": self.has_more,
        }


def paginate_query(query: Query, *, page: int, page_size: int = 20) -> Page:
    page = max(1, page)
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    total = query.count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return Page(items=items, total=total, page=page, page_size=page_size)


def paged_payload(query: Query, *, page: int, page_size: int, serializer: Callable[[T], dict]) -> dict:
    return paginate_query(query, page=page, page_size=page_size).to_payload(serializer)
