"""Paging helpers shared by list operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select

from hrpro.extensions import db


DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


def normalize_paging(page: int | None, page_size: int | None) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    page_size = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def count_rows(stmt: Select[Any]) -> int:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    return int(db.session.execute(count_stmt).scalar_one())


def paginate(stmt: Select[Any], page: int, page_size: int) -> Select[Any]:
    return stmt.limit(page_size).offset((page - 1) * page_size)
