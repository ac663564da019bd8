from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from core.exceptions import ValidationError

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@dataclass
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @classmethod
    def from_query_params(cls, params, *, default_limit: int = DEFAULT_LIMIT) -> "PageRequest":
        try:
            page = int(params.get("page") or 1)
            limit = int(params.get("limit") or default_limit)
        except (TypeError, ValueError):
            raise ValidationError("page and limit must be integers.", code="invalid_pagination")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive.", code="invalid_pagination")
        return cls(page=page, limit=min(limit, MAX_LIMIT))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page:
    request: PageRequest
    total: int
    items: List[Any] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.request.limit) if self.total else 0

    @property
    def has_more(self) -> bool:
        return self.request.page * self.request.limit < self.total

    def pagination(self) -> dict:
        return {
            "page": self.request.page,
            "limit": self.request.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_more": self.has_more,
        }


class PageLimitPagination(PageNumberPagination):
    """``?page=&limit=`` pagination rendering the same envelope as ``Page``."""

    page_size = DEFAULT_LIMIT
    page_size_query_param = "limit"
    max_page_size = MAX_LIMIT

    def get_paginated_response(self, data):
        request = PageRequest(page=self.page.number, limit=self.page.paginator.per_page)
        page = Page(request=request, total=self.page.paginator.count)
        return Response({"data": data, "pagination": page.pagination()})
