"""Search/filter/sort/paginate/project over a SQLModel select.

`QueryBuilder` takes a base statement and the raw query-string mapping
and refines the statement step by step::

    qb = QueryBuilder(select(models.Student), models.Student, params)
    qb.search(["email", "name.first_name"]).filter().sort().paginate().fields()
    meta = qb.count_total(session)
    rows = session.exec(qb.model_query).all()

Field names may be dotted (``name.first_name``) to reach into JSON
sub-records.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import JSON, false, func, or_
from sqlmodel import Session, select

from ..errors import AppError

RESERVED_PARAMS = frozenset({"searchTerm", "sort", "limit", "page", "fields"})
DEFAULT_SORT = "-created_at"
DEFAULT_LIMIT = 10


def _to_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class QueryBuilder:
    def __init__(self, model_query, model, query: Mapping[str, Any]):
        self.model_query = model_query
        self.model = model
        self.query = dict(query)
        self.page = 1
        self.limit = DEFAULT_LIMIT
        self.projection: Optional[tuple[bool, set[str]]] = None
        self._filtered = model_query

    def _column(self, path: str):
        """Resolve a (possibly dotted) field name to a column expression."""
        head, _, rest = path.partition(".")
        column = self.model.__table__.columns.get(head)
        if column is None:
            return None
        attr = getattr(self.model, head)
        if not rest:
            return attr
        if not isinstance(column.type, JSON):
            return None
        parts = rest.split(".")
        node = attr[parts[0]] if len(parts) == 1 else attr[tuple(parts)]
        return node.as_string()

    @staticmethod
    def _coerce(column_expr, raw: Any):
        """Convert a query-string value to the column's Python type."""
        try:
            python_type = column_expr.type.python_type
        except (AttributeError, NotImplementedError):
            return raw
        if python_type is bool and isinstance(raw, str):
            return raw.lower() in ("true", "1", "yes")
        if python_type is int and isinstance(raw, str):
            try:
                return int(raw)
            except ValueError:
                return raw
        if python_type in (datetime, date) and isinstance(raw, str):
            try:
                return python_type.fromisoformat(raw)
            except ValueError:
                raise AppError(f"{raw} is not a valid ISO {python_type.__name__}", status_code=400)
        return raw

    def search(self, searchable_fields: Iterable[str]) -> "QueryBuilder":
        term = self.query.get("searchTerm")
        if term:
            pattern = _escape_like(str(term))
            clauses = []
            for field in searchable_fields:
                expr = self._column(field)
                if expr is not None:
                    clauses.append(expr.ilike(f"%{pattern}%", escape="\\"))
            if clauses:
                self.model_query = self.model_query.where(or_(*clauses))
        self._filtered = self.model_query
        return self

    def filter(self) -> "QueryBuilder":
        """Equality filters from every non-reserved query parameter.

        Unknown fields match nothing.
        """
        for key, raw in self.query.items():
            if key in RESERVED_PARAMS:
                continue
            expr = self._column(key)
            if expr is None:
                self.model_query = self.model_query.where(false())
                continue
            self.model_query = self.model_query.where(expr == self._coerce(expr, raw))
        self._filtered = self.model_query
        return self

    def sort(self) -> "QueryBuilder":
        raw = self.query.get("sort") or DEFAULT_SORT
        order_by = []
        for token in str(raw).split(","):
            token = token.strip()
            if not token:
                continue
            descending = token.startswith("-")
            expr = self._column(token.lstrip("-"))
            if expr is None:
                continue
            order_by.append(expr.desc() if descending else expr.asc())
        if order_by:
            self.model_query = self.model_query.order_by(*order_by)
        return self

    def paginate(self) -> "QueryBuilder":
        self.page = _to_int(self.query.get("page"), 1)
        self.limit = _to_int(self.query.get("limit"), DEFAULT_LIMIT)
        self.model_query = self.model_query.offset((self.page - 1) * self.limit).limit(self.limit)
        return self

    def fields(self) -> "QueryBuilder":
        """Record the requested projection; `-field` entries exclude."""
        raw = self.query.get("fields")
        if raw:
            names = [n.strip() for n in str(raw).split(",") if n.strip()]
            excluded = {n[1:] for n in names if n.startswith("-")}
            included = {n for n in names if not n.startswith("-")}
            self.projection = (True, included) if included else (False, excluded)
        return self

    def count_total(self, session: Session) -> dict:
        subquery = self._filtered.order_by(None).subquery()
        total = session.exec(select(func.count()).select_from(subquery)).one()
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "total_page": math.ceil(total / self.limit) if self.limit else 0,
        }

    def project(self, doc: dict) -> dict:
        """Apply the recorded projection to one serialised document."""
        if self.projection is None:
            return doc
        include, names = self.projection
        if include:
            return {k: v for k, v in doc.items() if k in names or k == "id"}
        return {k: v for k, v in doc.items() if k not in names}
