from __future__ import annotations

from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterable, Iterator, List, Mapping
from typing import Optional, Protocol, Sequence

from sqlalchemy import delete as sql_delete
from sqlalchemy import select as sql_select
from sqlalchemy import update as sql_update
from sqlalchemy.orm import Session

from .db import Base

Row = Dict[str, Any]
Filters = Mapping[str, Any]


class RowStore(Protocol):
    """Generic relational query interface used by the recipe editor.

    Filters map a column name to a value; a list, tuple or set value means
    ``column IN (...)``. ``insert`` returns the stored rows, with their new
    identifiers, in the order they were given.
    """

    def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        """Return matching rows as dictionaries."""

    def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        """Insert ``rows`` and return them as stored."""

    def update(self, table: str, values: Row, filters: Filters) -> int:
        """Update matching rows and return how many changed."""

    def delete(self, table: str, filters: Filters) -> int:
        """Delete matching rows and return how many were removed."""

    def atomic(self) -> ContextManager[Any]:
        """Group the calls made inside the block.

        Stores with multi-statement transactions make the block
        all-or-nothing; other stores may treat it as a no-op.
        """


def _model_for(table: str):
    for mapper in Base.registry.mappers:
        if mapper.local_table.name == table:
            return mapper.class_
    raise KeyError(f"Unknown table '{table}'.")


def _where(table_obj, filters: Optional[Filters]) -> list:
    clauses = []
    for name, value in (filters or {}).items():
        column = table_obj.c[name]
        if isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(value)))
        elif value is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == value)
    return clauses


def _row_of(obj) -> Row:
    return {c.name: getattr(obj, c.key) for c in obj.__table__.columns}


class SqlRowStore:
    """:class:`RowStore` over a SQLAlchemy session.

    Outside :meth:`atomic` each call commits on its own. Inside, calls only
    flush; the outermost block commits on success and rolls back on error.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._depth = 0

    def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        table_obj = _model_for(table).__table__
        if columns:
            cols = [table_obj.c[name] for name in columns]
        else:
            cols = list(table_obj.c)
        stmt = sql_select(*cols).where(*_where(table_obj, filters))
        if order_by:
            stmt = stmt.order_by(table_obj.c[order_by])
        return [dict(r._mapping) for r in self.session.execute(stmt)]

    def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        if not rows:
            return []
        model = _model_for(table)
        objs = [model(**row) for row in rows]
        with self._write():
            self.session.add_all(objs)
            self.session.flush()
            stored = [_row_of(obj) for obj in objs]
        return stored

    def update(self, table: str, values: Row, filters: Filters) -> int:
        table_obj = _model_for(table).__table__
        stmt = (
            sql_update(table_obj)
            .where(*_where(table_obj, filters))
            .values(**values)
        )
        with self._write():
            count = self.session.execute(stmt).rowcount
        return count

    def delete(self, table: str, filters: Filters) -> int:
        table_obj = _model_for(table).__table__
        stmt = sql_delete(table_obj).where(*_where(table_obj, filters))
        with self._write():
            count = self.session.execute(stmt).rowcount
        return count

    @contextmanager
    def atomic(self) -> Iterator["SqlRowStore"]:
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self.session.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self.session.commit()

    @contextmanager
    def _write(self) -> Iterator[None]:
        try:
            yield
            if self._depth:
                self.session.flush()
            else:
                self.session.commit()
        except Exception:
            if not self._depth:
                self.session.rollback()
            raise


def ids_of(rows: Iterable[Row]) -> List[str]:
    return [row["id"] for row in rows if row.get("id")]
