# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""SQL query builder using SQLModel/SQLAlchemy.

Filter trees and search terms are compiled with ``to_sqlalchemy()`` and
``search_to_sqlalchemy()``; count aggregates become correlated scalar
subqueries labelled ``<relation>_count``.

A transaction opened with ``begin()`` binds a ``Session`` to the calling
thread. Every statement issued by that thread until ``commit()`` or
``rollback()`` runs inside it, so re-fetches see uncommitted writes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import ColumnElement, Engine, Select, create_engine, func, select
from sqlalchemy import delete as sql_delete
from sqlalchemy import update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from ..errors import TransactionError
from .builder import QueryBuilder
from .descriptor import DescriptorRegistry, ModelDescriptor
from .filters import search_to_sqlalchemy, to_sqlalchemy
from .query import AggregateRequest, QuerySpec, TrashedScope

logger = logging.getLogger(__name__)


class SQLQueryBuilder(QueryBuilder):
    """Synchronous SQL query builder supporting SQLite, PostgreSQL, MySQL."""

    def __init__(self, engine: Engine, registry: DescriptorRegistry) -> None:
        super().__init__(registry)
        self._engine = engine
        self._local = threading.local()

    @classmethod
    def from_url(
        cls,
        url: str,
        registry: DescriptorRegistry,
        *,
        echo: bool = False,
        **kwargs: Any,
    ) -> SQLQueryBuilder:
        """Create builder from database URL.

        In-memory SQLite databases share one connection across threads,
        otherwise every connection would see its own empty database.
        """
        if url.startswith("sqlite"):
            connect_args = kwargs.pop("connect_args", {})
            connect_args.setdefault("check_same_thread", False)
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs.setdefault("poolclass", StaticPool)
            engine = create_engine(url, echo=echo, connect_args=connect_args, **kwargs)
        else:
            engine = create_engine(url, echo=echo, **kwargs)
        return cls(engine, registry)

    @property
    def engine(self) -> Engine:
        return self._engine

    def setup_models(self, model_classes: list[type[SQLModel]] | None = None) -> None:
        """Create tables for the given model classes."""
        if model_classes is None:
            model_classes = [descriptor.model_class for descriptor in self._registry]
        tables = [model_class.__table__ for model_class in model_classes]  # type: ignore[attr-defined]
        SQLModel.metadata.create_all(self._engine, tables=tables)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "session", None) is not None

    def begin(self) -> None:
        if self.in_transaction:
            raise TransactionError("A transaction is already active in this thread")
        session = Session(self._engine)
        session.begin()
        self._local.session = session
        logger.debug("Transaction started")

    def commit(self) -> None:
        session = self._take_session()
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise TransactionError(f"Failed to commit transaction: {e}") from e
        finally:
            session.close()
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        session = self._take_session()
        try:
            session.rollback()
        except SQLAlchemyError as e:
            raise TransactionError(f"Failed to roll back transaction: {e}") from e
        finally:
            session.close()
        logger.debug("Transaction rolled back")

    def _take_session(self) -> Session:
        session: Session | None = getattr(self._local, "session", None)
        if session is None:
            raise TransactionError("No active transaction")
        self._local.session = None
        return session

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """The active transaction session, or a short-lived autocommitting one."""
        active: Session | None = getattr(self._local, "session", None)
        if active is not None:
            yield active
            return
        with Session(self._engine) as session:
            yield session
            session.commit()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _conditions(self, spec: QuerySpec) -> list[ColumnElement[bool]]:
        descriptor = spec.descriptor
        model_class = descriptor.model_class
        conditions = [to_sqlalchemy(node, model_class) for node in spec.wheres]
        if spec.search_term is not None:
            conditions.append(search_to_sqlalchemy(spec.search_term, model_class))
        if descriptor.soft_deletes:
            column = model_class.__table__.c[descriptor.deleted_at_column]  # type: ignore[attr-defined]
            if spec.trashed == TrashedScope.EXCLUDE:
                conditions.append(column.is_(None))
            elif spec.trashed == TrashedScope.ONLY:
                conditions.append(column.is_not(None))
        return conditions

    def _aggregate_column(self, descriptor: ModelDescriptor, aggregate: AggregateRequest) -> Any:
        """Correlated ``COUNT(*)`` of related rows, trashed ones excluded."""
        relation = descriptor.relation(aggregate.relation)
        target = self._registry.descriptor(relation.target)
        owner_field, target_field = relation.joining_fields(descriptor, target)
        owner_table = descriptor.model_class.__table__  # type: ignore[attr-defined]
        target_table = target.model_class.__table__.alias(f"{aggregate.alias}_source")  # type: ignore[attr-defined]

        subquery = (
            select(func.count())
            .select_from(target_table)
            .where(target_table.c[target_field] == owner_table.c[owner_field])
        )
        if target.soft_deletes:
            subquery = subquery.where(target_table.c[target.deleted_at_column].is_(None))
        return subquery.scalar_subquery().label(aggregate.alias)

    def _build_select(self, spec: QuerySpec) -> Select[Any]:
        descriptor = spec.descriptor
        table = descriptor.model_class.__table__  # type: ignore[attr-defined]
        aggregates = {aggregate.alias: self._aggregate_column(descriptor, aggregate) for aggregate in spec.aggregates}

        stmt = select(*(table.c[name] for name in self._selected_columns(spec)), *aggregates.values())
        stmt = stmt.where(*self._conditions(spec))

        for directive in spec.sorts:
            expression = aggregates[directive.field] if directive.field in aggregates else table.c[directive.field]
            stmt = stmt.order_by(expression.desc() if directive.descending else expression.asc())
        return stmt.order_by(table.c[descriptor.key_name].asc())

    def _fetch_rows(self, spec: QuerySpec, *, offset: int | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        stmt = self._build_select(spec)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._session() as session:
            result = session.connection().execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    def count(self, spec: QuerySpec) -> int:
        table = spec.descriptor.model_class.__table__  # type: ignore[attr-defined]
        stmt = select(func.count()).select_from(table).where(*self._conditions(spec))
        with self._session() as session:
            return session.connection().execute(stmt).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, descriptor: ModelDescriptor, values: Mapping[str, Any]) -> Any:
        """Create a record through the ORM so model defaults apply.

        Note: This method flushes immediately so constraint violations surface
        at the offending statement rather than at commit.
        """
        model = descriptor.model_class(**values)
        with self._session() as session:
            session.add(model)
            session.flush()
            key = getattr(model, descriptor.key_name)
            session.expunge(model)
            return key

    def update(self, descriptor: ModelDescriptor, key: Any, values: Mapping[str, Any]) -> int:
        if not values:
            return 0
        table = descriptor.model_class.__table__  # type: ignore[attr-defined]
        stmt = sql_update(table).where(table.c[descriptor.key_name] == key).values(**values)
        with self._session() as session:
            return session.connection().execute(stmt).rowcount

    def delete(self, descriptor: ModelDescriptor, key: Any) -> int:
        table = descriptor.model_class.__table__  # type: ignore[attr-defined]
        stmt = sql_delete(table).where(table.c[descriptor.key_name] == key)
        with self._session() as session:
            return session.connection().execute(stmt).rowcount
