"""
Tenant-scoped data access.

A ScopedRepository is bound to one resolved TenantContext. Callers never pass
or see the tenant id: every statement built here carries an explicit
`tenant_id == context.tenant_id` predicate, every write stamps it, and the
tenant session adds the same criteria to ORM SELECTs as a second guard. The
same code runs unchanged under both backing strategies.
"""

import logging
from datetime import date
from typing import Any, Generic, Iterable, TypeVar

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.core.exceptions import ConflictError, TenantReadOnly, ValidationException
from dues_ledger.models.base import TenantBase
from dues_ledger.models.tenant_context import TenantContext

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=TenantBase)

# Fields callers may never set directly
PROTECTED_FIELDS = {"id", "tenant_id", "created_at", "updated_at"}

LOOKUPS = {
    "eq": lambda col, v: col == v,
    "ne": lambda col, v: col != v,
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "in": lambda col, v: col.in_(list(v)),
    "contains": lambda col, v: col.contains(v, autoescape=True),
    "icontains": lambda col, v: col.icontains(v, autoescape=True),
    "startswith": lambda col, v: col.startswith(v, autoescape=True),
    "isnull": lambda col, v: col.is_(None) if v else col.is_not(None),
}


class ScopedRepository(Generic[ModelT]):
    """
    Generic CRUD, lookup and aggregation over one tenant-scoped model.

    Lookups use Django-style keyword filters:
        find(status="sent", amount__gte=100, name__icontains="doe")
        find(any_of=[{"name__icontains": q}, {"email__icontains": q}])

    Attributes:
        model: Mapped class this repository serves
        references: Reference fields expandable by expand(), mapped to
            (target model, summary fields)
    """

    model: type[ModelT]
    references: dict[str, tuple[type[TenantBase], tuple[str, ...]]] = {}

    def __init__(self, context: TenantContext):
        self.context = context
        self.handle = context.handle
        self.tenant_id = context.tenant_id

    # ------------------------------------------------------------------
    # Statement building
    # ------------------------------------------------------------------

    def _column(self, field: str, model: type[TenantBase] | None = None):
        model = model or self.model
        column = model.__table__.columns.get(field)
        if column is None:
            raise ValidationException(f"Unknown field '{field}' for {model.__name__}")
        return getattr(model, column.key)

    def _conditions(self, filters: dict[str, Any]) -> list:
        conditions = []
        for key, value in filters.items():
            field, _, op = key.partition("__")
            op = op or "eq"
            if op not in LOOKUPS:
                raise ValidationException(f"Unsupported lookup '{op}' in '{key}'")
            conditions.append(LOOKUPS[op](self._column(field), value))
        return conditions

    def _scoped(self, stmt: Select, model: type[TenantBase] | None = None) -> Select:
        model = model or self.model
        return stmt.where(model.tenant_id == self.tenant_id)

    def _filtered(self, stmt: Select, any_of: Iterable[dict] | None, filters: dict) -> Select:
        stmt = self._scoped(stmt)
        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if any_of:
            branches = [and_(*self._conditions(branch)) for branch in any_of if branch]
            if branches:
                stmt = stmt.where(or_(*branches))
        return stmt

    def _ordered(self, stmt: Select, order_by: str | Iterable[str] | None) -> Select:
        if not order_by:
            return stmt.order_by(self.model.id)
        if isinstance(order_by, str):
            order_by = [order_by]
        for item in order_by:
            column = self._column(item.lstrip("-"))
            stmt = stmt.order_by(column.desc() if item.startswith("-") else column.asc())
        return stmt

    def _ensure_writable(self) -> None:
        if not self.context.can_write():
            raise TenantReadOnly.for_tenant(self.context.tenant)

    def _clean(self, data: dict) -> dict:
        cleaned = {}
        for key, value in data.items():
            if key in PROTECTED_FIELDS:
                continue
            if key not in self.model.__table__.columns:
                raise ValidationException(f"Unknown field '{key}' for {self.model.__name__}")
            cleaned[key] = value
        return cleaned

    def _prepare(self, record: ModelT) -> ModelT:
        """Hook for values derived on read."""
        return record

    async def _load(self, session: AsyncSession, stmt: Select) -> list[ModelT]:
        result = await session.scalars(stmt)
        return [self._prepare(record) for record in result.all()]

    async def _get(self, session: AsyncSession, record_id: int) -> ModelT | None:
        stmt = self._scoped(select(self.model).where(self.model.id == record_id))
        return await session.scalar(stmt)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(
        self,
        *,
        any_of: Iterable[dict] | None = None,
        order_by: str | Iterable[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
        **filters,
    ) -> list[ModelT]:
        stmt = self._ordered(self._filtered(select(self.model), any_of, filters), order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        async with self.handle.session(self.tenant_id) as session:
            return await self._load(session, stmt)

    async def find_by_id(self, record_id: int) -> ModelT | None:
        async with self.handle.session(self.tenant_id) as session:
            record = await self._get(session, record_id)
        return self._prepare(record) if record is not None else None

    async def find_one(
        self,
        *,
        any_of: Iterable[dict] | None = None,
        order_by: str | Iterable[str] | None = None,
        **filters,
    ) -> ModelT | None:
        records = await self.find(any_of=any_of, order_by=order_by, limit=1, **filters)
        return records[0] if records else None

    async def count(self, *, any_of: Iterable[dict] | None = None, **filters) -> int:
        stmt = self._filtered(select(func.count(self.model.id)), any_of, filters)
        async with self.handle.session(self.tenant_id) as session:
            return (await session.scalar(stmt)) or 0

    async def exists(self, *, any_of: Iterable[dict] | None = None, **filters) -> bool:
        return await self.find_one(any_of=any_of, **filters) is not None

    async def total(self, field: str, *, any_of: Iterable[dict] | None = None, **filters) -> float:
        """Sum of `field` over the matching rows (0 when none match)."""
        column = self._column(field)
        stmt = self._filtered(select(func.coalesce(func.sum(column), 0)), any_of, filters)
        async with self.handle.session(self.tenant_id) as session:
            return float(await session.scalar(stmt) or 0)

    async def group_totals(
        self,
        group_by: str,
        sum_field: str,
        *,
        any_of: Iterable[dict] | None = None,
        **filters,
    ) -> dict[Any, float]:
        """
        Sum of `sum_field` per distinct `group_by` value.

        Example:
            await models.expenditures.group_totals("category", "amount")
            -> {"Rent": 1200.0, "Events": 340.5}
        """
        key = self._column(group_by)
        value = self._column(sum_field)
        stmt = self._filtered(select(key, func.coalesce(func.sum(value), 0)), any_of, filters)
        stmt = stmt.group_by(key).order_by(key)
        async with self.handle.session(self.tenant_id) as session:
            rows = (await session.execute(stmt)).all()
        return {group: float(amount or 0) for group, amount in rows}

    async def expand(self, records: Iterable[ModelT], field: str) -> list[dict]:
        """
        Resolve a reference field into a summary of the referenced row.

        Two steps: collect the ids, then load the targets in one query scoped
        to the same tenant. A reference to a missing (or foreign) row expands
        to None.

        Returns:
            One dict per record: the record's columns plus `<name>` holding
            the summary, where `<name>` is `field` without its `_id` suffix
        """
        if field not in self.references:
            raise ValidationException(f"'{field}' is not an expandable reference")
        target, summary_fields = self.references[field]
        records = list(records)

        ids = {getattr(r, field) for r in records if getattr(r, field) is not None}
        summaries: dict[int, dict] = {}
        if ids:
            stmt = self._scoped(select(target).where(target.id.in_(ids)), target)
            async with self.handle.session(self.tenant_id) as session:
                for row in (await session.scalars(stmt)).all():
                    summaries[row.id] = {name: getattr(row, name) for name in summary_fields}

        name = field[:-3] if field.endswith("_id") else field
        expanded = []
        for record in records:
            data = record.to_dict()
            data[name] = summaries.get(getattr(record, field))
            expanded.append(data)
        return expanded

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _before_create(self, session: AsyncSession, data: dict) -> dict:
        """Hook to fill generated fields inside the create transaction."""
        return data

    async def create(self, data: dict) -> ModelT:
        """
        Insert a row owned by the context's tenant.

        Any tenant_id in `data` is ignored.

        Raises:
            TenantReadOnly: If the tenant is pending approval
            ConflictError: On a unique constraint violation
        """
        self._ensure_writable()
        data = self._clean(data)
        async with self.handle.session(self.tenant_id) as session:
            data = await self._before_create(session, data)
            record = self.model(**data)
            record.tenant_id = self.tenant_id
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(f"{self.model.__name__} violates a uniqueness rule") from e
            await session.refresh(record)
        return self._prepare(record)

    async def update(self, record_id: int, data: dict) -> ModelT | None:
        """
        Update a row of the context's tenant; None if it does not exist here.

        Raises:
            TenantReadOnly: If the tenant is pending approval
            ConflictError: On a unique constraint violation
        """
        self._ensure_writable()
        data = self._clean(data)
        async with self.handle.session(self.tenant_id) as session:
            record = await self._get(session, record_id)
            if record is None:
                return None
            for key, value in data.items():
                setattr(record, key, value)
            record.tenant_id = self.tenant_id
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(f"{self.model.__name__} violates a uniqueness rule") from e
            await session.refresh(record)
        return self._prepare(record)

    async def delete(self, record_id: int) -> bool:
        """
        Hard-delete a row of the context's tenant.

        Returns:
            False if the row does not exist in this tenant
        """
        self._ensure_writable()
        async with self.handle.session(self.tenant_id) as session:
            record = await self._get(session, record_id)
            if record is None:
                return False
            await self._before_delete(session, record)
            await session.delete(record)
            await session.commit()
        return True

    async def _before_delete(self, session: AsyncSession, record: ModelT) -> None:
        pass


def today_factory(today=None):
    """Normalize an injectable clock to a zero-argument callable."""
    if today is None:
        return date.today
    if isinstance(today, date):
        return lambda: today
    return today
