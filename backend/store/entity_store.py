from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import DBAPIError, IntegrityError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from services.query_cache import QueryCache, query_cache as default_cache
from store.base import EntityFilter, KindSpec
from store.errors import DependencyError, NotFoundError, ValidationError
from store.registry import KindRegistry

logger = logging.getLogger(__name__)


class EntityStore:
    """Owner-scoped create/update/list over every registered entity kind."""

    def __init__(self, db: Session, registry: KindRegistry | None = None, cache: QueryCache | None = None):
        if registry is None:
            from store import entity_registry

            registry = entity_registry
        self.db = db
        self.registry = registry
        self.cache = cache if cache is not None else default_cache

    @contextmanager
    def _storage_call(self, kind: str, action: str):
        try:
            yield
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning(f"Constraint rejected during {kind} {action}: {exc.orig}")
            raise ValidationError({"record": "violates a storage constraint"}, kind=kind) from exc
        except (DBAPIError, PoolTimeoutError) as exc:
            self.db.rollback()
            logger.error(f"Storage failure during {kind} {action}: {exc}")
            raise DependencyError(f"Storage unavailable during {kind} {action}") from exc

    # --- helpers ---

    def _coerce(self, spec: KindSpec, payload: dict[str, Any], *, for_update: bool) -> tuple[dict[str, Any], dict[str, str]]:
        values: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name, raw in payload.items():
            field = spec.field_spec(name)
            if field is None:
                errors[name] = "is not a recognized field"
                continue
            if for_update and not field.patchable:
                errors[name] = "cannot be updated"
                continue
            if for_update and raw is None and not field.nullable:
                errors[name] = "cannot be null"
                continue
            try:
                values[name] = field.coerce(raw)
            except ValueError as exc:
                errors[name] = str(exc)
        return values, errors

    def _check_required(self, spec: KindSpec, values: dict[str, Any], errors: dict[str, str]) -> None:
        for field in spec.fields:
            if field.required and values.get(field.name) is None and field.name not in errors:
                errors[field.name] = "is required"

    def _check_references(self, spec: KindSpec, values: dict[str, Any], owner_id: int) -> None:
        for ref in spec.references:
            ref_id = values.get(ref.field)
            if ref_id is None:
                continue
            self.get(ref.kind, ref_id, owner_id)

    def _invalidate(self, spec: KindSpec, owner_id: int) -> None:
        for key in spec.invalidates:
            self.cache.invalidate(key, owner_id)

    # --- operations ---

    def get(self, kind: str, entity_id: int, owner_id: int):
        spec = self.registry.require(kind)
        model = spec.model
        with self._storage_call(kind, "lookup"):
            row = (
                self.db.query(model)
                .filter(model.id == entity_id, model.user_id == owner_id)
                .first()
            )
        if row is None:
            raise NotFoundError(kind, entity_id)
        return row

    def create(self, kind: str, payload: dict[str, Any], owner_id: int):
        spec = self.registry.require(kind)
        values, errors = self._coerce(spec, payload or {}, for_update=False)
        for field in spec.fields:
            if values.get(field.name) is None and field.default_factory is not None and field.name not in errors:
                values[field.name] = field.default_factory()
        self._check_required(spec, values, errors)
        errors.update({k: v for k, v in spec.validator(values, None).items() if k not in errors})
        if errors:
            raise ValidationError(errors, kind=kind)

        self._check_references(spec, values, owner_id)

        row = spec.model(user_id=owner_id, **spec.column_values(values))
        with self._storage_call(kind, "create"):
            self.db.add(row)
            self.db.flush()
            if spec.on_create is not None:
                spec.on_create(self.db, row)
            self.db.commit()
            self.db.refresh(row)
        self._invalidate(spec, owner_id)
        logger.info("Created %s %s for user %s", kind, row.id, owner_id)
        return row

    def update(self, kind: str, entity_id: int, patch: dict[str, Any], owner_id: int):
        spec = self.registry.require(kind)
        row = self.get(kind, entity_id, owner_id)
        changes, errors = self._coerce(spec, patch or {}, for_update=True)
        previous = spec.current_values(row)
        merged = {**previous, **changes}
        self._check_required(spec, merged, errors)
        errors.update({k: v for k, v in spec.validator(merged, previous).items() if k not in errors})
        if errors:
            raise ValidationError(errors, kind=kind)

        self._check_references(spec, changes, owner_id)

        with self._storage_call(kind, "update"):
            for name, value in spec.column_values(changes).items():
                setattr(row, name, value)
            if spec.on_update is not None:
                self.db.flush()
                spec.on_update(self.db, row, previous)
            self.db.commit()
            self.db.refresh(row)
        self._invalidate(spec, owner_id)
        logger.info("Updated %s %s for user %s (%s)", kind, row.id, owner_id, ", ".join(sorted(changes)) or "no changes")
        return row

    def list(self, kind: str, owner_id: int, filters: EntityFilter | None = None) -> list:
        spec = self.registry.require(kind)
        model = spec.model
        filters = filters or EntityFilter()
        query = self.db.query(model).filter(model.user_id == owner_id)
        if spec.time_field and (filters.start is not None or filters.end is not None):
            column = getattr(model, spec.time_field)
            if filters.start is not None:
                query = query.filter(column >= filters.start)
            if filters.end is not None:
                query = query.filter(column <= filters.end)
        for term in spec.order_by:
            column = getattr(model, term.lstrip("-"))
            query = query.order_by(column.desc() if term.startswith("-") else column.asc())
        if filters.limit is not None:
            query = query.limit(max(int(filters.limit), 0))
        with self._storage_call(kind, "list"):
            return query.all()

    def serialize(self, kind: str, row) -> dict:
        return self.registry.require(kind).serializer(row)

    def serialize_many(self, kind: str, rows: list) -> list[dict]:
        serializer = self.registry.require(kind).serializer
        return [serializer(row) for row in rows]
