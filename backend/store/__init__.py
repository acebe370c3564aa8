from store.registry import KindRegistry
from store.kinds import register_entity_kinds

entity_registry = KindRegistry()
register_entity_kinds(entity_registry)

from store.entity_store import EntityStore  # noqa: E402
from store.base import EntityFilter  # noqa: E402
from store.errors import DependencyError, NotFoundError, StoreError, ValidationError  # noqa: E402

__all__ = [
    "entity_registry",
    "EntityFilter",
    "EntityStore",
    "KindRegistry",
    "StoreError",
    "ValidationError",
    "NotFoundError",
    "DependencyError",
]
