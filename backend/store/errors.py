from __future__ import annotations


class StoreError(Exception):
    """Base class for failures surfaced by the entity store."""


class ValidationError(StoreError):
    """Raised when a payload or patch violates an entity invariant."""

    def __init__(self, errors: dict[str, str], kind: str | None = None):
        self.errors = dict(errors)
        self.kind = kind
        super().__init__(self.message)

    @property
    def fields(self) -> list[str]:
        return list(self.errors)

    @property
    def message(self) -> str:
        joined = "; ".join(f"{field}: {reason}" for field, reason in self.errors.items())
        return f"Invalid {self.kind}: {joined}" if self.kind else joined


class NotFoundError(StoreError):
    """Raised when an id does not exist within the caller's owner scope."""

    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        label = kind.replace("_", " ").capitalize()
        super().__init__(f"{label} {entity_id} not found")


class DependencyError(StoreError):
    """Raised when durable storage is unavailable or a statement fails."""
