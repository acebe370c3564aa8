from __future__ import annotations

from store.base import KindSpec


class KindRegistry:
    def __init__(self):
        self._specs: dict[str, KindSpec] = {}

    def register(self, spec: KindSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Entity kind already registered: {spec.name}")
        self._specs[spec.name] = spec

    def list_specs(self) -> list[KindSpec]:
        return sorted(self._specs.values(), key=lambda s: s.name)

    def get_spec(self, name: str) -> KindSpec | None:
        return self._specs.get(name)

    def require(self, name: str) -> KindSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown entity kind: {name}")
        return spec
