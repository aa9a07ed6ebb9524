# Copyright (c) Syntropy Systems
"""Static mapping from run identifiers to experiment variants."""
from __future__ import annotations

from typing import TYPE_CHECKING

from abfunnel.config import VariantSpec, default_variants
from abfunnel.models.run import Variant

if TYPE_CHECKING:
    from collections.abc import Sequence

    from abfunnel.config import ReportConfig


class VariantResolver:
    """Resolve a run/project identifier to a Variant.

    Resolution is a deterministic substring classification over the catalog:
    the first entry with a pattern contained in the identifier wins
    (case-insensitive). Unknown identifiers fall back to the default variant.
    The ``weight`` field is carried but never used for assignment.
    """

    def __init__(
        self,
        variants: Sequence[VariantSpec] | None = None,
        default: str = "control",
    ) -> None:
        self._specs: list[VariantSpec] = list(variants or default_variants())
        self._default = default
        self._cache: dict[str, Variant] = {}

    @classmethod
    def from_config(cls, config: ReportConfig) -> VariantResolver:
        """Build a resolver from the configured catalog."""
        return cls(config.variants, default=config.default_variant)

    @property
    def names(self) -> list[str]:
        """Return the catalog's variant names in order."""
        return [spec.name for spec in self._specs]

    def _spec_for(self, identifier: str) -> VariantSpec | None:
        needle = identifier.lower()
        for spec in self._specs:
            if any(pattern and pattern.lower() in needle for pattern in spec.match):
                return spec
        return None

    def _default_spec(self) -> VariantSpec:
        for spec in self._specs:
            if spec.name == self._default:
                return spec
        return VariantSpec(name=self._default)

    def resolve(self, identifier: object) -> Variant:
        """Return the variant for an identifier. Never raises."""
        key = identifier if isinstance(identifier, str) else ""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        spec = self._spec_for(key) if key else None
        if spec is None:
            spec = self._default_spec()

        variant = Variant(
            name=spec.name,
            description=spec.description,
            feature_flags=dict(spec.feature_flags),
            weight=spec.weight,
        )
        self._cache[key] = variant
        return variant
