# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for abfunnel."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, JsonValue
from pydantic.alias_generators import to_camel
from typing_extensions import TypeAlias

JSONValue: TypeAlias = JsonValue


class AbBaseModel(BaseModel):
    """Base model for abfunnel wire schemas.

    Python attributes are snake_case; JSON keys are camelCase so payloads
    stay readable by the browser-side tooling that produced them.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_json(self, *, indent: int | None = 2) -> str:
        """Serialize with camelCase keys."""
        return self.model_dump_json(by_alias=True, indent=indent)


class FrozenModel(AbBaseModel):
    """Immutable variant of the base model, for computed results."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )
