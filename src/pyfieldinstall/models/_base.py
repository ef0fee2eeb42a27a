"""Base model and enum for store documents.

Every document model inherits from :class:`FieldBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase document keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` values and
  blank strings so the field default is used.
* :meth:`FieldBaseModel.to_document` to serialize back to the camelCase
  layout the store expects.

Status enums inherit from :class:`FieldEnum` which adds an ``UNKNOWN``
member and a ``_missing_`` hook that returns ``UNKNOWN`` for any value
without a mapped member.
"""

from __future__ import annotations

import enum
import math
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from pyfieldinstall.models._normalize import parse_timestamp

StoreTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces store timestamps to aware UTC datetimes."""


class FieldEnum(enum.StrEnum):
    """Base for document status enums.

    Every subclass **must** define ``UNKNOWN = "unknown"``.
    """

    @classmethod
    def _missing_(cls, value: object) -> FieldEnum:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        # pylint: disable=no-member
        unknown: FieldEnum = cls.UNKNOWN  # type: ignore[attr-defined]
        return unknown


class FieldBaseModel(BaseModel):
    """Base for store document models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Any:
        """Build a model from a store document and its id."""
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase document layout (without ``id``)."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"}, mode="python")
