"""Shared base model definitions for watch log domain objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WatchLogBaseModel(BaseModel):
    """Base model configured for watch-log-wide defaults.

    Field names are snake_case in Python and camelCase on the wire and in storage, so
    persisted documents stay readable by other consumers of the same store.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


__all__ = ["WatchLogBaseModel"]
