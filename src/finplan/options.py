"""
Explicit, versioned option structs.

Configuration objects are frozen dataclasses. They are built either directly
or from a wire mapping (camelCase or snake_case keys) and are never mutated:
overrides produce a new instance.
"""

import dataclasses
import re
from typing import Any, ClassVar, Dict, Mapping

from .errors import ValidationError

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    """Convert 'numSimulations' to 'num_simulations'. Snake case passes through."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class OptionsMixin:
    """Shared behaviour for frozen configuration dataclasses."""

    SCHEMA_VERSION: ClassVar[int] = 1
    # field name -> dataclass type for nested option structs
    NESTED: ClassVar[Dict[str, type]] = {}
    # wire aliases that do not follow the camelCase rule
    ALIASES: ClassVar[Dict[str, str]] = {}

    def merged(self, **overrides):
        """Return a new instance with the given fields replaced."""
        unknown = [key for key in overrides if key not in self._field_names()]
        if unknown:
            raise ValidationError(
                f"Unknown {type(self).__name__} options: {sorted(unknown)}", field=unknown[0]
            )
        return dataclasses.replace(self, **overrides)

    @classmethod
    def _field_names(cls):
        return {f.name for f in dataclasses.fields(cls)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] = None):
        """Build an instance from a wire mapping, rejecting unrecognised keys."""
        if data is None:
            return cls()
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"{cls.__name__} expects a mapping, got {type(data).__name__}",
                field=cls.__name__,
            )

        names = cls._field_names()
        kwargs = {}
        for raw_key, value in data.items():
            if raw_key in ("schemaVersion", "schema_version"):
                if value != cls.SCHEMA_VERSION:
                    raise ValidationError(
                        f"{cls.__name__} schema version {value} is not supported", field=raw_key
                    )
                continue
            key = cls.ALIASES.get(raw_key, camel_to_snake(raw_key))
            if key not in names:
                raise ValidationError(
                    f"Unrecognised {cls.__name__} option '{raw_key}'", field=raw_key
                )
            nested = cls.NESTED.get(key)
            if nested is not None and isinstance(value, Mapping):
                value = nested.from_dict(value)
            kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"schemaVersion": self.SCHEMA_VERSION}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, OptionsMixin):
                value = value.to_dict()
            elif isinstance(value, tuple):
                value = list(value)
            elif hasattr(value, "isoformat"):
                value = value.isoformat()
            payload[snake_to_camel(f.name)] = value
        return payload
