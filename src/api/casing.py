"""camelCase <-> snake_case key translation at the HTTP boundary."""

from typing import Any

from pydantic.alias_generators import to_camel, to_snake

# Keys whose values are caller-defined maps and must pass through untouched.
_OPAQUE_KEYS = frozenset({"fields"})


def _convert(value: Any, convert_key) -> Any:
    if isinstance(value, dict):
        return {
            convert_key(k) if isinstance(k, str) else k: (
                v if k in _OPAQUE_KEYS else _convert(v, convert_key)
            )
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [_convert(v, convert_key) for v in value]
    return value


def from_camel(payload: Any) -> Any:
    return _convert(payload, to_snake)


def to_camel_keys(payload: Any) -> Any:
    return _convert(payload, to_camel)
