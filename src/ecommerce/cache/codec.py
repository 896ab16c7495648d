"""Value codec shared by the cache services.

Values go through pydantic: models, dataclasses, Decimal and UUID all
serialize to JSON, and ``value_type`` validates them back on read.
"""

from __future__ import annotations

import functools
from typing import Any

import pydantic_core
from pydantic import TypeAdapter


@functools.lru_cache(maxsize=256)
def _adapter(value_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(value_type)


def dumps(value: Any) -> bytes:
    return pydantic_core.to_json(value)


def loads(raw: bytes | str, value_type: Any = Any) -> Any:
    return _adapter(value_type).validate_json(raw)
