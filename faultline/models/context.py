"""Read-only diagnostic context shared by Failure and LogRecord."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel


class FrozenContext(dict):
    """
    Dict that refuses mutation once constructed.

    Behaves like a plain dict for reading, comparison and serialization.
    """

    def _readonly(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("context is read-only once constructed")

    __setitem__ = _readonly
    __delitem__ = _readonly
    __ior__ = _readonly
    clear = _readonly
    pop = _readonly
    popitem = _readonly
    setdefault = _readonly
    update = _readonly

    def __reduce__(self):
        return (FrozenContext, (dict(self),))


def to_jsonable(value: Any) -> Any:
    """
    Convert a context value into JSON-safe data.

    Unknown objects are stored as their string form so serialization
    never fails downstream.
    """
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return str(value)


def freeze_context(value: Optional[Mapping[str, Any]]) -> FrozenContext:
    """Normalize and freeze a context mapping, preserving key order."""
    return FrozenContext(to_jsonable(dict(value or {})))
