"""Status payloads and the codecs that move them in and out of predicates.

A Status is ``{"observedGeneration": <digest>, "details": <T>}``. The
``details`` type is chosen by the caller; a ``StatusCodec`` bound to the
Manager turns it into JSON-compatible values and back.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, Optional, Protocol, Type, TypeVar

from ocistatus.schema import STATUS_SCHEMA, validate_against_schema

T = TypeVar("T")


@dataclass
class Status(Generic[T]):
    """Reconciliation progress recorded for a digest.

    ``observed_generation`` is owned by the store: it is overwritten with the
    subject's digest on every write, whatever the caller put there.
    """
    details: T
    observed_generation: str = ""


class StatusCodec(Protocol[T]):
    """Converts ``details`` values to JSON-compatible data and back."""

    def encode(self, details: T) -> Any:
        ...

    def decode(self, data: Any) -> T:
        ...


class JsonCodec:
    """Pass-through codec for details that are already plain JSON values."""

    def encode(self, details: Any) -> Any:
        return details

    def decode(self, data: Any) -> Any:
        return data


class DataclassCodec(Generic[T]):
    """Codec for dataclass details, including dataclasses nested in fields,
    lists, tuples, dicts and optionals.

    Unknown keys in stored data are ignored so older readers can decode
    statuses written by newer writers; missing required fields fail decoding.
    """

    def __init__(self, cls: Type[T]):
        if not dataclasses.is_dataclass(cls):
            raise TypeError(f"{cls!r} is not a dataclass")
        self.cls = cls

    def encode(self, details: T) -> Any:
        return dataclasses.asdict(details)  # type: ignore[arg-type]

    def decode(self, data: Any) -> T:
        return _from_dict(self.cls, data)


def _from_dict(cls: Any, data: Any) -> Any:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object for {cls.__name__}, got {type(data).__name__}")
    hints = typing.get_type_hints(cls)
    kwargs: Dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        kwargs[f.name] = _from_json(hints.get(f.name, Any), data[f.name])
    return cls(**kwargs)


_UNION_TYPES = tuple(t for t in (typing.Union, getattr(types, "UnionType", None)) if t is not None)


def _from_json(tp: Any, value: Any) -> Any:
    """Rebuild dataclasses nested anywhere inside ``tp`` from decoded JSON."""
    if value is None or tp is Any:
        return value
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return _from_dict(tp, value)

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)
    if origin in _UNION_TYPES:
        members = [a for a in args if a is not type(None)]
        if len(members) == 1:
            return _from_json(members[0], value)
        for member in members:
            if isinstance(member, type) and dataclasses.is_dataclass(member) and isinstance(value, dict):
                return _from_dict(member, value)
        return value
    if origin in (list, set, frozenset) and isinstance(value, list):
        item = args[0] if args else Any
        return origin(_from_json(item, v) for v in value)
    if origin is tuple and isinstance(value, list):
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_from_json(args[0], v) for v in value)
        if args and len(args) != len(value):
            raise TypeError(f"expected {len(args)} items for {tp}, got {len(value)}")
        return tuple(_from_json(a, v) for a, v in zip(args, value)) if args else tuple(value)
    if origin is dict and isinstance(value, dict):
        item = args[1] if len(args) == 2 else Any
        return {k: _from_json(item, v) for k, v in value.items()}
    return value


class CallableCodec(Generic[T]):
    """Codec from an explicit encode/decode function pair."""

    def __init__(self, encode: Callable[[T], Any], decode: Callable[[Any], T]):
        self._encode = encode
        self._decode = decode

    def encode(self, details: T) -> Any:
        return self._encode(details)

    def decode(self, data: Any) -> T:
        return self._decode(data)


def encode_status(status: Status[T], codec: StatusCodec[T]) -> Dict[str, Any]:
    return {
        "observedGeneration": status.observed_generation,
        "details": codec.encode(status.details),
    }


def decode_status(predicate: Any, codec: StatusCodec[T]) -> Status[T]:
    errors = validate_against_schema(predicate, STATUS_SCHEMA)
    if errors:
        raise ValueError(f"invalid status predicate: {'; '.join(errors)}")
    return Status(
        details=codec.decode(predicate["details"]),
        observed_generation=predicate["observedGeneration"],
    )


@dataclass
class Candidate(Generic[T]):
    """A decoded status and the log integration time that orders it."""
    status: Status[T]
    timestamp: Optional[datetime]


def select_latest(candidates: Iterable[Candidate[T]]) -> Optional[Status[T]]:
    """Fold candidates to the one with the latest timestamp.

    Candidates without a timestamp never win; on equal timestamps the first
    one seen is kept.
    """
    latest: Optional[Candidate[T]] = None
    for candidate in candidates:
        if candidate.timestamp is None:
            continue
        if latest is None or candidate.timestamp > latest.timestamp:  # type: ignore[operator]
            latest = candidate
    return latest.status if latest is not None else None
