"""Deterministic cache keys from call arguments."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from collections import Counter
from typing import Any, Mapping


def _normalize_mapping(value: Mapping) -> dict[str, Any]:
    names = {k: k if isinstance(k, str) else str(k) for k in value}
    taken = Counter(names.values())
    normalized: dict[str, Any] = {}
    for k, v in value.items():
        name = names[k]
        if taken[name] > 1:
            # 1 and "1" both present: keep them apart
            name = f"{type(k).__name__}:{k!r}"
        normalized[name] = _normalize(v)
    return normalized


def _object_state(value: Any) -> dict[str, Any] | None:
    state: dict[str, Any] = {}
    for cls in reversed(type(value).__mro__):
        slots = cls.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for slot in slots:
            if slot in ("__dict__", "__weakref__") or not hasattr(value, slot):
                continue
            state[slot] = getattr(value, slot)
    state.update(getattr(value, "__dict__", {}))
    return state or None


def _normalize(value: Any) -> Any:
    # numbers and bools are coerced to strings so 1 and "1" share a key
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, Mapping):
        return _normalize_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize(v) for v in value), key=repr)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {type(value).__name__: _normalize(dataclasses.asdict(value))}
    if not isinstance(value, type) and not callable(value):
        state = _object_state(value)
        if state is not None:
            return {type(value).__name__: _normalize_mapping(state)}
    return repr(value)


def hash_arguments(
    args: tuple[Any, ...] = (), kwargs: Mapping[str, Any] | None = None
) -> str:
    """
    Hash positional and keyword arguments into a stable hex digest.

    Mapping keys are sorted, so `{"a": 1, "b": 2}` and `{"b": 2, "a": 1}` hash
    alike. Plain objects hash by their attributes (`__dict__` and
    `__slots__`); objects without attribute state fall back to `repr`.
    """
    payload = [_normalize(list(args)), _normalize(dict(kwargs or {}))]
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
