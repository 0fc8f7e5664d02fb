"""Typed key/value state storage with file persistence and snapshots."""

from __future__ import annotations

import json
import math
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from os import PathLike
from pathlib import Path
from typing import Any, Union

PathType = Union[str, "PathLike[str]"]

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)", re.ASCII)
_FLOAT_PREFIX = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.ASCII | re.IGNORECASE,
)


class StateStoreError(Exception):
    """Raised when state cannot be saved, loaded or restored."""


class ValueType(IntEnum):
    """Kind of a stored value; the integer codes are part of the file format."""

    STRING = 0
    INT = 1
    BOOL = 2
    FLOAT = 3


@dataclass(frozen=True)
class StateValue:
    """A value held as text together with its declared type."""

    type: ValueType = ValueType.STRING
    value: str = ""

    def to_string(self) -> str:
        return self.value

    def to_int(self) -> int:
        """Parse a leading integer; 0 if there is none or it overflows 32 bits."""
        match = _INT_PREFIX.match(self.value)
        if not match:
            return 0
        number = int(match.group(1))
        if not _INT_MIN <= number <= _INT_MAX:
            return 0
        return number

    def to_bool(self) -> bool:
        if self.value in ("true", "1"):
            return True
        if self.value in ("false", "0"):
            return False
        return bool(self.value)

    def to_float(self) -> float:
        """Parse a leading floating point number; 0.0 if there is none or it overflows."""
        match = _FLOAT_PREFIX.match(self.value)
        if not match:
            return 0.0
        text = match.group(1)
        number = float(text)
        if math.isinf(number) and "inf" not in text.lower():
            return 0.0
        return number

    @classmethod
    def from_string(cls, val: str) -> "StateValue":
        return cls(ValueType.STRING, val)

    @classmethod
    def from_int(cls, val: int) -> "StateValue":
        return cls(ValueType.INT, str(int(val)))

    @classmethod
    def from_bool(cls, val: bool) -> "StateValue":
        return cls(ValueType.BOOL, "true" if val else "false")

    @classmethod
    def from_float(cls, val: float) -> "StateValue":
        return cls(ValueType.FLOAT, f"{val:f}")


def _encode_entries(state: Mapping[str, StateValue]) -> dict[str, dict[str, Any]]:
    return {
        key: {"type": int(value.type), "value": value.value}
        for key, value in sorted(state.items())
    }


def _decode_entries(entries: Any) -> dict[str, StateValue]:
    if not isinstance(entries, dict):
        raise StateStoreError("State data must be a JSON object")
    decoded: dict[str, StateValue] = {}
    for key, entry in entries.items():
        try:
            type_code = entry["type"]
            text = entry["value"]
        except (KeyError, TypeError) as exc:
            raise StateStoreError(f"Malformed state entry for {key!r}") from exc
        if isinstance(type_code, bool) or not isinstance(type_code, int):
            raise StateStoreError(f"State entry {key!r} has a non-integer type")
        if not isinstance(text, str):
            raise StateStoreError(f"State entry {key!r} has a non-string value")
        try:
            value_type = ValueType(type_code)
        except ValueError as exc:
            raise StateStoreError(f"State entry {key!r} has unknown type {type_code}") from exc
        decoded[key] = StateValue(value_type, text)
    return decoded


class StateStore(ABC):
    """Interface of a state backend."""

    @abstractmethod
    def set_value(self, key: str, value: StateValue) -> None: ...

    @abstractmethod
    def get_value(self, key: str) -> StateValue: ...

    @abstractmethod
    def has_key(self, key: str) -> bool: ...

    @abstractmethod
    def remove_key(self, key: str) -> bool: ...

    @abstractmethod
    def set_multiple(self, values: Mapping[str, StateValue]) -> None: ...

    @abstractmethod
    def get_all(self) -> dict[str, StateValue]: ...

    @abstractmethod
    def save_to_file(self, file_path: PathType) -> None: ...

    @abstractmethod
    def load_from_file(self, file_path: PathType) -> None: ...

    @abstractmethod
    def create_snapshot(self) -> dict[str, Any]: ...

    @abstractmethod
    def restore_from_snapshot(self, snapshot: Mapping[str, Any]) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def __len__(self) -> int: ...


class MemoryStateStore(StateStore):
    """In-memory state backend, persisted as JSON on request."""

    def __init__(self) -> None:
        self._state: dict[str, StateValue] = {}

    def set_value(self, key: str, value: StateValue) -> None:
        self._state[key] = value

    def get_value(self, key: str) -> StateValue:
        """Return the stored value, or an empty string value if the key is absent."""
        return self._state.get(key, StateValue())

    def has_key(self, key: str) -> bool:
        return key in self._state

    def remove_key(self, key: str) -> bool:
        """Remove a key; return whether it was present."""
        return self._state.pop(key, None) is not None

    def set_multiple(self, values: Mapping[str, StateValue]) -> None:
        self._state.update(values)

    def get_all(self) -> dict[str, StateValue]:
        return dict(sorted(self._state.items()))

    def save_to_file(self, file_path: PathType) -> None:
        text = json.dumps(_encode_entries(self._state), indent=2, ensure_ascii=False)
        try:
            Path(file_path).write_text(text, encoding="utf-8")
        except OSError as exc:
            raise StateStoreError(f"Failed to open file for writing: {file_path}") from exc

    def load_from_file(self, file_path: PathType) -> None:
        try:
            text = Path(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StateStoreError(f"Failed to open file: {file_path}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateStoreError(f"Error loading from file: {exc}") from exc
        self._state = _decode_entries(data)

    def create_snapshot(self) -> dict[str, Any]:
        return {
            "timestamp": str(int(time.time())),
            "state": _encode_entries(self._state),
        }

    def restore_from_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        if "state" not in snapshot:
            raise StateStoreError("Invalid snapshot format: missing state")
        self._state = _decode_entries(snapshot["state"])

    def clear(self) -> None:
        self._state.clear()

    def __len__(self) -> int:
        return len(self._state)

    def initialize_from_protocol(self, state_def: Mapping[str, str]) -> None:
        """Set each named variable to its default, stored as a string."""
        for name, default_value in state_def.items():
            self._state[name] = StateValue(ValueType.STRING, default_value)


class StateManager:
    """Typed convenience layer over a state store."""

    def __init__(self, store: StateStore | None = None) -> None:
        self.store: StateStore = store if store is not None else MemoryStateStore()

    def set(self, key: str, value: str) -> None:
        self.store.set_value(key, StateValue.from_string(value))

    def set_int(self, key: str, value: int) -> None:
        self.store.set_value(key, StateValue.from_int(value))

    def set_bool(self, key: str, value: bool) -> None:
        self.store.set_value(key, StateValue.from_bool(value))

    def set_float(self, key: str, value: float) -> None:
        self.store.set_value(key, StateValue.from_float(value))

    def _lookup(self, key: str) -> StateValue | None:
        value = self.store.get_value(key)
        if not value.value and not self.store.has_key(key):
            return None
        return value

    def get_string(self, key: str, default_value: str = "") -> str:
        value = self._lookup(key)
        return default_value if value is None else value.to_string()

    def get_int(self, key: str, default_value: int = 0) -> int:
        value = self._lookup(key)
        return default_value if value is None else value.to_int()

    def get_bool(self, key: str, default_value: bool = False) -> bool:
        value = self._lookup(key)
        return default_value if value is None else value.to_bool()

    def get_float(self, key: str, default_value: float = 0.0) -> float:
        value = self._lookup(key)
        return default_value if value is None else value.to_float()

    def has(self, key: str) -> bool:
        return self.store.has_key(key)

    def remove(self, key: str) -> bool:
        return self.store.remove_key(key)

    def set_multiple(self, values: Mapping[str, str]) -> None:
        self.store.set_multiple(
            {key: StateValue.from_string(value) for key, value in values.items()}
        )

    def get_all_strings(self) -> dict[str, str]:
        return {key: value.to_string() for key, value in self.store.get_all().items()}

    def save(self, file_path: PathType) -> None:
        self.store.save_to_file(file_path)

    def load(self, file_path: PathType) -> None:
        self.store.load_from_file(file_path)

    def snapshot(self) -> dict[str, Any]:
        return self.store.create_snapshot()

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        self.store.restore_from_snapshot(snapshot)

    def clear(self) -> None:
        self.store.clear()

    def __len__(self) -> int:
        return len(self.store)