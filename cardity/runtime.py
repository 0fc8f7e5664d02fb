"""The protocol runtime: loads a protocol, runs its methods and keeps state and events."""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Union

from .car_loader import (
    CarProtocol,
    ProtocolError,
    load_from_base64,
    load_from_file,
    load_from_json,
)
from .car_loader import validate_protocol as _check_protocol
from .logic_engine import LogicEngine, LogicEngineError, StateVariableResolver
from .state_store import StateManager, StateStoreError

PathType = Union[str, "PathLike[str]"]


def _timestamp() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


def _arg_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


@dataclass
class EventInstance:
    """An emitted event with its values and the time it was emitted."""

    name: str
    values: list[str] = field(default_factory=list)
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "values": list(self.values), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventInstance":
        try:
            name = data["name"]
            values = data["values"]
            timestamp = data["timestamp"]
        except (KeyError, TypeError) as exc:
            raise StateStoreError(f"Malformed event entry: {data!r}") from exc
        if not isinstance(name, str) or not isinstance(timestamp, str):
            raise StateStoreError("Event name and timestamp must be strings")
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise StateStoreError("Event values must be a list of strings")
        return cls(name, list(values), timestamp)


@dataclass
class MethodResult:
    """Outcome of a method call."""

    success: bool = False
    return_value: str = ""
    events: list[EventInstance] = field(default_factory=list)
    error_message: str = ""


@dataclass
class Snapshot:
    """State and event log of a runtime at one moment."""

    protocol_name: str = ""
    version: str = ""
    state: dict[str, Any] = field(default_factory=dict)
    event_log: list[EventInstance] = field(default_factory=list)
    timestamp: str = ""
    block_height: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol_name": self.protocol_name,
            "version": self.version,
            "state": dict(self.state),
            "timestamp": self.timestamp,
            "block_height": self.block_height,
            "event_log": [event.to_dict() for event in self.event_log],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        if not isinstance(data, Mapping):
            raise StateStoreError("Snapshot must be a JSON object")
        state = data.get("state")
        if state is None:
            state = {}
        if not isinstance(state, Mapping):
            raise StateStoreError("Snapshot state must be a JSON object")
        texts = {}
        for key in ("protocol_name", "version", "timestamp", "block_height"):
            value = data.get(key, "")
            if not isinstance(value, str):
                raise StateStoreError(f"Snapshot field {key!r} must be a string")
            texts[key] = value
        events = [EventInstance.from_dict(entry) for entry in data.get("event_log") or []]
        return cls(state=dict(state), event_log=events, **texts)


@dataclass
class RuntimeConfig:
    """Runtime switches."""

    enable_events: bool = True
    enable_snapshots: bool = True
    enable_persistence: bool = True
    snapshot_interval: str = "7d"
    storage_path: str = ""


class CardityRuntime:
    """Runs the methods of a loaded protocol against a state manager."""

    def __init__(self, config: RuntimeConfig | None = None) -> None:
        self.config = config if config is not None else RuntimeConfig()
        self.state_manager = StateManager()
        self._resolver = StateVariableResolver(self.state_manager)
        self.logic_engine = LogicEngine(self._resolver)
        self._protocol: CarProtocol | None = None
        self._event_log: list[EventInstance] = []

    @property
    def protocol(self) -> CarProtocol | None:
        return self._protocol

    def _install(self, loader: Callable[[Any], CarProtocol], source: Any) -> None:
        self._protocol = None
        self._protocol = loader(source)
        _check_protocol(self._protocol)
        self.reset_state()

    def load_protocol(self, car_file_path: PathType) -> None:
        """Load, validate and initialise a protocol file; raises ProtocolError."""
        self._install(load_from_file, car_file_path)

    def load_protocol_from_json(self, json_str: str) -> None:
        self._install(load_from_json, json_str)

    def load_protocol_from_base64(self, base64_str: str) -> None:
        self._install(load_from_base64, base64_str)

    def call_method(self, method_name: str, args: Sequence[str] = ()) -> MethodResult:
        """Run a method with positional string arguments."""
        result = MethodResult()
        if self._protocol is None:
            result.error_message = "No protocol loaded"
            return result
        method = self._protocol.cpl.methods.get(method_name)
        if method is None:
            result.error_message = f"Method not found: {method_name}"
            return result
        args = list(args)
        if len(args) != len(method.params):
            result.error_message = (
                f"Parameter count mismatch. Expected {len(method.params)}, got {len(args)}"
            )
            return result
        try:
            for name, value in zip(method.params, args):
                self._resolver.set_parameter(name, value)
            if method.logic:
                result.return_value = self.logic_engine.execute_method_logic(method.logic, args)
            if method.returns:
                result.return_value = self.logic_engine.evaluate_expression(method.returns)
            result.success = True
        except (LogicEngineError, StateStoreError) as exc:
            result.error_message = f"Error executing method: {exc}"
        return result

    def call_method_with_json(self, method_name: str, args: Any) -> MethodResult:
        """Run a method with JSON arguments: a list by position or an object by name."""
        return self.call_method(method_name, self._parse_method_args(method_name, args))

    def _parse_method_args(self, method_name: str, args: Any) -> list[str]:
        if self._protocol is None:
            return []
        method = self._protocol.cpl.methods.get(method_name)
        if method is None:
            return []
        if isinstance(args, list):
            return [_arg_text(arg) for arg in args]
        if isinstance(args, Mapping):
            return [_arg_text(args[name]) if name in args else "" for name in method.params]
        return []

    def set_state(self, key: str, value: str) -> None:
        self.state_manager.set(key, value)

    def get_state(self, key: str, default_value: str = "") -> str:
        return self.state_manager.get_string(key, default_value)

    def get_all_state(self) -> dict[str, str]:
        return self.state_manager.get_all_strings()

    def emit_event(self, event_name: str, values: Sequence[str]) -> None:
        if not self.config.enable_events:
            return
        self._event_log.append(EventInstance(event_name, list(values), _timestamp()))

    def get_event_log(self) -> list[EventInstance]:
        return list(self._event_log)

    def clear_event_log(self) -> None:
        self._event_log.clear()

    def create_snapshot(self, block_height: str = "") -> Snapshot:
        snapshot = Snapshot(
            state=self.get_all_state(),
            event_log=list(self._event_log),
            timestamp=_timestamp(),
            block_height=block_height,
        )
        if self._protocol is not None:
            snapshot.protocol_name = self._protocol.protocol
            snapshot.version = self._protocol.version
        return snapshot

    def restore_from_snapshot(self, snapshot: Snapshot) -> None:
        """Write the snapshot's state over the current state and adopt its event log."""
        for key, value in snapshot.state.items():
            if not isinstance(value, str):
                raise StateStoreError(f"Snapshot state value {key!r} is not a string")
        for key, value in snapshot.state.items():
            self.state_manager.set(key, value)
        self._event_log = list(snapshot.event_log)

    def save_snapshot_to_file(self, file_path: PathType) -> None:
        text = json.dumps(self.create_snapshot().to_dict(), indent=2, ensure_ascii=False)
        try:
            Path(file_path).write_text(text, encoding="utf-8")
        except OSError as exc:
            raise StateStoreError(f"Failed to open file for writing: {file_path}") from exc

    def load_snapshot_from_file(self, file_path: PathType) -> None:
        try:
            text = Path(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StateStoreError(f"Failed to open file: {file_path}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateStoreError(f"Error loading snapshot: {exc}") from exc
        self.restore_from_snapshot(Snapshot.from_dict(data))

    def save_state_to_file(self, file_path: PathType) -> None:
        self.state_manager.save(file_path)

    def load_state_from_file(self, file_path: PathType) -> None:
        self.state_manager.load(file_path)

    def validate_protocol(self) -> bool:
        if self._protocol is None:
            return False
        try:
            _check_protocol(self._protocol)
        except ProtocolError:
            return False
        return True

    def validate_method(self, method_name: str) -> bool:
        return self._protocol is not None and method_name in self._protocol.cpl.methods

    @property
    def protocol_name(self) -> str:
        return self._protocol.protocol if self._protocol is not None else ""

    @property
    def protocol_version(self) -> str:
        return self._protocol.version if self._protocol is not None else ""

    @property
    def abi(self) -> dict[str, Any]:
        return copy.deepcopy(self._protocol.abi) if self._protocol is not None else {}

    @property
    def method_names(self) -> list[str]:
        return sorted(self._protocol.cpl.methods) if self._protocol is not None else []

    @property
    def state_variables(self) -> list[str]:
        return sorted(self._protocol.cpl.state) if self._protocol is not None else []

    def reset(self) -> None:
        """Unload the protocol and clear the event log."""
        self._protocol = None
        self.reset_state()
        self.clear_event_log()

    def reset_state(self) -> None:
        """Replace the state with the protocol's declared defaults."""
        if self._protocol is None:
            return
        self.state_manager.clear()
        for name, var in self._protocol.cpl.state.items():
            self.state_manager.set(name, var.default_value)