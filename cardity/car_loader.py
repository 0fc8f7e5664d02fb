"""Loading, validating and exporting .car protocol documents."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Union

PathType = Union[str, "PathLike[str]"]

log = logging.getLogger(__name__)


class ProtocolError(Exception):
    """Raised when a protocol document cannot be read or is invalid."""


@dataclass
class StateVariable:
    """Declared state variable: its type name and default value."""

    type: str = ""
    default_value: str = ""


@dataclass
class Method:
    """Declared method: parameter names, logic statements and return expression."""

    params: list[str] = field(default_factory=list)
    logic: str = ""
    returns: str = ""


@dataclass
class Event:
    """Declared event with its parameter names."""

    params: list[str] = field(default_factory=list)


@dataclass
class CPL:
    """Protocol logic: state, methods, events and owner."""

    state: dict[str, StateVariable] = field(default_factory=dict)
    methods: dict[str, Method] = field(default_factory=dict)
    events: dict[str, Event] = field(default_factory=dict)
    owner: str = ""


@dataclass
class CarProtocol:
    """A complete .car protocol document."""

    p: str = ""
    op: str = ""
    protocol: str = ""
    version: str = ""
    cpl: CPL = field(default_factory=CPL)
    abi: dict[str, Any] = field(default_factory=dict)
    hash: str = ""
    signature: str = ""


def _require_object(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ProtocolError(f"{what} must be a JSON object")
    return value


def _text(obj: Mapping[str, Any], key: str, default: str, what: str) -> str:
    value = obj.get(key, default)
    if not isinstance(value, str):
        raise ProtocolError(f"{what} field {key!r} must be a string")
    return value


def _string_list(value: Any, what: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ProtocolError(f"{what} must be a list of strings")
    return list(value)


def _parse_state(state_json: Any) -> dict[str, StateVariable]:
    if state_json is None:
        return {}
    state = _require_object(state_json, "State definition")
    parsed: dict[str, StateVariable] = {}
    for name, var_json in sorted(state.items()):
        var = _require_object(var_json, f"State variable {name}")
        parsed[name] = StateVariable(
            type=_text(var, "type", "string", f"State variable {name}"),
            default_value=_text(var, "default", "", f"State variable {name}"),
        )
    return parsed


def _parse_logic(name: str, logic: Any) -> str:
    if isinstance(logic, list):
        return "; ".join(_string_list(logic, f"Logic of method {name}"))
    if not isinstance(logic, str):
        raise ProtocolError(f"Logic of method {name} must be a string or list of strings")
    return logic


def _parse_returns(name: str, returns: Any) -> str:
    if isinstance(returns, Mapping):
        if "expr" not in returns:
            return ""
        returns = returns["expr"]
    if not isinstance(returns, str):
        raise ProtocolError(f"Return expression of method {name} must be a string")
    return returns


def _parse_methods(methods_json: Any) -> dict[str, Method]:
    if methods_json is None:
        return {}
    methods = _require_object(methods_json, "Method definitions")
    parsed: dict[str, Method] = {}
    for name, method_json in sorted(methods.items()):
        spec = _require_object(method_json, f"Method {name}")
        method = Method()
        if "params" in spec:
            method.params = _string_list(spec["params"], f"Parameters of method {name}")
        if "logic" in spec:
            method.logic = _parse_logic(name, spec["logic"])
            log.debug("method %s logic %r", name, method.logic)
        if "returns" in spec:
            method.returns = _parse_returns(name, spec["returns"])
        parsed[name] = method
    return parsed


def _parse_events(events_json: Any) -> dict[str, Event]:
    if events_json is None:
        return {}
    events = _require_object(events_json, "Event definitions")
    parsed: dict[str, Event] = {}
    for name, event_json in sorted(events.items()):
        spec = _require_object(event_json, f"Event {name}")
        event = Event()
        raw_params = spec.get("params")
        if isinstance(raw_params, Mapping):
            raw_params = list(raw_params.values())
        elif raw_params is None:
            raw_params = []
        elif not isinstance(raw_params, list):
            raw_params = [raw_params]
        for param in raw_params:
            if isinstance(param, Mapping) and "name" in param:
                if not isinstance(param["name"], str):
                    raise ProtocolError(f"Parameter name of event {name} must be a string")
                event.params.append(param["name"])
            elif isinstance(param, str):
                event.params.append(param)
        parsed[name] = event
    return parsed


def _parse_cpl(cpl_json: Any) -> CPL:
    spec = _require_object(cpl_json, "CPL")
    cpl = CPL()
    if "state" in spec:
        cpl.state = _parse_state(spec["state"])
    if "methods" in spec:
        cpl.methods = _parse_methods(spec["methods"])
    if "events" in spec:
        cpl.events = _parse_events(spec["events"])
    cpl.owner = _text(spec, "owner", "", "CPL")
    return cpl


def load_from_json(json_str: str) -> CarProtocol:
    """Parse a protocol from JSON text, generating its ABI and, if absent, its hash."""
    try:
        data = json.loads(json_str)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ProtocolError(f"JSON parsing error: {exc}") from exc
    document = _require_object(data, "Protocol document")

    protocol = CarProtocol(
        p=_text(document, "p", "", "Protocol"),
        op=_text(document, "op", "", "Protocol"),
        protocol=_text(document, "protocol", "", "Protocol"),
        version=_text(document, "version", "", "Protocol"),
        hash=_text(document, "hash", "", "Protocol"),
        signature=_text(document, "signature", "", "Protocol"),
    )
    if "cpl" in document:
        protocol.cpl = _parse_cpl(document["cpl"])

    protocol.abi = generate_abi(protocol.cpl, protocol.protocol, protocol.version)
    if not protocol.hash:
        protocol.hash = calculate_hash(document)
    return protocol


def load_from_file(file_path: PathType) -> CarProtocol:
    """Read and parse a protocol file."""
    try:
        text = Path(file_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ProtocolError(f"Failed to open file: {file_path}") from exc
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"Error loading file: {exc}") from exc
    return load_from_json(text)


def load_from_base64(base64_str: str) -> CarProtocol:
    """Load a protocol from its transport form, which carries the JSON text as is."""
    return load_from_json(base64_str)


def validate_protocol(protocol: CarProtocol) -> None:
    """Check the required fields of a protocol, raising ProtocolError on the first fault."""
    if protocol.p != "cardinals":
        raise ProtocolError(f"Invalid protocol type: {protocol.p}")
    if protocol.op != "deploy":
        raise ProtocolError(f"Invalid operation: {protocol.op}")
    if not protocol.protocol:
        raise ProtocolError("Protocol name is empty")
    if not protocol.version:
        raise ProtocolError("Protocol version is empty")
    if not protocol.cpl.owner:
        raise ProtocolError("Protocol owner is empty")
    for name, var in sorted(protocol.cpl.state.items()):
        if not var.type:
            raise ProtocolError(f"State variable {name} has empty type")
    for name, method in sorted(protocol.cpl.methods.items()):
        if not method.logic and not method.returns:
            raise ProtocolError(f"Method {name} has no logic or return value")


def export_to_json(protocol: CarProtocol) -> dict[str, Any]:
    """Build the JSON document of a protocol, including its ABI."""
    methods: dict[str, Any] = {}
    for name, method in sorted(protocol.cpl.methods.items()):
        method_json: dict[str, Any] = {"params": list(method.params)}
        if method.logic:
            method_json["logic"] = method.logic
        if method.returns:
            method_json["returns"] = method.returns
        methods[name] = method_json

    cpl = {
        "state": {
            name: {"type": var.type, "default": var.default_value}
            for name, var in sorted(protocol.cpl.state.items())
        },
        "methods": methods,
        "events": {
            name: {"params": list(event.params)}
            for name, event in sorted(protocol.cpl.events.items())
        },
        "owner": protocol.cpl.owner,
    }
    return {
        "p": protocol.p,
        "op": protocol.op,
        "protocol": protocol.protocol,
        "version": protocol.version,
        "hash": protocol.hash,
        "signature": protocol.signature,
        "cpl": cpl,
        "abi": protocol.abi,
    }


def _dump_compact(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def export_to_base64(protocol: CarProtocol) -> str:
    """Serialise a protocol to its transport form: compact JSON text."""
    return _dump_compact(export_to_json(protocol))


def generate_abi(cpl: CPL, protocol_name: str, version: str) -> dict[str, Any]:
    """Describe the methods, events and state of a protocol."""
    methods = []
    for name, method in sorted(cpl.methods.items()):
        entry: dict[str, Any] = {"name": name, "params": list(method.params)}
        if method.returns:
            entry["returns"] = method.returns
        methods.append(entry)
    return {
        "protocol": protocol_name,
        "version": version,
        "methods": methods,
        "events": [
            {"name": name, "params": list(event.params)}
            for name, event in sorted(cpl.events.items())
        ],
        "state": [
            {"name": name, "type": var.type, "default": var.default_value}
            for name, var in sorted(cpl.state.items())
        ],
    }


def calculate_hash(data: Any) -> str:
    """Hex SHA-256 digest of the compact, key-sorted JSON form of data."""
    return hashlib.sha256(_dump_compact(data).encode("utf-8")).hexdigest()