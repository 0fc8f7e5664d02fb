"""A lightweight engine that runs .car protocol methods directly from JSON."""

from __future__ import annotations

import json
import re
from os import PathLike
from pathlib import Path
from typing import Any, Sequence, Union

PathType = Union[str, "PathLike[str]"]

_ASSIGN_PATTERN = re.compile(r"state\.(\w+)\s*=\s*(.+)", re.ASCII)
_PARAM_PATTERN = re.compile(r"params\.(\w+)", re.ASCII)
_STATE_PATTERN = re.compile(r"state\.(\w+)", re.ASCII)
_LEADING_DIGITS = re.compile(r"\d+", re.ASCII)


class RuntimeEngineError(Exception):
    """Raised for unreadable protocols and failed method invocations."""


class RuntimeEngine:
    """Loads a .car JSON file and executes its methods against an in-memory state."""

    def __init__(self, car_json_path: PathType) -> None:
        self._car_data: dict[str, Any] = self._load_car_file(car_json_path)
        self._state: dict[str, Any] = {}
        self._init_default_state()

    @staticmethod
    def _load_car_file(path: PathType) -> dict[str, Any]:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise RuntimeEngineError(f"Failed to open CAR file: {path}") from exc
        except UnicodeDecodeError as exc:
            raise RuntimeEngineError(f"Invalid JSON in CAR file: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuntimeEngineError(f"Invalid JSON in CAR file: {exc}") from exc
        if not isinstance(data, dict) or "p" not in data or "cpl" not in data:
            raise RuntimeEngineError("Invalid CAR file structure")
        return data

    def _cpl(self) -> dict[str, Any]:
        cpl = self._car_data.get("cpl")
        return cpl if isinstance(cpl, dict) else {}

    def _init_default_state(self) -> None:
        self._state = {}
        defaults = self._cpl().get("state")
        if not isinstance(defaults, dict):
            return
        for key, spec in defaults.items():
            if isinstance(spec, dict) and "default" in spec:
                self._state[key] = spec["default"]
            else:
                self._state[key] = ""

    def get_state(self) -> dict[str, Any]:
        """Return a copy of the whole state, ordered by key."""
        return dict(sorted(self._state.items()))

    def set_state(self, key: str, value: str) -> None:
        self._state[key] = value

    def get_state_value(self, key: str) -> str:
        """Return a state value as text, or "" if the key is unknown."""
        if key not in self._state:
            return ""
        value = self._state[key]
        if not isinstance(value, str):
            raise RuntimeEngineError(f"State value {key!r} is not a string")
        return value

    def _text_field(self, name: str) -> str:
        value = self._car_data.get(name, "")
        if not isinstance(value, str):
            raise RuntimeEngineError(f"Protocol field {name!r} is not a string")
        return value

    @property
    def protocol_name(self) -> str:
        return self._text_field("protocol")

    @property
    def protocol_version(self) -> str:
        return self._text_field("version")

    def _methods(self) -> dict[str, Any]:
        methods = self._cpl().get("methods")
        return methods if isinstance(methods, dict) else {}

    @property
    def method_names(self) -> list[str]:
        return sorted(self._methods())

    def has_method(self, method_name: str) -> bool:
        return method_name in self._methods()

    def invoke(self, method_name: str, params: Sequence[str]) -> str:
        """Run a method with positional arguments and return its result text."""
        if "methods" not in self._cpl():
            raise RuntimeEngineError("No methods defined in protocol")
        methods = self._methods()
        if method_name not in methods:
            raise RuntimeEngineError(f"Method not found: {method_name}")
        method = methods[method_name]
        if not isinstance(method, dict):
            method = {}

        param_map: dict[str, str] = {}
        if "params" in method:
            expected = method["params"]
            if not isinstance(expected, list):
                raise RuntimeEngineError(f"Parameters of {method_name} must be a list")
            if len(expected) != len(params):
                raise RuntimeEngineError(
                    f"Parameter count mismatch. Expected {len(expected)}, got {len(params)}"
                )
            for name, value in zip(expected, params):
                if not isinstance(name, str):
                    raise RuntimeEngineError(f"Parameter names of {method_name} must be strings")
                param_map[name] = value
            param_map = dict(sorted(param_map.items()))

        if "logic" in method:
            self._execute_logic(self._join_logic(method_name, method["logic"]), param_map)

        if "returns" in method:
            returns = method["returns"]
            if isinstance(returns, dict) and "expr" in returns:
                returns = returns["expr"]
            if not isinstance(returns, str):
                raise RuntimeEngineError(f"Return expression of {method_name} must be a string")
            if returns.startswith("state."):
                return self.get_state_value(returns[len("state."):])
            return self.get_state_value(returns)

        return "OK"

    @staticmethod
    def _join_logic(method_name: str, logic: Any) -> str:
        if isinstance(logic, str):
            return logic
        if isinstance(logic, list) and all(isinstance(stmt, str) for stmt in logic):
            return "; ".join(stmt for stmt in logic)
        raise RuntimeEngineError(f"Logic of {method_name} must be a string or list of strings")

    def _execute_logic(self, logic: str, param_map: dict[str, str]) -> None:
        for raw in logic.split(";"):
            line = raw.strip(" \t")
            if not line or line.startswith("emit"):
                continue
            match = _ASSIGN_PATTERN.search(line)
            if not match:
                continue
            state_key = match.group(1)
            value_expr = match.group(2).strip(" \t")
            if value_expr.startswith("params."):
                value = self._resolve_param(value_expr, param_map)
            elif value_expr.startswith("state."):
                value = self._resolve_state(value_expr)
            elif value_expr and value_expr[0] == value_expr[-1] and value_expr[0] in "\"'":
                value = value_expr[1:-1]
            else:
                value = value_expr
            self._state[state_key] = value

    @staticmethod
    def _resolve_param(param_ref: str, param_map: dict[str, str]) -> str:
        match = _PARAM_PATTERN.search(param_ref)
        if not match:
            return ""
        name = match.group(1)
        if name in param_map:
            return param_map[name]
        digits = _LEADING_DIGITS.match(name)
        if digits:
            index = int(digits.group())
            values = list(param_map.values())
            if index < len(values):
                return values[index]
        return ""

    def _resolve_state(self, state_ref: str) -> str:
        match = _STATE_PATTERN.search(state_ref)
        if not match:
            return ""
        return self.get_state_value(match.group(1))