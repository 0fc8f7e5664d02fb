# cardity

A small runtime for Cardity protocols. A protocol is a `.car` file. It is a
JSON document that declares state variables with defaults, methods with
parameters, logic statements and return expressions, and events. The runtime
loads the protocol, checks it and holds its state. It runs the protocol's
methods and can keep the state in a file between runs.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## A protocol

```json
{
  "p": "cardinals",
  "op": "deploy",
  "protocol": "hello_cardinals",
  "version": "1.0",
  "cpl": {
    "owner": "doge1owner",
    "state": {
      "msg": {"type": "string", "default": "hello"},
      "count": {"type": "int", "default": "0"}
    },
    "methods": {
      "set_msg": {"params": ["new_msg"], "logic": "state.msg = params.new_msg"},
      "get_msg": {"params": [], "returns": "state.msg"}
    },
    "events": {}
  }
}
```

Loading a protocol fails with `cardity.car_loader.ProtocolError` in these cases:

- `p` is not `cardinals`.
- `op` is not `deploy`.
- The name, the version or `cpl.owner` is empty.
- A state variable has an empty type.
- A method has neither logic nor a return expression.

`logic` may be one string of `;`-separated statements or a list of statements.
`returns` may be a string or an object with an `expr` key.

## Command line

```
cardity <car_file> [--state <state_file>] [command] [args...]
```

Commands:

- `call <method> [args...]` calls a method and prints its return value.
- `get <key>` prints one state value.
- `set <key> <value>` sets one state value.
- `events` prints the event log.
- `state` prints all state variables, with each value as a JSON string.
- `abi` prints the protocol's ABI as indented JSON.
- `snapshot` creates a snapshot and prints a summary of it.

With `--state`, the state is read from the file first. If the file cannot be
read, the run starts from the defaults. After `call` and `set`, the state is
written back to the file. With no command, the available methods are listed.
The exit status is 0 on success and 1 on failure.

```
cardity hello.car --state hello.state call set_msg "Hello World"
cardity hello.car --state hello.state call get_msg
cardity hello.car --state hello.state state
```

## From Python

```python
from cardity.runtime import CardityRuntime

runtime = CardityRuntime()
runtime.load_protocol("hello.car")          # raises ProtocolError if invalid
result = runtime.call_method("set_msg", ["Hello World"])
print(result.success, runtime.get_state("msg"))
```

`CardityRuntime` has these parts:

- `call_method_with_json` takes a JSON list of arguments by position, or an object of arguments by parameter name.
- `create_snapshot`, `save_snapshot_to_file` and `load_snapshot_from_file` capture and restore the state and the event log.
- `save_state_to_file` and `load_state_from_file` persist the typed state.
- `abi`, `method_names`, `state_variables`, `protocol_name` and `protocol_version` describe the loaded protocol.

A failed call does not raise. It returns a `MethodResult` with `success` false
and an `error_message`.

There is also a lighter engine that works directly on the protocol document:

```python
from cardity.runtime_engine import RuntimeEngine

engine = RuntimeEngine("hello.car")
engine.invoke("set_msg", ["gm, DOGE"])      # "OK" when the method returns nothing
print(engine.invoke("get_msg", []))         # "gm, DOGE"
```

`RuntimeEngine.invoke` raises `RuntimeEngineError` in two cases: the method is
unknown, or the number of arguments is wrong.

The other modules are these:

- `cardity.car_loader` parses, validates and exports protocols. It also generates ABIs and computes a SHA-256 hash of the document when none is given.
- `cardity.state_store` holds typed state values, with JSON file persistence and snapshots.
- `cardity.logic_engine` evaluates method logic against a parameter and state resolver.

## What it does not do

- The logic language is minimal. A statement is one of these:
  - an assignment `name = expr`
  - an `if (cond) { ... }` block
  - a bare expression

  An expression is only a variable reference, such as `state.x` or `params.y`, or a literal. Arithmetic or comparisons written inside statements are not evaluated.
- `emit` statements are skipped. Methods do not add events to the log. Events appear only when `CardityRuntime.emit_event` is called from Python, or when a snapshot holding events is restored.
- The "base64" load and export functions do not encode. They carry the JSON text as is.
- State is kept in memory and in local JSON files only. There is no server and no database backend.