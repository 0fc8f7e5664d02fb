"""Command line front end for running .car protocols."""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence

from .car_loader import ProtocolError
from .logic_engine import LogicEngineError
from .runtime import CardityRuntime, EventInstance
from .state_store import StateStoreError

PROGRAM_NAME = "cardity"


def usage(program_name: str) -> str:
    """Return the help text for the command line."""
    lines = [
        "Cardity WASM Runtime",
        "===================",
        f"Usage: {program_name} <car_file> [--state <state_file>] [command] [args...]",
        "",
        "Options:",
        "  --state <file>           - Use persistent state file",
        "",
        "Commands:",
        "  call <method> [args...]  - Call a method",
        "  get <key>                - Get state value",
        "  set <key> <value>        - Set state value",
        "  events                   - Show event log",
        "  state                    - Show all state",
        "  abi                      - Show ABI",
        "  snapshot                 - Create snapshot",
        "",
        "Examples:",
        f'  {program_name} hello.car --state hello.state call set_msg "Hello World"',
        f"  {program_name} hello.car --state hello.state call get_msg",
        f"  {program_name} hello.car --state hello.state call increment",
        f"  {program_name} hello.car --state hello.state state",
    ]
    return "\n".join(lines)


def _format_event(event: EventInstance) -> str:
    return f"{event.name}({', '.join(event.values)})"


def _split_arguments(args: Sequence[str]) -> tuple[str, str, list[str]]:
    """Return the protocol file, the state file and the command words."""
    car_file = args[0]
    rest = list(args[1:])
    for index, word in enumerate(rest):
        if word == "--state" and index + 1 < len(rest):
            return car_file, rest[index + 1], rest[index + 2:]
    return car_file, "", rest


def _run_command(
    runtime: CardityRuntime, state_file: str, command: list[str], program_name: str
) -> int:
    name = command[0]

    if name == "call" and len(command) >= 2:
        method_name = command[1]
        call_args = command[2:]
        line = f"🔧 Calling method: {method_name}"
        if call_args:
            line += f" with args: [{', '.join(call_args)}]"
        print(line)

        result = runtime.call_method(method_name, call_args)
        if not result.success:
            print(f"❌ Method execution failed: {result.error_message}")
            return 1
        print("✅ Method executed successfully")
        if result.return_value:
            print(f"📥 Return value: {result.return_value}")
        if result.events:
            print("📢 Events emitted:")
            for event in result.events:
                print(f"  - {_format_event(event)}")
        if state_file:
            runtime.save_state_to_file(state_file)
        return 0

    if name == "get" and len(command) >= 2:
        key = command[1]
        print(f"📥 {key}: {runtime.get_state(key)}")
        return 0

    if name == "set" and len(command) >= 3:
        key, value = command[1], command[2]
        runtime.set_state(key, value)
        print(f"✅ Set {key} = {value}")
        if state_file:
            runtime.save_state_to_file(state_file)
        return 0

    if name == "events":
        events = runtime.get_event_log()
        if not events:
            print("📢 No events in log")
        else:
            print("📢 Event log:")
            for event in events:
                print(f"  - {_format_event(event)} at {event.timestamp}")
        return 0

    if name == "state":
        print("🔁 Current state:")
        for key, value in sorted(runtime.get_all_state().items()):
            print(f"  {key}: {json.dumps(value, ensure_ascii=False)}")
        return 0

    if name == "abi":
        print("📋 ABI:")
        print(json.dumps(runtime.abi, indent=2, sort_keys=True, ensure_ascii=False))
        return 0

    if name == "snapshot":
        snapshot = runtime.create_snapshot()
        print("📸 Snapshot created:")
        print(f"  Protocol: {snapshot.protocol_name} v{snapshot.version}")
        print(f"  Timestamp: {snapshot.timestamp}")
        print(f"  State variables: {len(snapshot.state)}")
        print(f"  Events: {len(snapshot.event_log)}")
        return 0

    print(f"❌ Unknown command: {name}")
    print(usage(program_name))
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    program_name = PROGRAM_NAME

    if not args:
        print(usage(program_name))
        return 1

    car_file, state_file, command = _split_arguments(args)

    try:
        print("🚀 Initializing Cardity WASM Runtime...")
        runtime = CardityRuntime()

        print(f"📖 Loading protocol: {car_file}")
        try:
            runtime.load_protocol(car_file)
        except ProtocolError as exc:
            print(f"❌ Failed to load protocol: {exc}", file=sys.stderr)
            return 1

        print(f"✅ Protocol loaded: {runtime.protocol_name} v{runtime.protocol_version}")

        if state_file:
            print(f"📁 Loading state from: {state_file}")
            try:
                runtime.load_state_from_file(state_file)
            except StateStoreError:
                print("ℹ️  No existing state file, starting fresh")
            else:
                print("✅ State loaded from file")

        if not command:
            print("\nAvailable methods:")
            for method in runtime.method_names:
                print(f"  - {method}")
            print(f"\nUse: {program_name} {car_file} [--state <file>] call <method> [args...]")
            return 0

        return _run_command(runtime, state_file, command, program_name)

    except (StateStoreError, LogicEngineError, ProtocolError, OSError) as exc:
        print(f"❌ Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())