import json
import re

import pytest

from cardity.car_loader import ProtocolError
from cardity.runtime import (
    CardityRuntime,
    EventInstance,
    RuntimeConfig,
    Snapshot,
)
from cardity.state_store import StateStoreError

HELLO = {
    "p": "cardinals",
    "op": "deploy",
    "protocol": "hello_cardinals",
    "version": "1.0",
    "cpl": {
        "owner": "doge1owner",
        "state": {
            "msg": {"type": "string", "default": "Hello, Cardinals!"},
            "count": {"type": "int", "default": "0"},
        },
        "methods": {
            "set_msg": {"params": ["new_msg"], "logic": "state.msg = params.new_msg"},
            "get_msg": {"params": [], "returns": "state.msg"},
            "set_pair": {"params": ["a", "b"], "logic": ["state.msg = params.a", "state.count = params.b"]},
        },
        "events": {"MessageUpdated": {"params": ["msg"]}},
    },
}


@pytest.fixture
def runtime():
    rt = CardityRuntime()
    rt.load_protocol_from_json(json.dumps(HELLO))
    return rt


def test_load_sets_info_and_defaults(runtime):
    assert runtime.protocol_name == "hello_cardinals"
    assert runtime.protocol_version == "1.0"
    assert runtime.get_all_state() == {"count": "0", "msg": "Hello, Cardinals!"}
    assert runtime.method_names == ["get_msg", "set_msg", "set_pair"]
    assert runtime.state_variables == ["count", "msg"]
    assert runtime.validate_protocol() is True


def test_load_from_file(tmp_path):
    path = tmp_path / "hello.car"
    path.write_text(json.dumps(HELLO), encoding="utf-8")
    rt = CardityRuntime()
    rt.load_protocol(path)
    assert rt.get_state("msg") == "Hello, Cardinals!"


def test_set_then_get_message(runtime):
    result = runtime.call_method("set_msg", ["gm, DOGE"])
    assert result.success
    assert runtime.get_state("msg") == "gm, DOGE"
    got = runtime.call_method("get_msg", [])
    assert got.success
    assert got.return_value == "gm, DOGE"


def test_unknown_method(runtime):
    result = runtime.call_method("nope", [])
    assert not result.success
    assert result.error_message == "Method not found: nope"


def test_parameter_count_mismatch(runtime):
    result = runtime.call_method("set_msg", [])
    assert not result.success
    assert result.error_message == "Parameter count mismatch. Expected 1, got 0"


def test_no_protocol_loaded():
    result = CardityRuntime().call_method("set_msg", ["x"])
    assert not result.success
    assert result.error_message == "No protocol loaded"


def test_invalid_protocol_rejected():
    bad = dict(HELLO, p="other")
    rt = CardityRuntime()
    with pytest.raises(ProtocolError):
        rt.load_protocol_from_json(json.dumps(bad))
    assert rt.validate_protocol() is False


def test_missing_file_raises(tmp_path):
    with pytest.raises(ProtocolError):
        CardityRuntime().load_protocol(tmp_path / "missing.car")


def test_call_with_json_list_and_dict(runtime):
    assert runtime.call_method_with_json("set_pair", ["x", 42]).success
    assert runtime.get_all_state() == {"count": "42", "msg": "x"}
    assert runtime.call_method_with_json("set_pair", {"b": True}).success
    assert runtime.get_all_state() == {"count": "true", "msg": ""}


def test_call_with_json_unknown_method(runtime):
    result = runtime.call_method_with_json("nope", ["a"])
    assert result.error_message == "Method not found: nope"


def test_validate_method(runtime):
    assert runtime.validate_method("set_msg")
    assert not runtime.validate_method("nope")


def test_state_get_set(runtime):
    runtime.set_state("extra", "value")
    assert runtime.get_state("extra") == "value"
    assert runtime.get_state("absent", "fallback") == "fallback"


def test_events_respect_config(runtime):
    runtime.emit_event("MessageUpdated", ["hi"])
    log = runtime.get_event_log()
    assert [(e.name, e.values) for e in log] == [("MessageUpdated", ["hi"])]
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", log[0].timestamp)
    runtime.clear_event_log()
    assert runtime.get_event_log() == []

    quiet = CardityRuntime(RuntimeConfig(enable_events=False))
    quiet.emit_event("MessageUpdated", ["hi"])
    assert quiet.get_event_log() == []


def test_create_snapshot(runtime):
    runtime.emit_event("MessageUpdated", ["a"])
    snap = runtime.create_snapshot("100")
    assert snap.protocol_name == "hello_cardinals"
    assert snap.version == "1.0"
    assert snap.block_height == "100"
    assert snap.state == runtime.get_all_state()
    assert len(snap.event_log) == 1


def test_snapshot_file_round_trip(runtime, tmp_path):
    runtime.call_method("set_msg", ["saved"])
    runtime.emit_event("MessageUpdated", ["saved"])
    path = tmp_path / "snap.json"
    runtime.save_snapshot_to_file(path)

    other = CardityRuntime()
    other.load_protocol_from_json(json.dumps(HELLO))
    other.load_snapshot_from_file(path)
    assert other.get_all_state() == runtime.get_all_state()
    assert other.get_event_log() == runtime.get_event_log()


def test_snapshot_dict_round_trip():
    snap = Snapshot("p", "2", {"k": "v"}, [EventInstance("E", ["1"], "t")], "ts", "7")
    assert Snapshot.from_dict(snap.to_dict()) == snap


def test_snapshot_from_dict_bad_event():
    with pytest.raises(StateStoreError):
        Snapshot.from_dict({"state": {}, "event_log": [{"values": [], "timestamp": ""}]})


def test_restore_rejects_non_string_state(runtime):
    with pytest.raises(StateStoreError):
        runtime.restore_from_snapshot(Snapshot(state={"msg": 3}))
    assert runtime.get_state("msg") == "Hello, Cardinals!"


def test_state_file_round_trip(runtime, tmp_path):
    runtime.call_method("set_msg", ["persisted"])
    path = tmp_path / "hello.state"
    runtime.save_state_to_file(path)

    other = CardityRuntime()
    other.load_protocol_from_json(json.dumps(HELLO))
    other.load_state_from_file(path)
    assert other.get_state("msg") == "persisted"


def test_load_missing_state_file(runtime, tmp_path):
    with pytest.raises(StateStoreError):
        runtime.load_state_from_file(tmp_path / "none.state")


def test_abi_describes_protocol(runtime):
    abi = runtime.abi
    assert abi["protocol"] == "hello_cardinals"
    assert [m["name"] for m in abi["methods"]] == runtime.method_names
    assert CardityRuntime().abi == {}


def test_reset(runtime):
    runtime.emit_event("MessageUpdated", ["a"])
    runtime.reset()
    assert runtime.protocol_name == ""
    assert runtime.method_names == []
    assert runtime.get_event_log() == []


def test_reset_state_restores_defaults(runtime):
    runtime.call_method("set_msg", ["changed"])
    runtime.set_state("extra", "1")
    runtime.reset_state()
    assert runtime.get_all_state() == {"count": "0", "msg": "Hello, Cardinals!"}