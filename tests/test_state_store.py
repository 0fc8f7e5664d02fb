import json

import pytest

from cardity.state_store import (
    MemoryStateStore,
    StateManager,
    StateStoreError,
    StateValue,
    ValueType,
)


def test_saved_type_codes_follow_declaration_order(tmp_path):
    store = MemoryStateStore()
    store.set_value("s", StateValue.from_string("x"))
    store.set_value("i", StateValue.from_int(1))
    store.set_value("b", StateValue.from_bool(True))
    store.set_value("f", StateValue.from_float(1.0))
    path = tmp_path / "types.json"
    store.save_to_file(path)
    saved = json.loads(path.read_text())
    assert {key: entry["type"] for key, entry in saved.items()} == {
        "s": 0,
        "i": 1,
        "b": 2,
        "f": 3,
    }


def test_from_bool_uses_true_false_words():
    assert StateValue.from_bool(True) == StateValue(ValueType.BOOL, "true")
    assert StateValue.from_bool(False) == StateValue(ValueType.BOOL, "false")


def test_from_int_round_trips():
    value = StateValue.from_int(-17)
    assert value.type is ValueType.INT
    assert value.to_int() == -17


def test_from_float_uses_six_decimals():
    assert StateValue.from_float(1.5).value == "1.500000"
    assert StateValue.from_float(1.5).to_float() == 1.5


@pytest.mark.parametrize(
    "text, expected",
    [("true", True), ("1", True), ("false", False), ("0", False), ("", False), ("abc", True)],
)
def test_to_bool(text, expected):
    assert StateValue.from_string(text).to_bool() is expected


def test_to_int_parses_prefix_and_rejects_garbage():
    assert StateValue.from_string("12abc").to_int() == 12
    assert StateValue.from_string("  -7").to_int() == -7
    assert StateValue.from_string("abc").to_int() == 0
    assert StateValue.from_string("99999999999").to_int() == 0


def test_to_float_parses_prefix_and_rejects_garbage():
    assert StateValue.from_string(" 2.5x").to_float() == 2.5
    assert StateValue.from_string("nope").to_float() == 0.0
    assert StateValue.from_string("1e999").to_float() == 0.0


def test_default_state_value_is_empty_string():
    value = StateValue()
    assert value.type is ValueType.STRING
    assert value.to_string() == ""


def test_memory_store_basic_operations():
    store = MemoryStateStore()
    store.set_value("b", StateValue.from_int(2))
    store.set_value("a", StateValue.from_string("x"))
    assert store.has_key("a")
    assert store.get_value("b").to_int() == 2
    assert store.get_value("missing") == StateValue()
    assert list(store.get_all()) == ["a", "b"]
    assert len(store) == 2
    assert store.remove_key("a") is True
    assert store.remove_key("a") is False
    assert len(store) == 1
    store.clear()
    assert len(store) == 0


def test_memory_store_file_format(tmp_path):
    store = MemoryStateStore()
    store.set_value("n", StateValue.from_int(5))
    path = tmp_path / "state.json"
    store.save_to_file(path)
    assert json.loads(path.read_text()) == {"n": {"type": 1, "value": "5"}}


def test_memory_store_save_load_round_trip(tmp_path):
    store = MemoryStateStore()
    store.set_multiple(
        {"flag": StateValue.from_bool(True), "msg": StateValue.from_string("hi")}
    )
    path = tmp_path / "state.json"
    store.save_to_file(path)
    other = MemoryStateStore()
    other.set_value("stale", StateValue.from_string("gone"))
    other.load_from_file(path)
    assert other.get_all() == store.get_all()
    assert not other.has_key("stale")


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(StateStoreError):
        MemoryStateStore().load_from_file(tmp_path / "absent.json")


def test_load_invalid_json_raises(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(StateStoreError):
        MemoryStateStore().load_from_file(path)


def test_load_malformed_entry_raises(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"k": {"value": "v"}}))
    with pytest.raises(StateStoreError):
        MemoryStateStore().load_from_file(path)


def test_snapshot_round_trip():
    store = MemoryStateStore()
    store.set_value("x", StateValue.from_float(2.0))
    snap = store.create_snapshot()
    assert snap["timestamp"].isdigit()
    other = MemoryStateStore()
    other.restore_from_snapshot(snap)
    assert other.get_all() == store.get_all()


def test_restore_without_state_raises():
    with pytest.raises(StateStoreError):
        MemoryStateStore().restore_from_snapshot({"timestamp": "1"})


def test_initialize_from_protocol():
    store = MemoryStateStore()
    store.initialize_from_protocol({"msg": "hello", "count": "0"})
    assert store.get_value("msg") == StateValue(ValueType.STRING, "hello")
    assert store.get_value("count").to_int() == 0


def test_manager_defaults_for_missing_keys():
    manager = StateManager()
    assert manager.get_string("k", "dflt") == "dflt"
    assert manager.get_int("k", 9) == 9
    assert manager.get_bool("k", True) is True
    assert manager.get_float("k", 0.25) == 0.25


def test_manager_present_empty_value_is_not_default():
    manager = StateManager()
    manager.set("k", "")
    assert manager.get_string("k", "dflt") == ""


def test_manager_typed_setters():
    manager = StateManager()
    manager.set_int("i", 3)
    manager.set_bool("b", True)
    manager.set_float("f", 0.5)
    assert manager.get_int("i") == 3
    assert manager.get_bool("b") is True
    assert manager.get_float("f") == 0.5
    assert manager.get_string("b") == "true"


def test_manager_bulk_and_remove():
    manager = StateManager()
    manager.set_multiple({"z": "1", "a": "2"})
    assert manager.get_all_strings() == {"a": "2", "z": "1"}
    assert list(manager.get_all_strings()) == ["a", "z"]
    assert manager.has("z")
    assert manager.remove("z") is True
    assert not manager.has("z")
    assert len(manager) == 1
    manager.clear()
    assert len(manager) == 0


def test_manager_persistence_and_snapshot(tmp_path):
    manager = StateManager()
    manager.set("msg", "hello")
    path = tmp_path / "s.json"
    manager.save(path)
    snap = manager.snapshot()
    manager.set("msg", "changed")
    manager.restore(snap)
    assert manager.get_string("msg") == "hello"
    fresh = StateManager()
    fresh.load(path)
    assert fresh.get_all_strings() == {"msg": "hello"}


def test_manager_uses_given_store():
    store = MemoryStateStore()
    manager = StateManager(store)
    manager.set("k", "v")
    assert store.get_value("k").to_string() == "v"