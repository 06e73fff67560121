import pytest

from luastack import LuaState, StateConfig, load_config
from luastack.luastack_config import DEFAULT_STACK_LIMIT


def test_defaults():
    config = StateConfig()
    assert config.libraries == ()
    assert config.max_memory is None
    assert config.stack_limit == DEFAULT_STACK_LIMIT
    assert config.encoding == "UTF-8"


def test_from_mapping():
    config = StateConfig.from_mapping({"libraries": ["base", "math"], "stack_limit": 64})
    assert config.libraries == ("base", "math")
    assert config.stack_limit == 64


def test_from_mapping_accepts_single_library_name():
    assert StateConfig.from_mapping({"libraries": "base"}).libraries == ("base",)


def test_from_empty_mapping():
    assert StateConfig.from_mapping(None) == StateConfig()
    assert StateConfig.from_mapping({}) == StateConfig()


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="max_stack"):
        StateConfig.from_mapping({"max_stack": 10})


def test_invalid_values_are_rejected():
    with pytest.raises(ValueError):
        StateConfig(libraries=("sockets",))
    with pytest.raises(ValueError):
        StateConfig(max_memory=0)
    with pytest.raises(ValueError):
        StateConfig(stack_limit=-1)


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "lua.yaml"
    path.write_text(
        "libraries:\n"
        "  - base\n"
        "  - string\n"
        "stack_limit: 128\n"
        "max_memory: 16777216\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config == StateConfig(libraries=("base", "string"), stack_limit=128, max_memory=16777216)

    with LuaState(config=config) as state:
        state.load_string("return string.rep('a', 3)")
        state.pcall(0, 1, 0)
        assert state.to_string() == "aaa"


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == StateConfig()


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- base\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
