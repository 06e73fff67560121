import copy
import logging

import pytest

from luastack import LuaState, ScriptError, StackCleaner, native_function


@pytest.fixture
def state():
    with LuaState() as s:
        s.open_base()
        yield s


def test_cleaner_restores_depth(state):
    state.push_integer(1)
    with StackCleaner(state) as cleaner:
        assert cleaner.depth == 1
        state.push_integer(2)
        state.push_string("three")
        state.new_table()
        assert state.get_top() == 4
    assert state.get_top() == 1
    assert state.to_integer() == 1


def test_cleaner_without_pushes_is_a_no_op(state):
    state.push_integer(1)
    with StackCleaner(state):
        pass
    assert state.get_top() == 1


def test_nested_cleaners(state):
    with StackCleaner(state):
        state.push_integer(1)
        state.push_integer(2)
        with StackCleaner(state) as inner:
            assert inner.depth == 2
            state.push_integer(3)
            state.push_integer(4)
            state.push_integer(5)
        # Entries below the inner cleaner's depth survive it
        assert state.get_top() == 2
        assert state.to_integer(-1) == 2
        state.push_integer(6)
    assert state.get_top() == 0


def test_cleaner_restores_depth_on_error(state):
    state.push_integer(1)
    with pytest.raises(ScriptError):
        with StackCleaner(state):
            state.push_integer(2)
            state.load_string("error('fail', 0)")
            state.pcall(0, 0, 0)
    assert state.get_top() == 1


def test_cleaner_around_failed_pcall_leaves_nothing(state):
    with StackCleaner(state):
        state.load_string("error('fail', 0)")
        try:
            state.pcall(0, 1, 0)
        except ScriptError:
            # The error object is still there until the scope ends
            assert state.get_top() == 1
    assert state.get_top() == 0


def test_forget_keeps_entries(state):
    with StackCleaner(state) as cleaner:
        state.push_integer(1)
        state.push_integer(2)
        cleaner.forget()
        cleaner.forget()
    assert state.get_top() == 2


def test_forgotten_inner_cleaner_hands_entries_to_outer(state):
    with StackCleaner(state):
        with StackCleaner(state) as inner:
            state.push_integer(1)
            inner.forget()
        assert state.get_top() == 1
    assert state.get_top() == 0


def test_close_runs_once(state):
    cleaner = StackCleaner(state)
    state.push_integer(1)
    cleaner.close()
    assert state.get_top() == 0
    state.push_integer(2)
    cleaner.close()
    assert state.get_top() == 1


def test_cleaner_tolerates_stack_below_depth(state, caplog):
    state.push_integer(1)
    state.push_integer(2)
    with caplog.at_level(logging.ERROR, logger="luastack.luastack_guard"):
        with StackCleaner(state):
            state.pop(2)
    assert state.get_top() == 0
    assert "below" in caplog.text


def test_cleaner_cannot_be_copied(state):
    cleaner = StackCleaner(state)
    with pytest.raises(TypeError):
        copy.copy(cleaner)
    with pytest.raises(TypeError):
        copy.deepcopy(cleaner)


def test_cleaner_inside_native_function(state):
    @native_function
    def count_args(s):
        with StackCleaner(s):
            # Scratch work on the callee's own frame
            s.new_table()
            s.push_string("scratch")
        s.push_integer(s.get_top())
        return 1

    state.push_c_function(count_args)
    state.set_global("count_args")
    state.load_string("return count_args(1, 2, 3)")
    with StackCleaner(state) as cleaner:
        state.pcall(0, 1, 0)
        assert state.to_integer() == 3
        cleaner.forget()
    assert state.get_top() == 1


def test_cleaner_tolerates_state_closed_in_scope():
    s = LuaState()
    s.push_integer(1)
    with StackCleaner(s):
        s.push_integer(2)
        s.close()
    assert s.closed
