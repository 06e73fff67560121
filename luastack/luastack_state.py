"""
A checked, exception-raising handle over an embedded Lua interpreter.

LuaState reproduces the stack-machine API of the Lua C library: values are
pushed to and popped from a stack, and operations take stack indices (1 is the
bottom of the current frame, -1 is the top). Unlike the C functions, every
operation that Lua can fail is run in protected mode and its failure is raised
as one of the exceptions in `luastack_errors`, with Lua's own message.

Native functions use a fixed ABI: they receive a `RawState` holding their own
stack frame (their arguments) and return how many values from the top of that
frame are results. Wrap the raw state in a LuaState, or decorate the function
with `native_function`, to operate on it:

    @native_function
    def add(state):
        state.push_integer(state.to_integer(1) + state.to_integer(2))
        return 1

Operations the C API leaves unchecked (invalid indices, reading user data as
the wrong type) stay unchecked here: they trip assertions or return garbage.
"""

import functools
import logging
import weakref
from pathlib import Path
from typing import Any, Callable, List, Optional, Type, TypeVar, cast

import lupa

from luastack.luastack_config import LIBRARIES, StateConfig
from luastack.luastack_core import Interpreter, MEMORY_ERROR_MESSAGE, unpack
from luastack.luastack_debug import Debug
from luastack.luastack_errors import ApiError, CompileError, ResourceError, ScriptError, ScriptNotFound

logger = logging.getLogger(__name__)

# Requests all results from `pcall`.
MULTRET = -1

# Pseudo-index of the registry; upvalue pseudo-indices lie below it.
REGISTRY_INDEX = -1001000

# Range of lua_Integer.
MIN_INTEGER = -2 ** 63
MAX_INTEGER = 2 ** 63 - 1

T = TypeVar("T")


class _NoValue:
    """Marks an index that does not refer to any stack entry."""
    def __repr__(self):
        return "<none>"

_NONE = _NoValue()


class UserData:
    """A user-data slot: host data living in the Lua heap.

    The payload is opaque to scripts; it is reachable only through
    `LuaState.to_userdata`, which does not check its type.
    """
    __slots__ = ("payload",)

    def __init__(self, payload: Any):
        self.payload = payload

    def __repr__(self):
        return f"<userdata {type(self.payload).__name__}>"


class Frame:
    """The stack of one activation: the top level of a state or a native call."""
    __slots__ = ("values", "upvalues", "function", "thread")

    def __init__(self, values: Optional[List[Any]] = None, upvalues: tuple = (), function: Any = None,
                 thread: Any = None):
        self.values = values if values is not None else []
        self.upvalues = upvalues
        # The Lua closure running this frame and its thread; None at the top level.
        self.function = function
        self.thread = thread


class RawState:
    """The opaque state passed to native functions."""
    __slots__ = ("interpreter", "frame")

    def __init__(self, interpreter: Interpreter, frame: Frame):
        self.interpreter = interpreter
        self.frame = frame


CFunction = Callable[[RawState], int]


class LuaState:
    """Owning (or borrowing) handle over a Lua interpreter."""

    def __init__(self, raw: Optional[RawState] = None, *, config: Optional[StateConfig] = None):
        if raw is None:
            interpreter = Interpreter(config)
            self._raw = RawState(interpreter, Frame())
            self._owned = True
            for name in interpreter.config.libraries:
                self.open_library(name)
        else:
            if config is not None:
                raise ValueError("config only applies to newly created states")
            # Borrowed: someone else is responsible for closing the interpreter.
            self._raw = raw
            self._owned = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __copy__(self):
        raise TypeError("LuaState objects cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("LuaState objects cannot be copied")

    def __repr__(self):
        if self._raw is None:
            return "<LuaState closed>"
        mode = "owned" if self._owned else "borrowed"
        return f"<LuaState {mode} top={len(self._raw.frame.values)}>"

    @property
    def closed(self) -> bool:
        return self._raw is None

    def close(self) -> None:
        """Releases the interpreter if this handle owns it. Safe to call twice."""
        if self._raw is None:
            return
        if self._owned:
            self._raw.interpreter.close()
        self._raw = None

    # --- Internal helpers ---

    @property
    def _interpreter(self) -> Interpreter:
        return self._raw.interpreter

    def _get(self, index: int) -> Any:
        """Returns the value at index, or _NONE if the index is not valid."""
        frame = self._raw.frame
        values = frame.values
        if index > 0:
            return values[index - 1] if index <= len(values) else _NONE
        if REGISTRY_INDEX < index < 0:
            return values[index] if -index <= len(values) else _NONE
        if index == REGISTRY_INDEX:
            return self._interpreter.registry
        if index < REGISTRY_INDEX:
            n = REGISTRY_INDEX - index
            return frame.upvalues[n - 1] if n <= len(frame.upvalues) else _NONE
        return _NONE

    def _value(self, index: int) -> Any:
        value = self._get(index)
        assert value is not _NONE, f"Invalid stack index {index}"
        return value

    def _push(self, api_function: str, *new_values: Any) -> None:
        values = self._raw.frame.values
        if len(values) + len(new_values) > self._interpreter.config.stack_limit:
            raise ResourceError(api_function, "stack overflow")
        values.extend(new_values)

    def _load_failed(self, api_function: str, message: str) -> None:
        logger.debug("%s failed: %s", api_function, message)
        if message == MEMORY_ERROR_MESSAGE:
            raise ResourceError(api_function, message)
        raise CompileError(api_function, message)

    # --- Libraries ---

    def open_library(self, name: str) -> None:
        """Registers one of the standard libraries in the global table."""
        if name not in LIBRARIES:
            raise ValueError(f"Unknown Lua library: {name!r}")
        interp = self._interpreter
        interp.protected("open_library", interp.helpers.open, name)

    def open_base(self) -> None:
        self.open_library("base")

    def open_string(self) -> None:
        self.open_library("string")

    def open_table(self) -> None:
        self.open_library("table")

    # --- Loading code ---

    def load_file(self, path) -> None:
        """Compiles a file and pushes the resulting chunk."""
        path = str(path)
        if not Path(path).is_file():
            raise ScriptNotFound(path)
        interp = self._interpreter
        func, message = interp.invoke("load_file", interp.helpers.loadfile, path)
        if func is None:
            self._load_failed("load_file", message)
        self._push("load_file", func)

    def load_string(self, source: str) -> None:
        """Compiles a string and pushes the resulting chunk."""
        interp = self._interpreter
        func, message = interp.invoke("load_string", interp.helpers.load, source, source)
        if func is None:
            self._load_failed("load_string", message)
        self._push("load_string", func)

    # --- Stack introspection ---

    def get_top(self) -> int:
        return len(self._raw.frame.values)

    def stack_snapshot(self) -> List[Any]:
        """Copy of the current frame, bottom first. Meant for diagnostics."""
        return list(self._raw.frame.values)

    def is_boolean(self, index: int = -1) -> bool:
        return isinstance(self._get(index), bool)

    def is_function(self, index: int = -1) -> bool:
        return lupa.lua_type(self._get(index)) == "function"

    def is_nil(self, index: int = -1) -> bool:
        return self._get(index) is None

    def is_number(self, index: int = -1) -> bool:
        value = self._get(index)
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return True
        if isinstance(value, (str, bytes)):
            # Numeric strings count as numbers, as in Lua
            interp = self._interpreter
            return bool(interp.invoke("is_number", interp.helpers.isnumber, value))
        return False

    def is_string(self, index: int = -1) -> bool:
        value = self._get(index)
        if isinstance(value, bool):
            return False
        return isinstance(value, (str, bytes, int, float))

    def is_table(self, index: int = -1) -> bool:
        return lupa.lua_type(self._get(index)) == "table"

    def is_userdata(self, index: int = -1) -> bool:
        value = self._get(index)
        return isinstance(value, UserData) or lupa.lua_type(value) == "userdata"

    # --- Conversions ---

    def to_boolean(self, index: int = -1) -> bool:
        value = self._get(index)
        return not (value is None or value is False or value is _NONE)

    def to_integer(self, index: int = -1) -> int:
        """Converts to an integer; 0 when the value has no integer representation."""
        value = self._get(index)
        if isinstance(value, bool) or value is _NONE:
            return 0
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            # Same bounds as math.tointeger: 2.0**63 itself does not fit.
            if value.is_integer() and MIN_INTEGER <= value < -MIN_INTEGER:
                return int(value)
            return 0
        interp = self._interpreter
        return interp.invoke("to_integer", interp.helpers.tointeger, value)

    def to_string(self, index: int = -1) -> str:
        value = self._get(index)
        assert self.is_string(index), f"Value at {index} is not a string"
        if isinstance(value, (str, bytes)):
            return value
        interp = self._interpreter
        return interp.invoke("to_string", interp.helpers.tolstring, value)

    # --- Pushing values ---

    def pop(self, count: int) -> None:
        values = self._raw.frame.values
        assert 0 <= count <= len(values), f"Cannot pop {count} of {len(values)} entries"
        if count:
            del values[-count:]

    def push_boolean(self, value: bool) -> None:
        self._push("push_boolean", bool(value))

    def push_integer(self, value: int) -> None:
        """Pushes an integer; ValueError if it does not fit a 64-bit lua_Integer."""
        value = int(value)
        if not MIN_INTEGER <= value <= MAX_INTEGER:
            raise ValueError(f"Integer out of lua_Integer range: {value}")
        self._push("push_integer", value)

    def push_nil(self) -> None:
        self._push("push_nil", None)

    def push_string(self, value: str) -> None:
        self._push("push_string", value)

    def push_c_function(self, function: CFunction) -> None:
        self.push_c_closure(function, 0)

    def push_c_closure(self, function: CFunction, nup: int) -> None:
        """Pops nup values and pushes a native closure capturing them."""
        values = self._raw.frame.values
        assert 0 <= nup <= len(values), f"Cannot capture {nup} of {len(values)} entries"
        upvalues = values[len(values) - nup:]
        del values[len(values) - nup:]
        interp = self._interpreter
        closure = interp.invoke("push_c_closure", interp.helpers.wrap, _gate(interp, function), *upvalues)
        self._push("push_c_closure", closure)

    def upvalue_index(self, n: int) -> int:
        """Pseudo-index of the n-th upvalue (1-based) of the running closure."""
        return REGISTRY_INDEX - n

    # --- Tables ---

    def new_table(self) -> None:
        interp = self._interpreter
        self._push("new_table", interp.invoke("new_table", interp.runtime.table))

    def get_table(self, index: int = -2) -> None:
        """Pops a key and pushes table[key], where the table is at index."""
        table = self._value(index)
        key = self._value(-1)
        self.pop(1)
        interp = self._interpreter
        results = interp.protected("get_table", interp.helpers.gettable, table, key)
        self._push("get_table", results[0])

    def set_table(self, index: int = -3) -> None:
        """Pops a key and a value (value on top) and stores them in the table at index."""
        table = self._value(index)
        key = self._value(-2)
        value = self._value(-1)
        self.pop(2)
        interp = self._interpreter
        interp.protected("set_table", interp.helpers.settable, table, key, value)

    def next(self, index: int = -2) -> bool:
        """Pops a key and pushes the following key/value pair of the table at index.

        Returns False, pushing nothing, once the traversal is over. As in Lua,
        modifying the keys of the table during a traversal is undefined.
        """
        table = self._value(index)
        key = self._value(-1)
        self.pop(1)
        interp = self._interpreter
        results = interp.protected("next", interp.helpers.next, table, key)
        if results[0] is None:
            return False
        self._push("next", results[0], results[1])
        return True

    def set_metatable(self, index: int = -2) -> None:
        """Pops a table and sets it as the metatable of the value at index."""
        target = self._value(index)
        metatable = self._value(-1)
        self.pop(1)
        interp = self._interpreter
        interp.protected("set_metatable", interp.helpers.setmetatable, target, metatable)

    # --- Globals ---

    def get_global(self, name: str) -> None:
        interp = self._interpreter
        results = interp.protected("get_global", interp.helpers.getglobal, name)
        self._push("get_global", results[0])

    def set_global(self, name: str) -> None:
        value = self._value(-1)
        self.pop(1)
        interp = self._interpreter
        interp.protected("set_global", interp.helpers.setglobal, name, value)

    # --- Calls ---

    def pcall(self, nargs: int, nresults: int, errfunc: int) -> None:
        """Calls the function below the nargs topmost values in protected mode.

        On success the function and its arguments are replaced by nresults
        results (all of them for MULTRET). On failure they are replaced by the
        error object and a ScriptError is raised with its string form. errfunc
        is the stack index of a message handler, or 0 for none.
        """
        values = self._raw.frame.values
        assert 0 <= nargs < len(values), "pcall needs a function and its arguments on the stack"
        handler = self._value(errfunc) if errfunc != 0 else None
        base = len(values) - nargs - 1
        func, args = values[base], values[base + 1:]
        del values[base:]

        interp = self._interpreter
        packed = interp.invoke("pcall", interp.helpers.call, func, handler, *args)
        ok, results = unpack(packed)
        if not ok:
            error = results[0] if results else None
            self._push("pcall", error)
            message = interp.describe(error)
            logger.debug("pcall failed: %s", message)
            if message == MEMORY_ERROR_MESSAGE:
                raise ResourceError("pcall", message)
            raise ScriptError("pcall", message, error)
        if nresults != MULTRET:
            results = results[:nresults] + [None] * (nresults - len(results))
        if base + len(results) > self._interpreter.config.stack_limit:
            # The slot of the called function always has room for the message.
            self._push("pcall", "stack overflow")
            raise ResourceError("pcall", "stack overflow")
        self._push("pcall", *results)

    # --- User data ---

    def new_userdata(self, type_: Type[T], *args, **kwargs) -> T:
        """Pushes a new user-data slot holding type_(*args, **kwargs) and returns the value."""
        value = type_(*args, **kwargs)
        self._push("new_userdata", UserData(value))
        return value

    def to_userdata(self, type_: Type[T], index: int = -1) -> Optional[T]:
        """Returns the payload of the user data at index as type_.

        This is an unchecked cast: the payload is returned whatever its real
        type. None is returned only if the value is not a user-data slot.
        """
        value = self._get(index)
        if not isinstance(value, UserData):
            return None
        return cast(type_, value.payload)

    # --- Debug interface ---

    def get_stack(self, level: int, debug: Debug) -> None:
        """Selects the activation `level` frames above the running native function.

        Level 0 is the native function itself, level 1 the function that called
        it. Raises ApiError if there is no such activation.
        """
        frame = self._raw.frame
        info = None
        if frame.function is not None and level >= 0:
            interp = self._interpreter
            info = interp.invoke(
                "get_stack", interp.helpers.frameinfo, frame.thread, frame.function, level, ""
            )
        if info is None:
            raise ApiError("get_stack", f"Invalid stack level {level}")
        debug._level = level
        debug._target = frame.function
        debug._thread = frame.thread

    def get_info(self, what: str, debug: Debug) -> None:
        """Fills debug with the fields selected by `what`, as lua_getinfo does.

        With a leading '>' the function is popped from the stack instead of
        taken from a record prepared by get_stack. Options 'f' and 'L' push the
        function and its table of active lines.
        """
        interp = self._interpreter
        if what.startswith(">"):
            func = self._value(-1)
            self.pop(1)
            info = interp.invoke("get_info", interp.helpers.funcinfo, func, what[1:])
        else:
            assert debug._target is not None, "get_info needs a record filled by get_stack"
            info = interp.invoke(
                "get_info", interp.helpers.frameinfo, debug._thread, debug._target, debug._level, what
            )
        if info is None:
            raise ApiError("get_info", "Activation record is no longer valid")
        debug.update(info)
        if "f" in what:
            self._push("get_info", info["func"])
        if "L" in what:
            self._push("get_info", info["activelines"])

    def raw_state_for_testing(self) -> RawState:
        return self._raw


def _gate(interpreter: Interpreter, function: CFunction):
    """Builds the Python callable behind a native closure."""
    # Lua keeps the gate alive; a strong reference back would pin the interpreter.
    interpreter_ref = weakref.ref(interpreter)

    def call(closure, thread, upvalues, *args):
        n = upvalues["n"]
        frame = Frame(list(args), tuple(upvalues[i] for i in range(1, n + 1)), closure, thread)
        try:
            nresults = function(RawState(interpreter_ref(), frame))
            values = frame.values
            assert 0 <= nresults <= len(values), "Native function returned more results than it pushed"
            results = values[len(values) - nresults:]
        except Exception as e:
            logger.debug("native function %r failed: %s", function, e)
            return False, _error_value(e)
        return (True, *results)

    return call


def _error_value(error: Exception) -> Any:
    # Rethrow the original Lua value when the failure came from a nested pcall.
    if isinstance(error, ScriptError) and error.value is not None:
        return error.value
    return str(error)


def native_function(function: Callable[[LuaState], int]) -> CFunction:
    """Adapts a function taking a LuaState to the raw native-function ABI."""
    @functools.wraps(function)
    def gate(raw: RawState) -> int:
        return function(LuaState(raw))
    return gate
