"""
Safe stack-machine access to an embedded Lua interpreter.
"""

from luastack.luastack_config import StateConfig, load_config
from luastack.luastack_debug import Debug
from luastack.luastack_errors import (
    ApiError,
    CompileError,
    LuaStackError,
    ResourceError,
    ScriptError,
    ScriptNotFound,
)
from luastack.luastack_guard import StackCleaner
from luastack.luastack_printer import Printer, format_stack
from luastack.luastack_state import (
    MULTRET,
    REGISTRY_INDEX,
    CFunction,
    LuaState,
    RawState,
    UserData,
    native_function,
)

__all__ = [
    "ApiError",
    "CFunction",
    "CompileError",
    "Debug",
    "LuaStackError",
    "LuaState",
    "MULTRET",
    "Printer",
    "REGISTRY_INDEX",
    "RawState",
    "ResourceError",
    "ScriptError",
    "ScriptNotFound",
    "StackCleaner",
    "StateConfig",
    "UserData",
    "format_stack",
    "load_config",
    "native_function",
]
