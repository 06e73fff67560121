"""
Exception types raised by the luastack wrappers.

Every checked operation of a LuaState either returns normally or raises exactly
one of the classes below. The message of an error is the text produced by the
Lua runtime itself, without any reformatting.
"""

from typing import Any, Optional


class LuaStackError(Exception):
    """Base class for all errors raised by this package."""
    pass


class ApiError(LuaStackError):
    """A Lua operation reported a failure.

    `api_function` names the wrapper method that failed (e.g. 'get_table') so
    that callers can tell apart errors coming from different operations.
    """
    def __init__(self, api_function: str, message: str):
        super().__init__(message)
        self.api_function = api_function
        self.message = message


class CompileError(ApiError):
    """Raised when a chunk cannot be compiled by `load_string` or `load_file`."""
    pass


class ScriptError(ApiError):
    """Raised when the callee of a protected call raises a Lua error.

    The error object itself is left on the stack by `pcall`; `value` keeps a
    reference to it for callers that need more than its string form.
    """
    def __init__(self, api_function: str, message: str, value: Any = None):
        super().__init__(api_function, message)
        self.value = value


class ResourceError(ApiError):
    """Memory exhaustion or stack overflow inside the interpreter."""
    pass


class ScriptNotFound(LuaStackError, FileNotFoundError):
    def __init__(self, filename: str, message: Optional[str] = None):
        super().__init__(message or f"File '{filename}' not found")
        self.filename = filename
