"""
The interpreter core shared by an owning LuaState and every handle that borrows it.

A core holds the lupa runtime plus a small set of Lua helper functions. The
helpers run each fallible operation under Lua's own `pcall`, which is how the
C API reports errors without unwinding through the caller. `invoke` is the one
place where errors escaping lupa itself are translated into our exceptions.
"""

import logging
from typing import Any, List, Optional

import lupa

from luastack.luastack_config import LIBRARIES, StateConfig
from luastack.luastack_errors import ApiError, ResourceError

logger = logging.getLogger(__name__)

# Message pushed by the Lua runtime on an allocation failure (LUA_ERRMEM).
MEMORY_ERROR_MESSAGE = "not enough memory"

# All references to standard functions are captured as upvalues before the
# global table is emptied, so scripts cannot break the helpers by rebinding.
_HELPERS_CHUNK = r"""
local G = _ENV
local pcall, xpcall, error, next, type = pcall, xpcall, error, next, type
local load, loadfile, tostring, tonumber = load, loadfile, tostring, tonumber
local pairs = pairs
local pack = table.pack
local running = coroutine.running
local tointeger = math.tointeger
local getinfo, setmetatable, getregistry = debug.getinfo, debug.setmetatable, debug.getregistry

local base = {}
for k, v in pairs(G) do
  if type(v) == "function" then base[k] = v end
end
base._VERSION = G._VERSION
local require = base.require
base.require = nil

local libraries = {}
for _, name in ipairs({...}) do
  if name ~= "base" then libraries[name] = G[name] end
end

local helpers = {}

function helpers.protect(f, ...)
  return pack(pcall(f, ...))
end

function helpers.call(f, handler, ...)
  if handler == nil then
    return pack(pcall(f, ...))
  end
  return pack(xpcall(f, handler, ...))
end

function helpers.load(source, chunkname)
  local f, msg = load(source, chunkname)
  return f, msg
end

function helpers.loadfile(path)
  local f, msg = loadfile(path)
  return f, msg
end

function helpers.gettable(t, k) return t[k] end
function helpers.settable(t, k, v) t[k] = v end
function helpers.getglobal(name) return G[name] end
function helpers.setglobal(name, v) G[name] = v end
function helpers.next(t, k) return next(t, k) end
function helpers.setmetatable(v, mt) setmetatable(v, mt) end

function helpers.isnumber(v) return tonumber(v) ~= nil end

function helpers.tointeger(v)
  local n = tonumber(v)
  if n == nil then return 0 end
  return tointeger(n) or 0
end

function helpers.tolstring(v)
  if type(v) == "number" then return tostring(v) end
  return v
end

function helpers.describe(v)
  if type(v) == "string" then return v end
  local ok, s = pcall(tostring, v)
  if ok and type(s) == "string" then return s end
  return "(error object is a " .. type(v) .. " value)"
end

local function finish(ok, ...)
  if not ok then error((...), 0) end
  return ...
end

-- The closure passes itself and the thread it runs on so that the callee can
-- locate its own frame, which may be inside a coroutine.
function helpers.wrap(call, ...)
  local upvalues = pack(...)
  local native
  native = function(...)
    return finish(call(native, (running()), upvalues, ...))
  end
  return native
end

function helpers.frameinfo(thread, target, level, what)
  local base_level = 1
  while true do
    local info = getinfo(thread, base_level, "f")
    if info == nil then return nil end
    if info.func == target then break end
    base_level = base_level + 1
  end
  return getinfo(thread, base_level + level, what)
end

function helpers.funcinfo(f, what)
  return getinfo(f, what)
end

function helpers.open(name)
  if name == "base" then
    for k, v in pairs(base) do G[k] = v end
    G._G = G
  else
    G[name] = libraries[name]
    if name == "package" then G.require = require end
  end
end

helpers.registry = getregistry()

for k in pairs(G) do G[k] = nil end
return helpers
"""


class Interpreter:
    """A live Lua interpreter and the helpers used to drive it."""

    def __init__(self, config: Optional[StateConfig] = None):
        self.config = config or StateConfig()
        try:
            self.runtime = lupa.LuaRuntime(
                encoding=self.config.encoding,
                max_memory=self.config.max_memory,
                register_eval=False,
                register_builtins=False,
                unpack_returned_tuples=True,
                attribute_filter=_deny_attribute_access,
            )
            self.helpers = self.runtime.execute(_HELPERS_CHUNK, *LIBRARIES)
        except (lupa.LuaError, MemoryError) as e:
            raise ResourceError("new_state", f"Cannot create Lua state: {e}") from e
        self.registry = self.helpers.registry
        self.closed = False
        logger.debug("created Lua interpreter (max_memory=%s)", self.config.max_memory)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # lupa closes the lua_State once the last reference is gone.
        self.helpers = None
        self.registry = None
        self.runtime = None
        logger.debug("closed Lua interpreter")

    def invoke(self, api_function: str, func, *args) -> Any:
        """Calls a Lua function, translating errors raised by lupa itself."""
        try:
            return func(*args)
        except lupa.LuaMemoryError as e:
            raise ResourceError(api_function, str(e) or MEMORY_ERROR_MESSAGE) from e
        except lupa.LuaError as e:
            raise ApiError(api_function, str(e)) from e

    def protected(self, api_function: str, helper, *args) -> List[Any]:
        """Runs a helper under pcall and returns its results.

        A Lua error raised by the helper (for instance by a metamethod) is
        converted to an ApiError, or a ResourceError for allocation failures.
        """
        packed = self.invoke(api_function, self.helpers.protect, helper, *args)
        ok, results = unpack(packed)
        if not ok:
            error = results[0] if results else None
            message = self.describe(error)
            if message == MEMORY_ERROR_MESSAGE:
                raise ResourceError(api_function, message)
            raise ApiError(api_function, message)
        return results

    def describe(self, value: Any) -> str:
        """Returns the string form Lua itself would print for an error value."""
        if isinstance(value, str):
            return value
        return self.invoke("describe", self.helpers.describe, value)


def unpack(packed) -> tuple[bool, List[Any]]:
    """Splits a table built by `table.pack(pcall(...))` into (ok, results)."""
    n = packed["n"]
    values = [packed[i] for i in range(2, n + 1)]
    return bool(packed[1]), values


def _deny_attribute_access(obj, attr_name, is_setting):
    # User data is opaque to scripts, as it is for C user data.
    raise AttributeError("access denied")
