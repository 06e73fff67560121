"""
A pretty-printer for Lua values held on a LuaState stack.
"""
import lupa

from luastack.luastack_state import UserData


class Printer:
    """Formats Lua values into readable, Lua-like source strings."""

    def __init__(self, max_depth=2, indent_width=2):
        self._max_depth = max_depth
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format a value."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        lua_type = lupa.lua_type(obj)
        if lua_type == 'table':
            return self._pformat_table
        if lua_type is not None:
            return self._pformat_reference
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bytes: self._pformat_bytes,
            int: self._pformat_primitive,
            float: self._pformat_float,
            bool: self._pformat_bool,
            type(None): self._pformat_nil,
            UserData: self._pformat_userdata,
        }

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_float(self, obj, level):
        # Lua prints integral floats with a trailing '.0' and uses inf/nan names
        if obj != obj:
            return 'nan'
        if obj in (float('inf'), float('-inf')):
            return 'inf' if obj > 0 else '-inf'
        return repr(obj)

    def _pformat_str(self, obj, level):
        escaped = obj.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
        return f'"{escaped}"'

    def _pformat_bytes(self, obj, level):
        return self._pformat_str(obj.decode('utf-8', errors='replace'), level)

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_nil(self, obj, level):
        return 'nil'

    def _pformat_userdata(self, obj, level):
        return f"userdata<{type(obj.payload).__name__}>"

    def _pformat_reference(self, obj, level):
        # Functions, threads and foreign user data have no literal form
        return f"<{lupa.lua_type(obj)}>"

    def _pformat_table(self, obj, level):
        items = list(obj.items())
        if not items:
            return "{}"
        if level >= self._max_depth:
            return "{...}"

        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)
        lines = []
        expected = 1
        for key, value in items:
            value_str = self.pformat(value, level + 1)
            # Keep the array part compact: 1, 2, 3 ... print without keys
            if isinstance(key, int) and not isinstance(key, bool) and key == expected:
                lines.append(f"{inner_indent}{value_str},")
                expected += 1
                continue
            if isinstance(key, str) and key.isidentifier():
                key_str = key
            else:
                key_str = f"[{self.pformat(key, level + 1)}]"
            lines.append(f"{inner_indent}{key_str} = {value_str},")
        return "{\n" + "\n".join(lines) + f"\n{outer_indent}}}"


def format_stack(state, printer=None) -> str:
    """Renders the current frame of a LuaState, bottom first, for diagnostics.

    Each line shows the absolute index, the equivalent negative index and the
    value: '  1 | -2 | 42'.
    """
    printer = printer or Printer(max_depth=1)
    values = state.stack_snapshot()
    if not values:
        return "(empty stack)"
    top = len(values)
    width = len(str(top))
    lines = []
    for position, value in enumerate(values, start=1):
        rendered = printer.pformat(value)
        rendered = rendered.replace("\n", "\n" + " " * (2 * width + 8))
        lines.append(f"{position:>{width}} | {position - top - 1:>{width + 1}} | {rendered}")
    return "\n".join(lines)
