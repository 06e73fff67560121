"""
The activation record filled in by `LuaState.get_stack` and `LuaState.get_info`.

Field names follow the `lua_Debug` structure of the Lua reference manual so that
code written against the C debug API reads the same here.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Optional


@dataclass
class Debug:
    event: Optional[int] = None
    name: Optional[str] = None
    namewhat: str = ""
    what: Optional[str] = None
    source: Optional[str] = None
    short_src: Optional[str] = None
    currentline: int = -1
    linedefined: int = -1
    lastlinedefined: int = -1
    nups: int = 0
    nparams: int = 0
    isvararg: bool = False
    istailcall: bool = False

    # Set by get_stack: the frame being described, relative to the running
    # native function (0 is the native function itself).
    _level: Optional[int] = field(default=None, repr=False, compare=False)
    _target: Any = field(default=None, repr=False, compare=False)
    _thread: Any = field(default=None, repr=False, compare=False)

    def update(self, info) -> None:
        """Copies the fields present in a table returned by debug.getinfo."""
        for f in fields(self):
            if f.name.startswith("_"):
                continue
            value = info[f.name]
            if value is not None:
                setattr(self, f.name, value)

    def location(self) -> str:
        """Formats the record as 'chunk:line', the prefix Lua uses in messages."""
        src = self.short_src or "?"
        if self.currentline > 0:
            return f"{src}:{self.currentline}"
        return src
