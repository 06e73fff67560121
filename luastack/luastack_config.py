from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

# Standard libraries a state can open through `open_library`.
LIBRARIES = (
    "base",
    "coroutine",
    "debug",
    "io",
    "math",
    "os",
    "package",
    "string",
    "table",
    "utf8",
)

# Mirrors LUAI_MAXSTACK of the reference interpreter.
DEFAULT_STACK_LIMIT = 1000000


@dataclass(frozen=True)
class StateConfig:
    """Settings used when a LuaState creates a fresh interpreter."""
    # Libraries opened right after creation; a fresh state has no globals.
    libraries: tuple[str, ...] = field(default_factory=tuple)
    # Upper bound for the Lua heap in bytes; None means unlimited.
    max_memory: Optional[int] = None
    # Maximum number of entries in a single stack frame.
    stack_limit: int = DEFAULT_STACK_LIMIT
    # Encoding used to convert Lua strings to Python str.
    encoding: str = "UTF-8"

    def __post_init__(self):
        libs = tuple(self.libraries)
        for name in libs:
            if name not in LIBRARIES:
                raise ValueError(f"Unknown Lua library: {name!r}")
        object.__setattr__(self, "libraries", libs)
        if self.max_memory is not None and self.max_memory <= 0:
            raise ValueError("max_memory must be a positive number of bytes")
        if self.stack_limit <= 0:
            raise ValueError("stack_limit must be positive")

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "StateConfig":
        """Builds a config from plain data, e.g. a parsed YAML document."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        kwargs = dict(data)
        if "libraries" in kwargs:
            libs = kwargs["libraries"]
            # Accept a single name as a shorthand for a one-element list
            kwargs["libraries"] = (libs,) if isinstance(libs, str) else tuple(libs or ())
        return cls(**kwargs)


def load_config(path: str | Path) -> StateConfig:
    """Reads a StateConfig from a YAML file."""
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    if data is not None and not isinstance(data, Mapping):
        raise ValueError(f"Configuration in {path} must be a mapping")
    return StateConfig.from_mapping(data)
