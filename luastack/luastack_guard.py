"""
Scoped restoration of the Lua stack depth.

A StackCleaner records the depth of a state's stack when it is created and, on
exit, pops whatever was pushed since, whether the block finished normally or
by an exception:

    state = LuaState()
    with StackCleaner(state):
        state.push_integer(3)
        state.push_integer(5)
        for source in chunks:
            with StackCleaner(state):
                state.load_string(source)
                state.pcall(0, 1, 0)
                ...
            # The result of pcall is gone.
    # The integers 3 and 5 are gone.

Cleaners nest without any coordination because each one only removes entries
pushed after its own creation. They must be closed in reverse order of
creation, which `with` blocks guarantee.
"""

import logging

logger = logging.getLogger(__name__)


class StackCleaner:
    __slots__ = ("_state", "_depth", "_forgotten")

    def __init__(self, state):
        self._state = state
        self._depth = state.get_top()
        self._forgotten = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __copy__(self):
        raise TypeError("StackCleaner objects cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("StackCleaner objects cannot be copied")

    @property
    def depth(self) -> int:
        """The stack depth recorded at creation."""
        return self._depth

    def forget(self) -> None:
        """Keeps the entries pushed in this scope alive after it ends."""
        self._forgotten = True

    def close(self) -> None:
        """Pops the stack back to the recorded depth unless forgotten.

        Never raises for a stack that is already too short.
        """
        if self._forgotten:
            return
        # Cleanup runs once; a second close must not eat later entries.
        self._forgotten = True
        if self._state.closed:
            # Nothing left to clean once the state has been closed.
            return
        current = self._state.get_top()
        if current < self._depth:
            # Someone popped entries this cleaner does not own; that is a bug
            # in the caller and popping more would only make it worse.
            logger.error(
                "stack depth %d is below the %d recorded by the cleaner", current, self._depth
            )
            return
        if current > self._depth:
            self._state.pop(current - self._depth)
