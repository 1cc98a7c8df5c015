"""
Variable scopes for expression evaluation.

Scopes form a chain: the root frame holds the data passed to the fill, and every
loop iteration pushes a child frame binding its loop variables. Frames live in
a ScopeArena and refer to their parent by index; a Context is a lightweight
handle (arena, index). Frames are never modified after they are pushed.
Closing a scope releases its frame and every frame pushed after it.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

_MISSING = object()


@dataclass(frozen=True)
class Frame:
    """One immutable scope: its bindings and the index of its parent frame."""
    parent: Optional[int]
    bindings: Mapping[str, Any]


class ScopeArena:
    """Index-addressed storage for scope frames."""

    def __init__(self) -> None:
        self._frames: List[Frame] = []

    def push(self, parent: Optional[int], bindings: Mapping[str, Any]) -> int:
        """Store a new frame and return its index."""
        if parent is not None and not 0 <= parent < len(self._frames):
            raise IndexError(f"No live frame at index {parent}")
        self._frames.append(Frame(parent, MappingProxyType(dict(bindings))))
        return len(self._frames) - 1

    def frame(self, index: int) -> Frame:
        return self._frames[index]

    def release(self, index: int) -> None:
        """Drop the frame at ``index`` and everything pushed after it."""
        del self._frames[index:]

    def __len__(self) -> int:
        return len(self._frames)


class Context:
    """Handle to one frame of a scope chain.

    Lookup walks from this frame toward the root and returns the innermost
    binding. Use ``scope()`` to open a child frame for the duration of a block.
    """

    __slots__ = ("arena", "index")

    def __init__(self, arena: ScopeArena, index: int) -> None:
        self.arena = arena
        self.index = index

    @classmethod
    def root(cls, data: Optional[Mapping[str, Any]] = None) -> "Context":
        """Create a fresh chain whose root frame holds ``data``."""
        arena = ScopeArena()
        return cls(arena, arena.push(None, data or {}))

    def child(self, bindings: Mapping[str, Any]) -> "Context":
        """Push a child frame. The caller is responsible for releasing it."""
        return Context(self.arena, self.arena.push(self.index, bindings))

    @contextmanager
    def scope(self, bindings: Mapping[str, Any]) -> Iterator["Context"]:
        """Open a child frame that is released when the block exits."""
        child = self.child(bindings)
        try:
            yield child
        finally:
            self.arena.release(child.index)

    def lookup(self, name: str, default: Any = _MISSING) -> Any:
        """Resolve ``name`` innermost-first.

        Raises:
            KeyError: If the name is unbound and no default is given
        """
        index: Optional[int] = self.index
        while index is not None:
            frame = self.arena.frame(index)
            if name in frame.bindings:
                return frame.bindings[name]
            index = frame.parent
        if default is _MISSING:
            raise KeyError(name)
        return default

    def __contains__(self, name: str) -> bool:
        marker = object()
        return self.lookup(name, marker) is not marker

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the visible bindings, inner frames shadowing outer ones."""
        chain = []
        index: Optional[int] = self.index
        while index is not None:
            frame = self.arena.frame(index)
            chain.append(frame.bindings)
            index = frame.parent
        merged: Dict[str, Any] = {}
        for bindings in reversed(chain):
            merged.update(bindings)
        return merged

    def __repr__(self) -> str:
        return f"Context(index={self.index}, names={sorted(self.to_dict())!r})"
