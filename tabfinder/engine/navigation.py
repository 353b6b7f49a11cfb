"""Keyboard focus over the flattened result list."""

from typing import Callable, Optional


class NavigationState:
    """
    Tracks the focused row of the visible results, independent of which
    source produced it. ``-1`` means nothing is focused.
    """

    def __init__(self, on_focus_changed: Optional[Callable[[int], None]] = None):
        self.focused_index = -1
        self.length = 0
        self._on_focus_changed = on_focus_changed

    def _set(self, index: int, force: bool = False) -> int:
        changed = force or index != self.focused_index
        self.focused_index = index
        if changed and self._on_focus_changed:
            self._on_focus_changed(index)
        return index

    def select_first(self, length: int) -> int:
        """Reset focus for a freshly displayed result set."""
        self.length = length
        return self._set(0 if length > 0 else -1, force=True)

    def focus(self, index: int, length: int) -> int:
        """Move focus to ``index`` of a list that changed size around it."""
        self.length = length
        return self._set(index if 0 <= index < length else -1)

    def advance(self) -> int:
        if self.length == 0:
            return self._set(-1)
        index = self.focused_index + 1
        if index >= self.length:
            index = 0
        return self._set(index)

    def retreat(self) -> int:
        if self.length == 0:
            return self._set(-1)
        index = self.focused_index - 1
        if index < 0:
            index = self.length - 1
        return self._set(index)

    @property
    def has_focus(self) -> bool:
        return 0 <= self.focused_index < self.length
