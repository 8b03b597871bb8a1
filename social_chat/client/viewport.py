"""Scroll position bookkeeping for the message list."""

PIN_THRESHOLD = 50


class Viewport:
    """Follows new messages only while the user is reading the bottom of the list.

    Heights and offsets are in whatever unit the UI uses (pixels, lines).
    """

    def __init__(self, view_height: int, content_height: int = 0):
        self.view_height = view_height
        self.content_height = content_height
        self.offset = self.max_offset
        self._pinned = True

    @property
    def max_offset(self) -> int:
        return max(0, self.content_height - self.view_height)

    @property
    def pinned(self) -> bool:
        return self._pinned

    @property
    def show_jump_button(self) -> bool:
        return not self._pinned

    def scroll_to(self, offset: int) -> None:
        self.offset = min(max(0, offset), self.max_offset)
        self._pinned = self.max_offset - self.offset < PIN_THRESHOLD

    def scroll_to_bottom(self) -> None:
        self.offset = self.max_offset
        self._pinned = True

    def content_changed(self, content_height: int) -> bool:
        """Record a new content height; returns True if the view followed it to the bottom."""
        self.content_height = content_height
        if self._pinned:
            self.offset = self.max_offset
            return True
        self.offset = min(self.offset, self.max_offset)
        return False
