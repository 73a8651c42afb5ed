"""Master-stack tiling geometry. Pure functions, no tmux access."""

from dataclasses import dataclass
from enum import Enum

from oak.models import PaneInfo


class Role(Enum):
    MASTER = "master"
    STACK = "stack"


@dataclass(frozen=True)
class Region:
    role: Role
    width: int
    height: int


def layout(n: int, width: int, height: int) -> list[Region]:
    """Target sizes for `n` workspace panes in a `width` x `height` workspace.

    One pane fills the workspace, two split it evenly side by side, three or
    more get a half-width master on the left and the rest stacked in the
    other half. Always computed from scratch for the current count.
    """
    if n <= 0:
        return []
    if n == 1:
        return [Region(Role.MASTER, width, height)]
    half = width // 2
    if n == 2:
        return [Region(Role.MASTER, half, height), Region(Role.MASTER, half, height)]
    stack_height = height // (n - 1)
    return [Region(Role.MASTER, half, height)] + [
        Region(Role.STACK, width - half, stack_height) for _ in range(n - 1)
    ]


def reading_order(panes: list[PaneInfo]) -> list[PaneInfo]:
    """Top to bottom, then left to right."""
    return sorted(panes, key=lambda p: (p.top, p.left))


def placement_order(panes: list[PaneInfo]) -> list[PaneInfo]:
    """Order in which layout regions are assigned: leftmost column first, then top down."""
    return sorted(panes, key=lambda p: (p.left, p.top))


def primary_pane(panes: list[PaneInfo]) -> PaneInfo | None:
    """The top-left workspace pane; the leftmost one if none sits at the top edge."""
    if not panes:
        return None
    top = [p for p in panes if p.top == 0]
    return min(top or panes, key=lambda p: p.left)


def needs_horizontal_fix(panes: list[PaneInfo]) -> bool:
    """Two panes stacked on top of each other instead of side by side."""
    return len(panes) == 2 and panes[0].left == panes[1].left


def workspace_size(panes: list[PaneInfo]) -> tuple[int, int]:
    """Bounding box of the workspace panes, separators included."""
    if not panes:
        return 0, 0
    left = min(p.left for p in panes)
    top = min(p.top for p in panes)
    right = max(p.left + p.width for p in panes)
    bottom = max(p.top + p.height for p in panes)
    return right - left, bottom - top
