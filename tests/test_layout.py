from oak.models import PaneInfo
from oak.services.layout import (
    Region,
    Role,
    layout,
    needs_horizontal_fix,
    placement_order,
    primary_pane,
    reading_order,
    workspace_size,
)


def _pane(pane_id: str, left: int, top: int, width: int = 10, height: int = 10) -> PaneInfo:
    return PaneInfo(pane_id=pane_id, left=left, top=top, width=width, height=height)


class TestLayout:
    def test_no_panes(self):
        assert layout(0, 100, 40) == []
        assert layout(-1, 100, 40) == []

    def test_single_pane_fills_workspace(self):
        assert layout(1, 120, 40) == [Region(Role.MASTER, 120, 40)]

    def test_two_panes_split_evenly(self):
        assert layout(2, 121, 40) == [Region(Role.MASTER, 60, 40), Region(Role.MASTER, 60, 40)]

    def test_five_panes_master_and_stack(self):
        regions = layout(5, 121, 41)
        assert regions[0] == Region(Role.MASTER, 60, 41)
        assert regions[1:] == [Region(Role.STACK, 61, 10)] * 4

    def test_independent_of_previous_count(self):
        layout(5, 100, 40)
        assert layout(3, 100, 40) == [
            Region(Role.MASTER, 50, 40),
            Region(Role.STACK, 50, 20),
            Region(Role.STACK, 50, 20),
        ]


class TestOrdering:
    def test_reading_order_is_top_then_left(self):
        panes = [_pane("c", 50, 20), _pane("b", 50, 0), _pane("a", 0, 0)]
        assert [p.pane_id for p in reading_order(panes)] == ["a", "b", "c"]

    def test_placement_order_is_left_then_top(self):
        panes = [_pane("c", 50, 20), _pane("a", 0, 0), _pane("b", 50, 0)]
        assert [p.pane_id for p in placement_order(panes)] == ["a", "b", "c"]

    def test_primary_pane_is_top_left(self):
        assert primary_pane([_pane("b", 50, 0), _pane("a", 0, 0)]).pane_id == "a"
        assert primary_pane([_pane("b", 30, 5), _pane("a", 10, 5)]).pane_id == "a"
        assert primary_pane([]) is None


class TestGeometry:
    def test_needs_horizontal_fix_for_stacked_pair(self):
        assert needs_horizontal_fix([_pane("a", 0, 0), _pane("b", 0, 21)])
        assert not needs_horizontal_fix([_pane("a", 0, 0), _pane("b", 51, 0)])
        assert not needs_horizontal_fix([_pane("a", 0, 0)])

    def test_workspace_size_is_bounding_box(self):
        panes = [_pane("a", 0, 0, 60, 41), _pane("b", 61, 0, 60, 20), _pane("c", 61, 21, 60, 20)]
        assert workspace_size(panes) == (121, 41)
        assert workspace_size([]) == (0, 0)
