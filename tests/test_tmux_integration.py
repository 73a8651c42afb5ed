"""Integration tests for the tmux adapter against a real tmux server.

Each test gets its own detached session and tears it down afterwards.
Skipped when tmux is not installed.
"""

import shutil

import libtmux
import pytest

from oak.services import tmux

pytestmark = [
    pytest.mark.tmux,
    pytest.mark.skipif(shutil.which("tmux") is None, reason="tmux not installed"),
]


@pytest.fixture
def real_session(tmp_path):
    # Private socket so a developer's own sessions are never touched
    server = libtmux.Server(socket_name="oak-test")
    tmux._server = server
    session = server.new_session(session_name="oak-test-integration", start_directory=str(tmp_path), x=200, y=50)

    yield session

    server.kill()


def test_split_break_join_keeps_pane_id(real_session, tmp_path):
    control = real_session.active_window.active_pane.pane_id

    new_id = tmux.split_window(control, str(tmp_path), before=True)
    assert new_id is not None
    assert tmux.wait_until(lambda: tmux.get_pane(new_id) is not None)
    assert {p.pane_id for p in tmux.list_window_panes(control)} == {control, new_id}

    assert tmux.ensure_background_session()
    assert tmux.break_pane(new_id)
    assert tmux.wait_until(lambda: getattr(tmux.get_pane(new_id), "is_background", False))
    assert new_id in {p.pane_id for p in tmux.list_background_panes()}

    assert tmux.join_pane(new_id, control, before=True)
    assert tmux.wait_until(lambda: not tmux.get_pane(new_id).is_background)
    assert {p.pane_id for p in tmux.list_window_panes(control)} == {control, new_id}


def test_dead_pane_not_listed(real_session, tmp_path):
    control = real_session.active_window.active_pane.pane_id
    new_id = tmux.split_window(control, str(tmp_path))

    assert tmux.kill_pane(new_id)
    assert tmux.wait_until(lambda: not tmux.pane_exists(new_id))
    assert new_id not in (tmux.list_all_pane_ids() or set())
