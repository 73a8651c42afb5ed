from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Label

_NAV_BINDINGS = [
    Binding("left", "focus_prev_field", show=False),
    Binding("right", "focus_next_field", show=False),
]


class _ModalNavMixin:
    """Left/right arrows move between the dialog buttons."""

    def action_focus_next_field(self) -> None:
        self.focus_next()

    def action_focus_prev_field(self) -> None:
        self.focus_previous()


class ConfirmScreen(_ModalNavMixin, ModalScreen[bool]):
    """Yes/no dialog for a destructive action. Dismisses with True on confirm."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("y", "confirm", "Yes", show=False),
        Binding("n", "cancel", "No", show=False),
        *_NAV_BINDINGS,
    ]

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }
    #confirm-dialog {
        width: 56;
        height: auto;
        border: thick $warning;
        background: $surface;
        padding: 1 2;
    }
    #confirm-detail {
        color: $text-muted;
    }
    #confirm-buttons {
        height: 3;
        margin-top: 1;
        align: center middle;
    }
    """

    def __init__(self, question: str, detail: str = "", confirm_label: str = "OK") -> None:
        super().__init__()
        self._question = question
        self._detail = detail
        self._confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Label(self._question)
            if self._detail:
                yield Label(self._detail, id="confirm-detail")
            with Horizontal(id="confirm-buttons"):
                yield Button(self._confirm_label, variant="warning", id="btn-confirm")
                yield Button("Cancel", id="btn-cancel")

    def on_mount(self) -> None:
        # Cancel is the safe default for enter
        self.query_one("#btn-cancel", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "btn-confirm")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


def confirm_remove_project(project_name: str) -> ConfirmScreen:
    return ConfirmScreen(
        f"Remove '{project_name}' from recents?",
        "Panes keep running. The repository is untouched.",
        confirm_label="Remove",
    )


def confirm_close_pane(pane_id: str, worktree_name: str) -> ConfirmScreen:
    return ConfirmScreen(
        f"Close pane {pane_id} in '{worktree_name}'?",
        "Whatever runs in it is killed.",
        confirm_label="Close",
    )
