from dataclasses import dataclass

from textual.app import ComposeResult
from textual.containers import Vertical
from textual.message import Message
from textual.widgets import Label, ListItem, ListView, Static

from oak.models import PaneState, ProjectState, WorktreeState


@dataclass(frozen=True)
class Row:
    """One line of the list: a project header, a worktree, or a pane under a worktree."""

    kind: str  # "project" | "worktree" | "pane"
    project_path: str
    worktree_path: str | None = None
    pane_id: str | None = None
    is_background: bool = False


class WorktreeSelected(Message):
    """Fired when enter is pressed on a worktree or pane row."""

    def __init__(self, row: Row) -> None:
        self.row = row
        super().__init__()


def _project_label(project: ProjectState) -> str:
    beads = " [dim]beads[/]" if project.beads.enabled else ""
    return f"[b]{project.name}[/]{beads}"


def _worktree_label(wt: WorktreeState, is_root: bool) -> str:
    visible = sum(1 for p in wt.panes if not p.is_background)
    hidden = len(wt.panes) - visible
    dots = "[green]●[/]" * visible + "[dim]○[/]" * hidden
    name = "(root)" if is_root else wt.path.rsplit("/", 1)[-1]
    return f"  {wt.branch} [dim]{name}[/] {dots}".rstrip()


def _pane_label(pane: PaneState) -> str:
    marker = "[dim]○[/]" if pane.is_background else "[green]●[/]"
    command = pane.current_command or "?"
    return f"    {marker} {pane.pane_id} {command}"


def build_rows(projects: list[ProjectState]) -> list[tuple[Row, str]]:
    """Flatten projects into list rows with their markup labels."""
    rows: list[tuple[Row, str]] = []
    for project in projects:
        rows.append((Row("project", project.path), _project_label(project)))
        for wt in project.worktrees.values():
            rows.append((Row("worktree", project.path, wt.path), _worktree_label(wt, wt.path == project.path)))
            for pane in wt.panes:
                row = Row("pane", project.path, wt.path, pane.pane_id, pane.is_background)
                rows.append((row, _pane_label(pane)))
    return rows


class ProjectList(Vertical):
    """Projects in display order, each with its worktrees and their panes."""

    DEFAULT_CSS = """
    ProjectList {
        height: 1fr;
        width: 1fr;
    }
    #project-list-title {
        height: 1;
        padding: 0 1;
        text-style: bold;
        color: $accent;
    }
    #project-list {
        height: 1fr;
    }
    #project-list-empty {
        height: auto;
        padding: 0 1;
        color: $text-muted;
        text-style: italic;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._rows: list[Row] = []
        self._snapshot: str | None = None

    def compose(self) -> ComposeResult:
        yield Static("Worktrees", id="project-list-title")
        yield ListView(id="project-list")
        yield Static("", id="project-list-empty")

    @property
    def rows(self) -> list[Row]:
        return list(self._rows)

    @property
    def selected(self) -> Row | None:
        index = self.query_one("#project-list", ListView).index
        if index is None or index >= len(self._rows):
            return None
        return self._rows[index]

    def show_projects(self, projects: list[ProjectState]) -> None:
        built = build_rows(projects)
        snapshot = "|".join(f"{row}{label}" for row, label in built)
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        self._rows = [row for row, _ in built]

        empty = self.query_one("#project-list-empty", Static)
        empty.update("" if built else "No projects yet. Run oak inside a git repository.")

        list_view = self.query_one("#project-list", ListView)
        prev_index = list_view.index
        current_count = len(list_view.children)

        # Update existing items in-place, add/remove only as needed
        for i, (_, label_text) in enumerate(built):
            if i < current_count:
                list_view.children[i].query_one(Label).update(label_text)
            else:
                label = Label(label_text)
                label.markup = True
                list_view.append(ListItem(label))
        for child in list(list_view.children[len(built):]):
            child.remove()

        if prev_index is not None and prev_index < len(built):
            list_view.index = prev_index
        elif built:
            list_view.index = 0

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        if event.list_view.id != "project-list":
            return
        row = self.selected
        if row is not None and row.kind != "project":
            self.post_message(WorktreeSelected(row))
