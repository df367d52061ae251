"""Chart renderer using Rich library.

Renders a chart as a tree, marking node kinds, tags and the active path.
Developer tooling only; nothing in the interpreter depends on it.
"""

from io import StringIO

from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from .definition import Chart
from .types import NodeKind, Snapshot

# 节点类型标记
KIND_MARKS = {
    NodeKind.ATOMIC: "",
    NodeKind.COMPOUND: "",
    NodeKind.FINAL: " (final)",
    NodeKind.HISTORY: " (history)",
}


def _label(chart: Chart, index: int, active: set[int], snapshot: Snapshot | None) -> Text:
    node = chart.nodes[index]
    is_active = index in active
    text = Text(node.key, style="bold green" if is_active else "")
    text.append(KIND_MARKS[node.kind], style="dim")
    if node.is_compound and node.initial is not None:
        text.append(f" initial={chart.nodes[node.initial].key}", style="dim")
    if snapshot is not None and node.id in snapshot.history:
        text.append(f" history={snapshot.history[node.id]}", style="magenta")
    if node.tags:
        text.append(" [" + ", ".join(sorted(node.tags)) + "]", style="cyan")
    if is_active:
        text.append(" ●", style="green")
    return text


def render_chart(chart: Chart, snapshot: Snapshot | None = None) -> Tree:
    """Build a rich Tree for ``chart``, highlighting ``snapshot``'s active path."""
    active: set[int] = set()
    if snapshot is not None:
        current = 0
        active.add(current)
        for key in snapshot.active_path[1:]:
            current = chart.child(current, key)
            if current is None:
                break
            active.add(current)

    def build(parent_tree: Tree, index: int) -> None:
        for child in chart.nodes[index].children:
            branch = parent_tree.add(_label(chart, child, active, snapshot))
            build(branch, child)

    tree = Tree(_label(chart, 0, active, snapshot))
    build(tree, 0)
    return tree


def render_text(chart: Chart, snapshot: Snapshot | None = None, width: int = 100) -> str:
    """Render the chart tree as plain text."""
    console = Console(file=StringIO(), record=True, width=width, color_system=None)
    console.print(render_chart(chart, snapshot))
    return console.export_text()
