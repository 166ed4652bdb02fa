"""Indented text rendering of calculation dependency chains."""

from __future__ import annotations

from typing import TYPE_CHECKING

from twbgraph.calc._protocol import AnalysisOptions

if TYPE_CHECKING:
    from twbgraph.calc._fields import CalcNode
    from twbgraph.calc._graph import DependencyGraph

NO_LEAVES = "No leaf calculations found (possible circular dependencies)"

_BRANCH = "├── "
_LAST = "└── "
_PIPE = "│   "
_BLANK = "    "


def _source_line(node: CalcNode, limit: int) -> str:
    sources = node.depends_on_source
    label = ", ".join(sources[:limit])
    if len(sources) > limit:
        label += f" (+{len(sources) - limit} more)"
    return f"[source: {label}]"


class _TreePrinter:
    """Accumulates lines for one render call."""

    def __init__(self, graph: DependencyGraph, options: AnalysisOptions) -> None:
        self.graph = graph
        self.options = options
        self.lines: list[str] = []
        self.expanded: set[str] = set()  # subtrees printed so far in this render

    def leaf(self, node: CalcNode) -> None:
        self.lines.append("")
        self.lines.append(f"{node.caption} [depth: {node.depth}] (leaf calculation)")
        self.expanded.add(node.caption)
        self.children(node, "", {node.caption})

    def children(self, node: CalcNode, indent: str, branch: set[str]) -> None:
        deps = node.depends_on_calcs
        has_sources = bool(node.depends_on_source)
        for i, dep in enumerate(deps):
            is_last = i == len(deps) - 1 and not has_sources
            self.node(dep, indent, is_last, set(branch))
        if has_sources:
            self.lines.append(f"{indent}{_LAST}{_source_line(node, self.options.source_preview)}")

    def node(self, caption: str, indent: str, is_last: bool, branch: set[str]) -> None:
        prefix = _LAST if is_last else _BRANCH
        if caption in branch:
            self.lines.append(f"{indent}{prefix}{caption} (circular ref)")
            return

        node = self.graph.calculations.get(caption)
        if node is None:
            return

        label = f"{caption} [depth: {node.depth}]" if node.depth >= 0 else caption
        if self.options.collapse_shared_subtrees and caption in self.expanded and (
            node.depends_on_calcs or node.depends_on_source
        ):
            self.lines.append(f"{indent}{prefix}{label} (see above)")
            return

        self.lines.append(f"{indent}{prefix}{label}")
        self.expanded.add(caption)
        branch.add(caption)
        self.children(node, indent + (_BLANK if is_last else _PIPE), branch)


def render_dependency_tree(graph: DependencyGraph, options: AnalysisOptions | None = None) -> str:
    """Render one tree per leaf calculation, deepest leaves first.

    Descends through ``depends_on_calcs``. A node already on the current
    branch is printed as ``(circular ref)`` instead of being expanded again.
    Source fields appear as a truncated trailing ``[source: ...]`` line.
    Hidden leaves are skipped unless ``options.include_hidden``; hidden
    dependencies are still drawn under their visible dependents.
    """
    options = options or AnalysisOptions()
    leaves = sorted(
        (
            n for n in graph.calculations.values()
            if n.is_leaf and not n.is_circular and (options.include_hidden or not n.hidden)
        ),
        key=lambda n: n.depth,
        reverse=True,
    )
    if not leaves:
        return NO_LEAVES

    printer = _TreePrinter(graph, options)
    for node in leaves[: options.max_tree_roots]:
        printer.leaf(node)
    return "\n".join(printer.lines)
