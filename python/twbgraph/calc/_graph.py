"""Dependency graph for calculated fields: edge resolution, cycles and depth."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from twbgraph.calc._fields import CalcNode, FieldSet, extract_fields

if TYPE_CHECKING:
    from twbgraph._tree import WorkbookTree
    from twbgraph.calc._protocol import AnalysisOptions

logger = logging.getLogger(__name__)


@dataclass
class _Traversal:
    """Per-call DFS state for depth assignment."""

    finalized: set[str] = field(default_factory=set)
    active: set[str] = field(default_factory=set)
    path: list[str] = field(default_factory=list)
    cycles: list[tuple[str, ...]] = field(default_factory=list)
    seen_cycles: set[tuple[str, ...]] = field(default_factory=set)

    def record_cycle(self, node: str) -> tuple[str, ...]:
        start = self.path.index(node)
        cycle = (*self.path[start:], node)
        if cycle not in self.seen_cycles:
            self.seen_cycles.add(cycle)
            self.cycles.append(cycle)
        return cycle


class DependencyGraph:
    """Calculations keyed by caption, with forward and reverse calc edges.

    Forward edges live in ``CalcNode.depends_on_calcs`` and reverse edges in
    ``CalcNode.used_by``. Build with :meth:`from_fields` or
    :meth:`from_tree`; both run the full resolve / reverse / depth pipeline.
    """

    __slots__ = ("calculations", "cycles", "fields")

    def __init__(self, fields: FieldSet | None = None) -> None:
        self.fields = fields if fields is not None else FieldSet()
        # caption -> node, insertion ordered
        self.calculations: dict[str, CalcNode] = self.fields.calculations
        self.cycles: list[tuple[str, ...]] = []

    @classmethod
    def from_fields(cls, fields: FieldSet) -> DependencyGraph:
        graph = cls(fields)
        graph.resolve_dependencies()
        graph.build_reverse_edges()
        graph.cycles = graph.assign_depths()
        return graph

    @classmethod
    def from_tree(cls, tree: WorkbookTree, options: AnalysisOptions | None = None) -> DependencyGraph:
        """Extract fields from a workbook tree and build the graph."""
        return cls.from_fields(extract_fields(tree, options))

    def __contains__(self, caption: object) -> bool:
        return caption in self.calculations

    def __getitem__(self, caption: str) -> CalcNode:
        if caption not in self.calculations:
            raise KeyError(f"Calculation '{caption}' does not exist")
        return self.calculations[caption]

    def __len__(self) -> int:
        return len(self.calculations)

    # ------------------------------------------------------------------
    # Edge resolution
    # ------------------------------------------------------------------

    def resolve_dependencies(self) -> None:
        """Classify every raw reference as parameter, calculation or source field."""
        params = self.fields.parameter_names
        for node in self.calculations.values():
            for ref in node.all_references:
                if ref in params:
                    _append_unique(node.depends_on_params, ref)
                    continue
                target = self.fields.lookup_calc(ref)
                if target is not None:
                    _append_unique(node.depends_on_calcs, target.caption)
                else:
                    _append_unique(node.depends_on_source, ref)

    def build_reverse_edges(self) -> None:
        """Derive ``used_by`` from ``depends_on_calcs``."""
        for caption, node in self.calculations.items():
            for dep in node.depends_on_calcs:
                dep_node = self.calculations.get(dep)
                if dep_node is not None:
                    _append_unique(dep_node.used_by, caption)

    # ------------------------------------------------------------------
    # Cycles and depth
    # ------------------------------------------------------------------

    def assign_depths(self) -> list[tuple[str, ...]]:
        """Assign a depth to every calculation and return the cycles found.

        Iterative DFS with an active-path set. A back edge to a node on the
        active path records ``path[first occurrence:] + [node]`` as a cycle
        and contributes depth 0. Nodes lying on any cycle are circular and
        get the sentinel depth 0.
        """
        for caption in self._cyclic_nodes():
            self.calculations[caption].is_circular = True

        state = _Traversal()
        for caption in self.calculations:
            if caption not in state.finalized:
                self._visit(caption, state)

        if state.cycles:
            logger.debug("Found %d circular dependencies", len(state.cycles))
        return state.cycles

    def _visit(self, start: str, state: _Traversal) -> None:
        # frame: [caption, dependency iterator, deepest child depth so far]
        frames: list[list] = []

        def enter(caption: str) -> None:
            state.active.add(caption)
            state.path.append(caption)
            frames.append([caption, iter(self.calculations[caption].depends_on_calcs), -1])

        enter(start)
        while frames:
            frame = frames[-1]
            child = next(frame[1], None)
            if child is not None:
                if child in state.active:
                    for member in state.record_cycle(child):
                        self.calculations[member].is_circular = True
                    frame[2] = max(frame[2], 0)
                elif child in state.finalized:
                    frame[2] = max(frame[2], self.calculations[child].depth)
                elif child in self.calculations:
                    enter(child)
                continue

            frames.pop()
            caption, _, deepest = frame
            node = self.calculations[caption]
            node.depth = 0 if node.is_circular else deepest + 1
            state.active.discard(caption)
            state.path.pop()
            state.finalized.add(caption)
            if frames:
                frames[-1][2] = max(frames[-1][2], node.depth)

    def _cyclic_nodes(self) -> set[str]:
        """Members of every strongly connected component that contains a cycle.

        Iterative Tarjan over calc edges.
        """
        index: dict[str, int] = {}
        low: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        cyclic: set[str] = set()
        counter = 0

        for root in self.calculations:
            if root in index:
                continue
            work: list[tuple[str, int]] = [(root, 0)]
            while work:
                caption, i = work.pop()
                deps = self.calculations[caption].depends_on_calcs
                if i == 0:
                    index[caption] = low[caption] = counter
                    counter += 1
                    stack.append(caption)
                    on_stack.add(caption)
                recurse = False
                while i < len(deps):
                    dep = deps[i]
                    i += 1
                    if dep not in self.calculations:
                        continue
                    if dep not in index:
                        work.append((caption, i))
                        work.append((dep, 0))
                        recurse = True
                        break
                    if dep in on_stack:
                        low[caption] = min(low[caption], index[dep])
                if recurse:
                    continue
                if low[caption] == index[caption]:
                    component: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == caption:
                            break
                    if len(component) > 1 or caption in deps:
                        cyclic.update(component)
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[caption])

        return cyclic

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def max_depth(self) -> int:
        depths = [n.depth for n in self.calculations.values() if not n.is_circular]
        return max(depths, default=0)

    def roots(self) -> list[str]:
        return [c for c, n in self.calculations.items() if n.is_root and not n.is_circular]

    def leaves(self) -> list[str]:
        return [c for c, n in self.calculations.items() if n.is_leaf and not n.is_circular]

    def intermediates(self) -> list[str]:
        return [
            c for c, n in self.calculations.items()
            if not n.is_root and not n.is_leaf and not n.is_circular
        ]

    def depth_levels(self) -> dict[str, list[str]]:
        """``{"level0": [...], "level1": [...], ..., "circular": [...]}``."""
        levels: dict[str, list[str]] = {}
        for caption, node in sorted(self.calculations.items(), key=lambda kv: kv[1].depth):
            key = "circular" if node.is_circular else f"level{node.depth}"
            levels.setdefault(key, []).append(caption)
        if "circular" in levels:
            levels["circular"] = levels.pop("circular")
        return levels

    def evaluation_order(self) -> list[str]:
        """Non-circular calculations in evaluation order (Kahn's algorithm).

        Circular calculations, and anything depending on them, can't be
        ordered and are left out.
        """
        calcs = set(self.calculations)
        if not calcs:
            return []

        # Only count deps that are themselves calculations
        in_degree: dict[str, int] = {
            c: len(set(self.calculations[c].depends_on_calcs) & calcs) for c in calcs
        }

        queue: deque[str] = deque(c for c in self.calculations if in_degree[c] == 0)
        order: list[str] = []
        while queue:
            caption = queue.popleft()
            order.append(caption)
            for dependent in self.calculations[caption].used_by:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)
        return order

    def affected_by(self, changed: set[str] | list[str]) -> list[str]:
        """Calculations downstream of *changed*, in evaluation order.

        BFS on ``used_by``. Circular calculations reached by the walk are
        appended after the ordered ones.
        """
        affected: set[str] = set()
        queue: deque[str] = deque(c for c in changed if c in self.calculations)
        visited: set[str] = set(queue)

        while queue:
            caption = queue.popleft()
            for dependent in self.calculations[caption].used_by:
                affected.add(dependent)
                if dependent not in visited:
                    visited.add(dependent)
                    queue.append(dependent)

        ordered = [c for c in self.evaluation_order() if c in affected]
        placed = set(ordered)
        ordered.extend(c for c in self.calculations if c in affected and c not in placed)
        return ordered


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)
