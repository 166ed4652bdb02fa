"""Tests for twbgraph.calc dependency tree rendering."""

from __future__ import annotations

from twbgraph._tree import Column, Datasource, WorkbookTree
from twbgraph.calc._graph import DependencyGraph
from twbgraph.calc._protocol import AnalysisOptions
from twbgraph.calc._render import NO_LEAVES, render_dependency_tree


def _graph(formulas: dict[str, str]) -> DependencyGraph:
    return DependencyGraph.from_tree(WorkbookTree([Datasource("DS", columns=[
        Column(f"[{caption}]", formula=formula) for caption, formula in formulas.items()
    ])]))


class TestRender:
    def test_chain(self) -> None:
        g = _graph({"Alpha": "[Beta] * 2", "Beta": "[Gamma] + 1", "Gamma": "[Sales]"})
        text = render_dependency_tree(g)
        assert text.splitlines() == [
            "",
            "Alpha [depth: 2] (leaf calculation)",
            "└── Beta [depth: 1]",
            "    └── Gamma [depth: 0]",
            "        └── [source: Sales]",
        ]

    def test_siblings_and_sources(self) -> None:
        g = _graph({"Top": "[L] + [R] + [x]", "L": "[a]", "R": "[b]"})
        lines = render_dependency_tree(g).splitlines()
        assert lines[1:] == [
            "Top [depth: 1] (leaf calculation)",
            "├── L [depth: 0]",
            "│   └── [source: a]",
            "├── R [depth: 0]",
            "│   └── [source: b]",
            "└── [source: x]",
        ]

    def test_source_truncation(self) -> None:
        g = _graph({"Wide": "[a] + [b] + [c] + [d] + [e]"})
        text = render_dependency_tree(g)
        assert "└── [source: a, b, c (+2 more)]" in text

    def test_source_preview_option(self) -> None:
        g = _graph({"Wide": "[a] + [b] + [c]"})
        text = render_dependency_tree(g, AnalysisOptions(source_preview=1))
        assert "[source: a (+2 more)]" in text

    def test_deepest_leaf_first(self) -> None:
        g = _graph({"Shallow": "[x]", "Deep": "[Mid]", "Mid": "[y]"})
        lines = [line for line in render_dependency_tree(g).splitlines() if "leaf" in line]
        assert lines == [
            "Deep [depth: 1] (leaf calculation)",
            "Shallow [depth: 0] (leaf calculation)",
        ]

    def test_max_tree_roots(self) -> None:
        g = _graph({f"Calc {i}": "[x]" for i in range(15)})
        text = render_dependency_tree(g, AnalysisOptions(max_tree_roots=4))
        assert text.count("(leaf calculation)") == 4

    def test_only_cycles(self) -> None:
        g = _graph({"A": "[B]", "B": "[A]"})
        assert render_dependency_tree(g) == NO_LEAVES

    def test_cycle_below_leaf(self) -> None:
        g = _graph({"Top": "[A]", "A": "[B]", "B": "[A]"})
        lines = render_dependency_tree(g).splitlines()
        assert lines[1:] == [
            "Top [depth: 1] (leaf calculation)",
            "└── A [depth: 0]",
            "    └── B [depth: 0]",
            "        └── A (circular ref)",
        ]

    def test_empty_graph(self) -> None:
        assert render_dependency_tree(_graph({})) == NO_LEAVES


class TestSharedSubtrees:
    def _fan_in(self) -> DependencyGraph:
        return _graph({
            "Report": "[Left] + [Right]",
            "Left": "[Shared]",
            "Right": "[Shared]",
            "Shared": "[Base]",
            "Base": "[x]",
        })

    def test_reprinted_by_default(self) -> None:
        text = render_dependency_tree(self._fan_in())
        assert text.count("Base [depth: 0]") == 2

    def test_collapsed(self) -> None:
        text = render_dependency_tree(self._fan_in(), AnalysisOptions(collapse_shared_subtrees=True))
        assert text.count("Base [depth: 0]") == 1
        assert "│   └── Shared [depth: 1]" in text
        assert "    └── Shared [depth: 1] (see above)" in text
