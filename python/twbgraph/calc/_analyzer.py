"""WorkbookAnalyzer: dependency and scoped-aggregation reports for a workbook tree."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from twbgraph._tree import WorkbookTree
from twbgraph.calc._fields import CalcNode
from twbgraph.calc._graph import DependencyGraph
from twbgraph.calc._lod import (
    LOD_KINDS,
    LOD_REFERENCE,
    PATTERNS,
    categorize,
    explain,
    parse_lod_expressions,
)
from twbgraph.calc._protocol import (
    AnalysisOptions,
    CalculationReport,
    CircularDependency,
    DependencyReport,
    DependencySummary,
    LodReport,
    LodReportEntry,
    LodSummary,
    LodUsage,
)
from twbgraph.calc._render import render_dependency_tree

logger = logging.getLogger(__name__)

NO_CALCULATIONS = "No calculated fields found in this workbook"
NO_LOD_EXPRESSIONS = "No LOD expressions found in this workbook"


def coerce_tree(tree: WorkbookTree | Mapping[str, Any]) -> WorkbookTree:
    if isinstance(tree, WorkbookTree):
        return tree
    return WorkbookTree.from_mapping(tree)


class WorkbookAnalyzer:
    """Explains the calculation graph of a workbook tree.

    Usage::

        analyzer = WorkbookAnalyzer()
        analyzer.load(tree)
        report = analyzer.dependencies()
        lods = analyzer.scoped_aggregations()
        print(analyzer.render_tree())

    Every :meth:`load` builds a fresh graph; nothing is shared between loads.
    """

    def __init__(self, options: AnalysisOptions | None = None) -> None:
        self.options = options or AnalysisOptions()
        self._graph = DependencyGraph()
        self._loaded = False

    @property
    def graph(self) -> DependencyGraph:
        self._require_loaded("graph")
        return self._graph

    def load(self, tree: WorkbookTree | Mapping[str, Any]) -> None:
        """Extract fields and build the dependency graph."""
        self._graph = DependencyGraph.from_tree(coerce_tree(tree), self.options)
        self._loaded = True
        logger.debug(
            "Loaded %d calculations (max depth %d, %d cycles)",
            len(self._graph), self._graph.max_depth, len(self._graph.cycles),
        )

    def _require_loaded(self, what: str) -> None:
        if not self._loaded:
            raise RuntimeError(f"Call load() before {what}()")

    def _listed(self) -> dict[str, CalcNode]:
        """Calculations shown in reports; hidden ones stay in the graph regardless."""
        calcs = self._graph.calculations
        if self.options.include_hidden:
            return calcs
        return {c: n for c, n in calcs.items() if not n.hidden}

    # ------------------------------------------------------------------
    # Dependency report
    # ------------------------------------------------------------------

    def dependencies(self) -> DependencyReport:
        """Depth, root/leaf and cycle report for every calculation."""
        self._require_loaded("dependencies")
        graph = self._graph
        fields = graph.fields
        listed = self._listed()

        if not listed:
            return DependencyReport(
                summary=DependencySummary(
                    parameter_count=len(fields.parameters),
                    source_field_count=len(fields.source_fields),
                ),
                message=NO_CALCULATIONS,
            )

        opts = self.options
        calculations: list[CalculationReport] = []
        for caption, node in listed.items():
            sources = node.depends_on_source
            if not opts.include_source_fields:
                sources = sources[: opts.source_field_limit]
            calculations.append(CalculationReport(
                name=node.name,
                caption=caption,
                formula=node.formula,
                datasource=node.datasource,
                depth=node.depth,
                depends_on_calcs=tuple(node.depends_on_calcs),
                depends_on_source=tuple(sources),
                depends_on_params=tuple(node.depends_on_params),
                used_by=tuple(node.used_by),
                is_root=node.is_root,
                is_leaf=node.is_leaf,
                is_circular=node.is_circular,
            ))
        calculations.sort(key=lambda c: c.depth)

        summary = DependencySummary(
            total_calculations=len(listed),
            max_dependency_depth=max(
                (n.depth for n in listed.values() if not n.is_circular), default=0,
            ),
            root_calculations=sum(1 for c in graph.roots() if c in listed),
            leaf_calculations=sum(1 for c in graph.leaves() if c in listed),
            intermediate_calculations=sum(1 for c in graph.intermediates() if c in listed),
            circular_dependencies=len(graph.cycles),
            parameter_count=len(fields.parameters),
            source_field_count=len(fields.source_fields),
        )

        logger.debug("Found %d calculations, max depth: %d", summary.total_calculations,
                     summary.max_dependency_depth)

        return DependencyReport(
            summary=summary,
            calculations=tuple(calculations),
            cycles=tuple(CircularDependency(cycle) for cycle in graph.cycles),
            depth_levels=self._listed_levels(),
            evaluation_order=tuple(c for c in graph.evaluation_order() if c in listed),
            tree=render_dependency_tree(graph, opts),
        )

    def depth_level_previews(self) -> dict[str, list[dict[str, Any]]]:
        """Depth levels with truncated formulas, for compact listings."""
        self._require_loaded("depth_level_previews")
        limit = self.options.formula_preview
        previews: dict[str, list[dict[str, Any]]] = {}
        for level, captions in self._listed_levels().items():
            items = previews.setdefault(level, [])
            for caption in captions:
                node = self._graph.calculations[caption]
                formula = node.formula[:limit] + ("..." if len(node.formula) > limit else "")
                items.append({"caption": caption, "formula": formula, "usedBy": node.used_by[:5]})
        return previews

    def _listed_levels(self) -> dict[str, tuple[str, ...]]:
        listed = self._listed()
        levels: dict[str, tuple[str, ...]] = {}
        for level, captions in self._graph.depth_levels().items():
            kept = tuple(c for c in captions if c in listed)
            if kept:
                levels[level] = kept
        return levels

    def render_tree(self) -> str:
        self._require_loaded("render_tree")
        return render_dependency_tree(self._graph, self.options)

    def affected_by(self, captions: set[str] | list[str]) -> list[str]:
        """Calculations that change when any of *captions* changes."""
        self._require_loaded("affected_by")
        return self._graph.affected_by(captions)

    # ------------------------------------------------------------------
    # Scoped-aggregation report
    # ------------------------------------------------------------------

    def scoped_aggregations(self) -> LodReport:
        """Parse, explain and group every scoped-aggregation block."""
        self._require_loaded("scoped_aggregations")
        graph = self._graph
        opts = self.options
        listed = self._listed()

        entries: list[LodReportEntry] = []
        for caption, node in listed.items():
            for lod in parse_lod_expressions(node.formula, caption):
                usage = None
                if opts.include_usage_context:
                    usage = LodUsage(
                        used_in_calculations=tuple(
                            c for c in node.used_by if c != caption and c in listed
                        ),
                        is_hidden=node.hidden,
                    )
                entries.append(LodReportEntry(
                    name=node.name,
                    caption=caption,
                    full_formula=node.formula,
                    datasource=node.datasource,
                    hidden=node.hidden,
                    expression=lod,
                    explanation=explain(lod),
                    pattern=categorize(lod),
                    usage=usage,
                ))

        if not entries:
            return LodReport(
                summary=LodSummary(total_calculations=len(listed)),
                reference=LOD_REFERENCE,
                message=NO_LOD_EXPRESSIONS,
            )

        patterns: dict[str, list[str]] = {p: [] for p in PATTERNS}
        for entry in entries:
            patterns[entry.pattern].append(entry.caption)

        summary = LodSummary(
            total_lod_expressions=len(entries),
            by_type={kind: sum(1 for e in entries if e.expression.kind == kind) for kind in LOD_KINDS},
            nested_lod_count=sum(1 for e in entries if e.expression.has_nested_scope),
            table_scoped_fixed_count=sum(1 for e in entries if e.expression.is_table_scoped),
            hidden_count=sum(1 for e in entries if e.hidden),
            total_calculations=len(listed),
        )

        logger.debug("Found %d LOD expressions", summary.total_lod_expressions)

        return LodReport(
            summary=summary,
            expressions=tuple(entries),
            patterns={k: tuple(v) for k, v in patterns.items()},
            reference=LOD_REFERENCE,
        )
