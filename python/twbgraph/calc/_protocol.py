"""Analyzer protocol, options and report dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from twbgraph._tree import WorkbookTree
    from twbgraph.calc._lod import LodExplanation, LodExpression


@dataclass(frozen=True)
class AnalysisOptions:
    """Knobs for a single analysis run."""

    include_hidden: bool = True
    include_source_fields: bool = False
    source_field_limit: int = 5
    max_tree_roots: int = 10
    source_preview: int = 3
    collapse_shared_subtrees: bool = False
    duplicate_captions: str = "qualify"  # "first" | "last" | "qualify"
    include_usage_context: bool = True
    formula_preview: int = 100


# ---------------------------------------------------------------------------
# Dependency analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CircularDependency:
    cycle: tuple[str, ...]

    @property
    def explanation(self) -> str:
        return f"Circular dependency detected: {' -> '.join(self.cycle)}"

    def as_dict(self) -> dict[str, Any]:
        return {"cycle": list(self.cycle), "explanation": self.explanation}


@dataclass(frozen=True)
class CalculationReport:
    """One calculation as reported to callers."""

    name: str
    caption: str
    formula: str
    datasource: str
    depth: int
    depends_on_calcs: tuple[str, ...]
    depends_on_source: tuple[str, ...]
    depends_on_params: tuple[str, ...]
    used_by: tuple[str, ...]
    is_root: bool
    is_leaf: bool
    is_circular: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "caption": self.caption,
            "formula": self.formula,
            "datasource": self.datasource,
            "depth": self.depth,
            "dependsOn": {
                "calculations": list(self.depends_on_calcs),
                "sourceFields": list(self.depends_on_source),
                "parameters": list(self.depends_on_params),
            },
            "usedBy": list(self.used_by),
            "isRoot": self.is_root,
            "isLeaf": self.is_leaf,
            "isCircular": self.is_circular,
        }


@dataclass(frozen=True)
class DependencySummary:
    total_calculations: int = 0
    max_dependency_depth: int = 0
    root_calculations: int = 0
    leaf_calculations: int = 0
    intermediate_calculations: int = 0
    circular_dependencies: int = 0
    parameter_count: int = 0
    source_field_count: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "totalCalculations": self.total_calculations,
            "maxDependencyDepth": self.max_dependency_depth,
            "rootCalculations": self.root_calculations,
            "leafCalculations": self.leaf_calculations,
            "intermediateCalculations": self.intermediate_calculations,
            "circularDependencies": self.circular_dependencies,
            "parameterCount": self.parameter_count,
            "sourceFieldCount": self.source_field_count,
        }


@dataclass(frozen=True)
class DependencyReport:
    """Result of a dependency analysis."""

    summary: DependencySummary
    calculations: tuple[CalculationReport, ...] = ()
    cycles: tuple[CircularDependency, ...] = ()
    depth_levels: dict[str, tuple[str, ...]] = field(default_factory=dict)
    evaluation_order: tuple[str, ...] = ()
    tree: str = ""
    message: str | None = None

    @property
    def roots(self) -> list[str]:
        return [c.caption for c in self.calculations if c.is_root and not c.is_circular]

    @property
    def leaves(self) -> list[str]:
        return [c.caption for c in self.calculations if c.is_leaf and not c.is_circular]

    def calculation(self, caption: str) -> CalculationReport:
        for calc in self.calculations:
            if calc.caption == caption:
                return calc
        raise KeyError(f"Calculation '{caption}' does not exist")

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"summary": self.summary.as_dict()}
        if self.message is not None:
            result["message"] = self.message
            return result
        result["depthLevels"] = {k: list(v) for k, v in self.depth_levels.items()}
        result["calculations"] = [c.as_dict() for c in self.calculations]
        if self.cycles:
            result["circularDependencies"] = [c.as_dict() for c in self.cycles]
        result["evaluationOrder"] = list(self.evaluation_order)
        result["dependencyTree"] = {"text": self.tree}
        return result


# ---------------------------------------------------------------------------
# Scoped-aggregation (LOD) analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LodUsage:
    used_in_calculations: tuple[str, ...]
    is_hidden: bool


@dataclass(frozen=True)
class LodReportEntry:
    """A scoped-aggregation block together with its owning calculation."""

    name: str
    caption: str
    full_formula: str
    datasource: str
    hidden: bool
    expression: LodExpression
    explanation: LodExplanation
    pattern: str
    usage: LodUsage | None = None

    def as_dict(self) -> dict[str, Any]:
        lod = self.expression
        result: dict[str, Any] = {
            "name": self.name,
            "caption": self.caption,
            "fullFormula": self.full_formula,
            "datasource": self.datasource,
            "hidden": self.hidden,
            "lodDetails": {
                "type": lod.kind,
                "dimensions": list(lod.dimensions),
                "aggregation": lod.aggregation,
                "aggregatedExpression": lod.expression,
            },
            "explanation": {
                "brief": self.explanation.brief,
                "detailed": self.explanation.detailed,
                "useCase": self.explanation.use_case,
            },
            "hasNestedLod": lod.has_nested_scope,
            "pattern": self.pattern,
        }
        if lod.nested_expressions:
            result["nestedLods"] = [
                {"type": n.kind, "dimensions": list(n.dimensions), "expression": n.expression}
                for n in lod.nested_expressions
            ]
        if self.usage is not None:
            result["usageContext"] = {
                "usedInCalculations": list(self.usage.used_in_calculations),
                "isHidden": self.usage.is_hidden,
            }
        return result


@dataclass(frozen=True)
class LodSummary:
    total_lod_expressions: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    nested_lod_count: int = 0
    table_scoped_fixed_count: int = 0
    hidden_count: int = 0
    total_calculations: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalLodExpressions": self.total_lod_expressions,
            "byType": {k.lower(): v for k, v in self.by_type.items()},
            "nestedLodCount": self.nested_lod_count,
            "tableScopedFixedCount": self.table_scoped_fixed_count,
            "hiddenCount": self.hidden_count,
            "totalCalculations": self.total_calculations,
        }


@dataclass(frozen=True)
class LodReport:
    summary: LodSummary
    expressions: tuple[LodReportEntry, ...] = ()
    patterns: dict[str, tuple[str, ...]] = field(default_factory=dict)
    reference: dict[str, Any] = field(default_factory=dict)
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"summary": self.summary.as_dict()}
        if self.message is not None:
            result["message"] = self.message
        else:
            result["lodExpressions"] = [e.as_dict() for e in self.expressions]
            result["patterns"] = {
                _camel(k): list(v) for k, v in self.patterns.items() if v
            }
        result["learningResources"] = self.reference
        return result


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@runtime_checkable
class CalcAnalyzer(Protocol):
    """Protocol for workbook calculation analyzers."""

    def load(self, tree: WorkbookTree) -> None:
        """Extract fields from a workbook tree and build the dependency graph."""
        ...

    def dependencies(self) -> DependencyReport:
        """Depth, root/leaf and cycle report for every calculation."""
        ...

    def scoped_aggregations(self) -> LodReport:
        """Parsed and classified scoped-aggregation blocks."""
        ...
