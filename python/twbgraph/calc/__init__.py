"""twbgraph.calc - calculation dependency and scoped-aggregation analysis."""

from twbgraph.calc._analyzer import WorkbookAnalyzer
from twbgraph.calc._fields import CalcNode, FieldSet, Parameter, SourceField, extract_fields
from twbgraph.calc._graph import DependencyGraph
from twbgraph.calc._lod import (
    LOD_REFERENCE,
    LodExplanation,
    LodExpression,
    categorize,
    contains_lod_expression,
    explain,
    parse_lod_expressions,
)
from twbgraph.calc._parser import (
    FieldReference,
    extract_references,
    field_name,
    parse_field_reference,
    parse_functions,
)
from twbgraph.calc._protocol import (
    AnalysisOptions,
    CalcAnalyzer,
    CalculationReport,
    CircularDependency,
    DependencyReport,
    DependencySummary,
    LodReport,
    LodSummary,
)
from twbgraph.calc._render import render_dependency_tree

__all__ = [
    "AnalysisOptions",
    "CalcAnalyzer",
    "CalcNode",
    "CalculationReport",
    "CircularDependency",
    "DependencyGraph",
    "DependencyReport",
    "DependencySummary",
    "FieldReference",
    "FieldSet",
    "LOD_REFERENCE",
    "LodExplanation",
    "LodExpression",
    "LodReport",
    "LodSummary",
    "Parameter",
    "SourceField",
    "WorkbookAnalyzer",
    "categorize",
    "contains_lod_expression",
    "explain",
    "extract_fields",
    "extract_references",
    "field_name",
    "parse_field_reference",
    "parse_functions",
    "parse_lod_expressions",
    "render_dependency_tree",
]
