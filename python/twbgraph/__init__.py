"""twbgraph: explain the calculation graph of a BI workbook.

Usage::

    from twbgraph import WorkbookTree, analyze_dependencies, analyze_scoped_aggregations

    tree = WorkbookTree.from_mapping(xmltodict.parse(twb_xml))
    report = analyze_dependencies(tree)
    print(report.summary.max_dependency_depth, report.cycles)
    print(report.tree)

    lods = analyze_scoped_aggregations(tree)
    print(lods.patterns["percent_of_total"])
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from twbgraph._tree import PARAMETERS_DATASOURCE, Column, Datasource, ValueRange, WorkbookTree
from twbgraph.calc import AnalysisOptions, DependencyReport, LodReport, WorkbookAnalyzer

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AnalysisOptions",
    "Column",
    "Datasource",
    "DependencyReport",
    "LodReport",
    "PARAMETERS_DATASOURCE",
    "ValueRange",
    "WorkbookAnalyzer",
    "WorkbookTree",
    "analyze_dependencies",
    "analyze_scoped_aggregations",
]


def analyze_dependencies(
    tree: WorkbookTree | Mapping[str, Any],
    options: AnalysisOptions | None = None,
) -> DependencyReport:
    """Build the calculation graph of *tree* and report depths, roots, leaves and cycles."""
    analyzer = WorkbookAnalyzer(options)
    analyzer.load(tree)
    return analyzer.dependencies()


def analyze_scoped_aggregations(
    tree: WorkbookTree | Mapping[str, Any],
    options: AnalysisOptions | None = None,
) -> LodReport:
    """Parse, explain and categorize every scoped-aggregation block in *tree*."""
    analyzer = WorkbookAnalyzer(options)
    analyzer.load(tree)
    return analyzer.scoped_aggregations()
