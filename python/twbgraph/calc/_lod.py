"""Scoped-aggregation (Level of Detail) expressions: scanning, parsing, classification.

A scoped block looks like ``{FIXED [Region], [Segment] : SUM([Sales])}``.
Blocks may nest inside the aggregated expression, so the scanner tracks
brace depth instead of relying on a single regex, skipping string literals,
comments and bracketed field names (which may legally contain braces or
colons).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from twbgraph.calc._parser import iter_bracket_tokens, parse_field_reference, skip_literal

logger = logging.getLogger(__name__)

LOD_KINDS = ("FIXED", "INCLUDE", "EXCLUDE")

AGGREGATION_FUNCTIONS = (
    "SUM", "AVG", "COUNT", "COUNTD", "MIN", "MAX", "MEDIAN",
    "ATTR", "STDEV", "STDEVP", "VAR", "VARP",
)

ENTITY_VOCABULARY = ("customer", "user", "client", "account", "member")
TEMPORAL_VOCABULARY = ("date", "month", "year", "quarter", "week", "day")

# Pattern categories
PERCENT_OF_TOTAL = "percent_of_total"
CUSTOMER_COHORT = "customer_cohort"
RUNNING_TOTAL = "running_total"
OTHER = "other"
PATTERNS = (PERCENT_OF_TOTAL, CUSTOMER_COHORT, RUNNING_TOTAL, OTHER)

_OPEN_RE = re.compile(rf"\{{\s*({'|'.join(LOD_KINDS)})\b", re.IGNORECASE)
_AGG_RE = re.compile(rf"^({'|'.join(AGGREGATION_FUNCTIONS)})\s*\(", re.IGNORECASE)
_ENTITY_RE = re.compile("|".join(ENTITY_VOCABULARY), re.IGNORECASE)
_TEMPORAL_RE = re.compile("|".join(TEMPORAL_VOCABULARY), re.IGNORECASE)


@dataclass(frozen=True)
class LodExpression:
    """One parsed ``{KIND dims : expression}`` block."""

    kind: str
    dimensions: tuple[str, ...]
    aggregation: str | None
    expression: str
    has_nested_scope: bool = False
    nested_expressions: tuple[LodExpression, ...] = ()
    caption: str | None = None  # owning calculation
    start: int = 0
    end: int = 0  # exclusive; formula[start:end] is the whole block

    @property
    def is_table_scoped(self) -> bool:
        return self.kind == "FIXED" and not self.dimensions


@dataclass(frozen=True)
class LodExplanation:
    brief: str
    detailed: str
    use_case: str


# ---------------------------------------------------------------------------
# Scanning helpers
# ---------------------------------------------------------------------------


def _skip_bracket(text: str, i: int) -> int:
    """Index past the ``]`` closing the ``[`` at *text[i]*, or -1."""
    end = text.find("]", i + 1)
    return -1 if end < 0 else end + 1


def _find_matching_brace(text: str, start: int) -> int:
    """Index of the ``'}'`` matching the ``'{'`` at *text[start]*, or -1."""
    depth = 1
    i = start + 1
    while i < len(text):
        skipped = skip_literal(text, i)
        if skipped != i:
            i = skipped
            continue
        ch = text[i]
        if ch == "[":
            i = _skip_bracket(text, i)
            if i < 0:
                return -1
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_top_level(text: str, sep: str) -> list[str]:
    """Split on *sep* at paren/brace depth 0, outside brackets and literals."""
    parts: list[str] = []
    depth = 0
    current_start = 0
    i = 0
    while i < len(text):
        skipped = skip_literal(text, i)
        if skipped != i:
            i = skipped
            continue
        ch = text[i]
        if ch == "[":
            nxt = _skip_bracket(text, i)
            if nxt < 0:
                break
            i = nxt
            continue
        if ch in "({":
            depth += 1
        elif ch in ")}":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append(text[current_start:i])
            current_start = i + 1
        i += 1
    parts.append(text[current_start:])
    return parts


def _opening_markers(formula: str) -> list[tuple[int, re.Match[str]]]:
    """Positions of ``{KIND`` markers outside literals and field names."""
    markers: list[tuple[int, re.Match[str]]] = []
    i = 0
    while i < len(formula):
        skipped = skip_literal(formula, i)
        if skipped != i:
            i = skipped
            continue
        ch = formula[i]
        if ch == "[":
            i = _skip_bracket(formula, i)
            if i < 0:
                break
            continue
        if ch == "{":
            m = _OPEN_RE.match(formula, i)
            if m:
                markers.append((i, m))
        i += 1
    return markers


def contains_lod_expression(formula: str) -> bool:
    """True when *formula* contains a scoped-aggregation opening marker."""
    return bool(_opening_markers(formula))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_dimensions(text: str) -> list[str]:
    """Dimension names from the part of a block before its ``:``.

    An empty list is a table-scoped block, not a parse failure.
    """
    dimensions: list[str] = []
    for part in _split_top_level(text, ","):
        tokens = [tok for _, _, tok in iter_bracket_tokens(part)]
        if not tokens:
            continue
        ref = parse_field_reference(part.strip())
        if len(tokens) == 2 and ref.datasource is not None:
            dimensions.append(ref.field_name)
        else:
            dimensions.extend(tokens)
    return dimensions


def detect_aggregation(expression: str) -> str | None:
    """Leading aggregation function of *expression*, upper-cased, or None."""
    m = _AGG_RE.match(expression.strip())
    return m.group(1).upper() if m else None


def parse_lod_expressions(formula: str, caption: str | None = None) -> list[LodExpression]:
    """Parse every top-level scoped-aggregation block in *formula*.

    Blocks nested in an aggregated expression are attached to their parent
    as ``nested_expressions`` rather than returned at the top level.
    Unbalanced or colon-less blocks are skipped.
    """
    results: list[LodExpression] = []
    resume = 0
    for start, m in _opening_markers(formula):
        if start < resume:
            continue  # inside a block already parsed
        close = _find_matching_brace(formula, start)
        if close < 0:
            logger.debug("Unbalanced scoped block at %d in %r", start, formula)
            continue
        lod = _parse_block(formula, m, close, caption)
        if lod is None:
            continue
        results.append(lod)
        resume = close + 1
    return results


def _parse_block(
    formula: str, m: re.Match[str], close: int, caption: str | None,
) -> LodExpression | None:
    body = formula[m.end():close]
    parts = _split_top_level(body, ":")
    if len(parts) < 2:
        logger.debug("Scoped block without ':' in %r", formula[m.start():close + 1])
        return None
    dims_text = parts[0]
    expression = body[len(dims_text) + 1:].strip()

    has_nested = contains_lod_expression(expression)
    nested = tuple(parse_lod_expressions(expression, caption)) if has_nested else ()

    return LodExpression(
        kind=m.group(1).upper(),
        dimensions=tuple(parse_dimensions(dims_text)),
        aggregation=detect_aggregation(expression),
        expression=expression,
        has_nested_scope=has_nested,
        nested_expressions=nested,
        caption=caption,
        start=m.start(),
        end=close + 1,
    )


# ---------------------------------------------------------------------------
# Classification and explanation
# ---------------------------------------------------------------------------


def _has_entity_dimension(dimensions: tuple[str, ...] | list[str]) -> bool:
    return any(_ENTITY_RE.search(d) for d in dimensions)


def _has_temporal_dimension(dimensions: tuple[str, ...] | list[str]) -> bool:
    return any(_TEMPORAL_RE.search(d) for d in dimensions)


def categorize(lod: LodExpression) -> str:
    """Best-effort usage pattern of a block, one of :data:`PATTERNS`."""
    if lod.kind != "FIXED":
        return OTHER
    if not lod.dimensions:
        return PERCENT_OF_TOTAL
    if _has_entity_dimension(lod.dimensions) and lod.aggregation in ("MIN", "MAX"):
        return CUSTOMER_COHORT
    if lod.aggregation == "SUM" and _has_temporal_dimension(lod.dimensions):
        return RUNNING_TOTAL
    return OTHER


def explain(lod: LodExpression) -> LodExplanation:
    """Plain-language explanation of what a block computes."""
    dim_list = ", ".join(lod.dimensions) if lod.dimensions else "no dimensions"
    if lod.aggregation:
        agg_expr = f"{lod.aggregation}(...)"
    else:
        agg_expr = lod.expression[:50] + ("..." if len(lod.expression) > 50 else "")

    if lod.kind == "FIXED":
        if not lod.dimensions:
            return LodExplanation(
                brief=f"Table-level calculation: {agg_expr}",
                detailed=(
                    "Computes the expression over the entire table, ignoring every "
                    "dimension in the view. Every row gets the same value, which makes "
                    "it the usual building block for grand totals and percent of total."
                ),
                use_case="Percent of total, grand totals, table-level benchmarks",
            )
        if _has_entity_dimension(lod.dimensions):
            return LodExplanation(
                brief=f"Customer-level {lod.aggregation or 'calculation'} by {dim_list}",
                detailed=(
                    f"Computes the expression once per {dim_list}, whatever other "
                    "dimensions are in the view. The value stays stable when drilling down."
                ),
                use_case="Customer lifetime value, first purchase date, cohort analysis",
            )
        return LodExplanation(
            brief=f"Fixed calculation at {dim_list} level",
            detailed=(
                f"Computes the expression at the level of {dim_list}. The result is "
                f"constant for each combination of {dim_list} and ignores other "
                "dimensions in the view."
            ),
            use_case="Values that must stay at a specific granularity",
        )
    if lod.kind == "INCLUDE":
        return LodExplanation(
            brief=f"Include {dim_list} in calculation",
            detailed=(
                f"Computes the expression with {dim_list} added to the view's "
                "dimensions, i.e. at a finer granularity than the visualization."
            ),
            use_case="Aggregating detailed values upward (e.g. average of daily totals)",
        )
    return LodExplanation(
        brief=f"Exclude {dim_list} from calculation",
        detailed=(
            f"Computes the expression with {dim_list} removed from the view's "
            "dimensions, i.e. at a coarser granularity than the visualization."
        ),
        use_case="Subtotals, group-level averages, removing a dimension's effect",
    )


LOD_REFERENCE: dict = {
    "introduction": (
        "Level of Detail expressions compute an aggregate at a granularity that is "
        "independent of the view, by fixing, adding or removing dimensions."
    ),
    "typeSummary": {
        "fixed": (
            "FIXED computes at the listed dimensions regardless of the view. With no "
            "dimensions it computes over the whole table."
        ),
        "include": "INCLUDE adds dimensions to the view's level of detail (finer).",
        "exclude": "EXCLUDE removes dimensions from the view's level of detail (coarser).",
    },
    "tips": [
        "FIXED is computed before dimension filters, except context filters",
        "INCLUDE and EXCLUDE are computed after dimension filters",
        "{FIXED : SUM([Sales])} is the usual denominator for percent of total",
        "{FIXED [Customer] : MIN([Order Date])} gives each customer's first purchase",
        "Nested blocks work but are expensive to compute",
    ],
}
