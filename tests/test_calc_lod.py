"""Tests for twbgraph.calc scoped-aggregation parsing and classification."""

from __future__ import annotations

from twbgraph.calc._lod import (
    CUSTOMER_COHORT,
    OTHER,
    PERCENT_OF_TOTAL,
    RUNNING_TOTAL,
    categorize,
    contains_lod_expression,
    detect_aggregation,
    explain,
    parse_dimensions,
    parse_lod_expressions,
)


def _one(formula: str):
    lods = parse_lod_expressions(formula)
    assert len(lods) == 1
    return lods[0]


class TestParse:
    def test_fixed_customer_min(self) -> None:
        lod = _one("{FIXED [Customer] : MIN([Order Date])}")
        assert lod.kind == "FIXED"
        assert lod.dimensions == ("Customer",)
        assert lod.aggregation == "MIN"
        assert lod.expression == "MIN([Order Date])"
        assert not lod.has_nested_scope
        assert categorize(lod) == CUSTOMER_COHORT

    def test_table_scoped(self) -> None:
        lod = _one("{FIXED : SUM([Sales])}")
        assert lod.dimensions == ()
        assert lod.is_table_scoped
        assert categorize(lod) == PERCENT_OF_TOTAL

    def test_nested(self) -> None:
        lod = _one("{FIXED [Region] : SUM({FIXED [Customer] : SUM([Sales])})}")
        assert lod.dimensions == ("Region",)
        assert lod.aggregation == "SUM"
        assert lod.has_nested_scope
        assert len(lod.nested_expressions) == 1
        inner = lod.nested_expressions[0]
        assert inner.dimensions == ("Customer",)
        assert inner.expression == "SUM([Sales])"

    def test_multiple_dimensions(self) -> None:
        lod = _one("{INCLUDE [Region], [Segment] : AVG([Sales])}")
        assert lod.kind == "INCLUDE"
        assert lod.dimensions == ("Region", "Segment")
        assert lod.aggregation == "AVG"

    def test_qualified_dimension(self) -> None:
        lod = _one("{EXCLUDE [Superstore].[none:Sub-Category:nk] : SUM([Sales])}")
        assert lod.kind == "EXCLUDE"
        assert lod.dimensions == ("Sub-Category",)

    def test_case_insensitive(self) -> None:
        lod = _one("{fixed [Region]:countd([Order ID])}")
        assert lod.kind == "FIXED"
        assert lod.aggregation == "COUNTD"

    def test_several_blocks_in_formula(self) -> None:
        lods = parse_lod_expressions(
            "SUM([Sales]) / SUM({FIXED : SUM([Sales])}) - {EXCLUDE [Region] : AVG([Profit])}"
        )
        assert [lod.kind for lod in lods] == ["FIXED", "EXCLUDE"]
        assert lods[0].start < lods[1].start

    def test_span_covers_block(self) -> None:
        formula = "1 + {FIXED : SUM([Sales])} * 2"
        lod = _one(formula)
        assert formula[lod.start:lod.end] == "{FIXED : SUM([Sales])}"

    def test_colon_and_braces_inside_field_names(self) -> None:
        lod = _one("{FIXED [Time: Bucket], [Odd {name}] : MAX([Sales])}")
        assert lod.dimensions == ("Time: Bucket", "Odd {name}")
        assert lod.aggregation == "MAX"

    def test_no_aggregation(self) -> None:
        lod = _one("{FIXED [Region] : [Sales] * 2}")
        assert lod.aggregation is None
        assert categorize(lod) == OTHER

    def test_caption_attached(self) -> None:
        lods = parse_lod_expressions("{FIXED : SUM({INCLUDE [A] : SUM([B])})}", caption="Share")
        assert lods[0].caption == "Share"
        assert lods[0].nested_expressions[0].caption == "Share"


class TestMalformed:
    def test_no_blocks(self) -> None:
        assert parse_lod_expressions("SUM([Sales])") == []
        assert parse_lod_expressions("") == []

    def test_unbalanced_block_skipped(self) -> None:
        assert parse_lod_expressions("{FIXED [Region] : SUM([Sales])") == []

    def test_missing_colon_skipped(self) -> None:
        assert parse_lod_expressions("{FIXED [Region] SUM([Sales])}") == []

    def test_keyword_inside_string_ignored(self) -> None:
        assert parse_lod_expressions('"{FIXED [A] : SUM([B])}"') == []

    def test_unknown_keyword_not_a_block(self) -> None:
        assert parse_lod_expressions("{FIXEDX [A] : SUM([B])}") == []

    def test_unclosed_second_block(self) -> None:
        lod = _one("{FIXED [A] : MAX([x])} + {INCLUDE [B] : SUM([C])")
        assert lod.kind == "FIXED"

    def test_brace_inside_string_literal(self) -> None:
        lod = _one('{FIXED [A] : MAX(IF [x] = "}" THEN 1 END)}')
        assert lod.expression == 'MAX(IF [x] = "}" THEN 1 END)'


class TestAggregation:
    def test_vocabulary(self) -> None:
        for name in ("SUM", "AVG", "COUNT", "COUNTD", "MIN", "MAX", "MEDIAN",
                     "ATTR", "STDEV", "STDEVP", "VAR", "VARP"):
            assert detect_aggregation(f"{name}([x])") == name

    def test_space_before_paren(self) -> None:
        assert detect_aggregation("  sum ([x])") == "SUM"

    def test_not_leading(self) -> None:
        assert detect_aggregation("[x] + SUM([y])") is None
        assert detect_aggregation("SUMMARY([x])") is None


class TestDimensions:
    def test_empty(self) -> None:
        assert parse_dimensions("   ") == []

    def test_commas_in_order(self) -> None:
        assert parse_dimensions(" [B], [A] ") == ["B", "A"]


class TestCategorize:
    def test_running_total(self) -> None:
        lod = _one("{FIXED [Order Month] : SUM([Sales])}")
        assert categorize(lod) == RUNNING_TOTAL

    def test_cohort_requires_min_or_max(self) -> None:
        lod = _one("{FIXED [Customer Name] : SUM([Sales])}")
        assert categorize(lod) == OTHER

    def test_cohort_fuzzy_vocabulary(self) -> None:
        lod = _one("{FIXED [Account ID] : MAX([Signup Date])}")
        assert categorize(lod) == CUSTOMER_COHORT

    def test_include_is_other(self) -> None:
        assert categorize(_one("{INCLUDE : SUM([Sales])}")) == OTHER

    def test_exclude_with_dates_is_other(self) -> None:
        assert categorize(_one("{EXCLUDE [Order Date] : SUM([Sales])}")) == OTHER


class TestExplain:
    def test_table_level(self) -> None:
        exp = explain(_one("{FIXED : SUM([Sales])}"))
        assert exp.brief == "Table-level calculation: SUM(...)"
        assert "grand totals" in exp.use_case.lower()

    def test_customer_level(self) -> None:
        exp = explain(_one("{FIXED [Customer] : MIN([Order Date])}"))
        assert exp.brief == "Customer-level MIN by Customer"

    def test_fixed_other(self) -> None:
        exp = explain(_one("{FIXED [Region], [Segment] : AVG([Sales])}"))
        assert exp.brief == "Fixed calculation at Region, Segment level"

    def test_include_exclude(self) -> None:
        assert explain(_one("{INCLUDE [Day] : SUM([Sales])}")).brief == "Include Day in calculation"
        assert explain(_one("{EXCLUDE [Region] : SUM([Sales])}")).brief == (
            "Exclude Region from calculation"
        )

    def test_long_expression_truncated(self) -> None:
        body = "[A] + " * 20 + "[B]"
        exp = explain(_one(f"{{FIXED : {body}}}"))
        assert exp.brief.endswith("...")


class TestContains:
    def test_contains(self) -> None:
        assert contains_lod_expression("x + { FIXED : SUM([y])}")
        assert not contains_lod_expression("SUM([y])")
        assert not contains_lod_expression("[{FIXED weird name}]")
