"""Tests for twbgraph.calc field extraction."""

from __future__ import annotations

import pytest
from twbgraph._tree import Column, Datasource, ValueRange, WorkbookTree
from twbgraph.calc._fields import extract_fields
from twbgraph.calc._protocol import AnalysisOptions


def _superstore() -> WorkbookTree:
    return WorkbookTree([
        Datasource("Parameters", columns=[
            Column("[Parameter 1]", caption="Growth Rate", datatype="real", value="0.05",
                   domain_type="range", value_range=ValueRange("0", "1", "0.01")),
            Column("[Parameter 2]", caption="Top N", datatype="integer", value="10",
                   members=["5", "10", "20"], domain_type="list"),
        ]),
        Datasource("Superstore", columns=[
            Column("[Sales]", datatype="real", role="measure"),
            Column("[Region]", datatype="string", role="dimension"),
            Column("[Calculation_1]", caption="Profit Ratio",
                   formula="SUM([Profit]) / SUM([Sales])"),
            Column("[Calculation_2]", caption="Projected Sales", hidden=True,
                   formula="[Sales] * (1 + [Parameters].[Parameter 1])"),
        ]),
    ])


class TestClassification:
    def test_calculations_keyed_by_caption(self) -> None:
        fields = extract_fields(_superstore())
        assert list(fields.calculations) == ["Profit Ratio", "Projected Sales"]
        node = fields.calculations["Profit Ratio"]
        assert node.name == "Calculation_1"
        assert node.datasource == "Superstore"
        assert node.all_references == ["Profit", "Sales"]
        assert node.depth == -1

    def test_source_fields(self) -> None:
        fields = extract_fields(_superstore())
        assert [f.name for f in fields.source_fields] == ["Sales", "Region"]
        assert fields.source_fields[0].role == "measure"
        assert "Sales" in fields.source_names

    def test_parameters_keyed_by_caption_and_name(self) -> None:
        fields = extract_fields(_superstore())
        assert fields.parameter_names == {"Growth Rate", "Parameter 1", "Top N", "Parameter 2"}
        top_n = fields.parameters[1]
        assert top_n.caption == "Top N"
        assert top_n.current_value == "10"
        assert top_n.allowed_values == ("5", "10", "20")
        assert fields.parameters[0].value_range == ("0", "1", "0.01")

    def test_parameters_not_calculations(self) -> None:
        tree = WorkbookTree([
            Datasource("Parameters", columns=[
                Column("[Parameter 1]", caption="Threshold", formula="100"),
            ]),
        ])
        fields = extract_fields(tree)
        assert fields.calculations == {}
        assert fields.parameter_names == {"Threshold", "Parameter 1"}

    def test_caption_falls_back_to_name(self) -> None:
        tree = WorkbookTree([Datasource("DS", columns=[Column("[Margin]", formula="[A]-[B]")])])
        fields = extract_fields(tree)
        assert "Margin" in fields.calculations

    def test_empty_tree(self) -> None:
        fields = extract_fields(WorkbookTree())
        assert fields.calculations == {}
        assert fields.summary()["calculatedFieldCount"] == 0


class TestOptions:
    def test_hidden_still_registered(self) -> None:
        fields = extract_fields(_superstore(), AnalysisOptions(include_hidden=False))
        assert list(fields.calculations) == ["Profit Ratio", "Projected Sales"]
        assert fields.lookup_calc("Calculation_2").hidden

    def test_summary_counts_hidden(self) -> None:
        summary = extract_fields(_superstore()).summary()
        assert summary == {
            "calculatedFieldCount": 2,
            "parameterCount": 2,
            "sourceFieldCount": 2,
            "hiddenFieldCount": 1,
        }

    def test_unknown_duplicate_policy(self) -> None:
        with pytest.raises(ValueError, match="duplicate caption policy"):
            extract_fields(_superstore(), AnalysisOptions(duplicate_captions="merge"))

    def test_functions_used(self) -> None:
        used = extract_fields(_superstore()).functions_used()
        assert used["Profit Ratio"] == ["SUM"]
        assert used["Projected Sales"] == []


def _duplicated() -> WorkbookTree:
    return WorkbookTree([
        Datasource("Orders", columns=[Column("[Calc_A]", caption="Margin", formula="[Profit]")]),
        Datasource("Returns", columns=[Column("[Calc_B]", caption="Margin", formula="[Refund]")]),
    ])


class TestDuplicateCaptions:
    def test_qualify(self) -> None:
        fields = extract_fields(_duplicated())
        assert list(fields.calculations) == ["Margin", "Margin (Returns)"]
        assert fields.lookup_calc("Calc_B").caption == "Margin (Returns)"
        assert fields.lookup_calc("Margin").name == "Calc_A"

    def test_qualify_same_datasource_keeps_all(self) -> None:
        tree = WorkbookTree([Datasource("DS", columns=[
            Column("[C1]", caption="Dup", formula="[Sales]"),
            Column("[C2]", caption="Dup", formula="[Cost]"),
            Column("[C3]", caption="Dup", formula="[Profit]"),
        ])])
        fields = extract_fields(tree)
        assert list(fields.calculations) == ["Dup", "Dup (DS)", "Dup (DS #2)"]
        assert fields.lookup_calc("C3").formula == "[Profit]"
        assert fields.lookup_calc("C2").caption == "Dup (DS)"

    def test_keep_first(self) -> None:
        fields = extract_fields(_duplicated(), AnalysisOptions(duplicate_captions="first"))
        assert list(fields.calculations) == ["Margin"]
        assert fields.calculations["Margin"].name == "Calc_A"
        assert fields.lookup_calc("Calc_B").name == "Calc_A"

    def test_keep_last(self) -> None:
        fields = extract_fields(_duplicated(), AnalysisOptions(duplicate_captions="last"))
        assert list(fields.calculations) == ["Margin"]
        assert fields.calculations["Margin"].name == "Calc_B"
        assert fields.lookup_calc("Calc_A") is None

    def test_duplicate_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING", logger="twbgraph.calc._fields"):
            extract_fields(_duplicated())
        assert "Duplicate calculation caption 'Margin'" in caplog.text
