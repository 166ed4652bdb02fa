"""Workbook tree: the already-deserialized datasource/column structure.

The analyzer never reads files. It consumes a :class:`WorkbookTree` built by
the caller, either directly or via :meth:`WorkbookTree.from_mapping` from the
dict an attribute-prefixed XML-to-dict converter produces::

    {"workbook": {"datasources": {"datasource": [
        {"@name": "Sales", "column": [
            {"@name": "[Profit Ratio]", "@caption": "Profit Ratio",
             "calculation": {"@formula": "SUM([Profit]) / SUM([Sales])"}},
        ]},
    ]}}}
"""

from __future__ import annotations

import html
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

PARAMETERS_DATASOURCE = "Parameters"

_ATTR_PREFIXES = ("@", "@_")


@dataclass(frozen=True)
class ValueRange:
    """Range domain of a parameter."""

    min: str = ""
    max: str = ""
    granularity: str = ""


@dataclass
class Column:
    """One column of a datasource. A column with a formula is a calculation."""

    name: str
    caption: str | None = None
    hidden: bool = False
    formula: str | None = None
    datatype: str = "unknown"
    role: str = "unknown"
    value: str = ""  # current value (parameters only)
    members: list[str] = field(default_factory=list)  # allowed values (parameters only)
    domain_type: str = ""
    value_range: ValueRange | None = None

    @property
    def is_calculation(self) -> bool:
        return bool(self.formula)


@dataclass
class Datasource:
    name: str
    caption: str | None = None
    columns: list[Column] = field(default_factory=list)

    @property
    def is_parameters(self) -> bool:
        return self.name == PARAMETERS_DATASOURCE


@dataclass
class WorkbookTree:
    """Ordered datasources of one workbook."""

    datasources: list[Datasource] = field(default_factory=list)

    def __iter__(self) -> Iterator[Datasource]:
        return iter(self.datasources)

    def __len__(self) -> int:
        return len(self.datasources)

    @property
    def datasource_names(self) -> list[str]:
        return [ds.name for ds in self.datasources]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WorkbookTree:
        """Build a tree from an XML-to-dict mapping.

        Accepts ``@name`` (xmltodict) and ``@_name`` (fast-xml-parser) attribute
        keys, single children given as a dict instead of a list, and an
        optional top-level ``workbook`` key.
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"Workbook tree must be a mapping, got {type(data).__name__}")

        root = data.get("workbook", data)
        if not isinstance(root, Mapping):
            raise TypeError("'workbook' element must be a mapping")

        container = root.get("datasources")
        raw_datasources = ensure_list(container.get("datasource")) if isinstance(container, Mapping) else []

        tree = cls()
        for raw in raw_datasources:
            if not isinstance(raw, Mapping):
                logger.debug("Skipping non-mapping datasource: %r", raw)
                continue
            tree.datasources.append(_datasource_from_mapping(raw))
        return tree


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------


def ensure_list(value: Any) -> list[Any]:
    """Normalize an XML-to-dict child (missing, single or repeated) to a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _attr(node: Mapping[str, Any], name: str, default: str = "") -> str:
    for prefix in _ATTR_PREFIXES:
        value = node.get(prefix + name)
        if value is not None:
            return str(value)
    return default


def _datasource_from_mapping(raw: Mapping[str, Any]) -> Datasource:
    name = _attr(raw, "name") or _attr(raw, "caption")
    caption = _attr(raw, "caption") or None
    ds = Datasource(name=name, caption=caption)
    for col in ensure_list(raw.get("column")):
        if not isinstance(col, Mapping):
            logger.debug("Skipping non-mapping column in %s: %r", name, col)
            continue
        ds.columns.append(_column_from_mapping(col))
    return ds


def _column_from_mapping(raw: Mapping[str, Any]) -> Column:
    formula: str | None = None
    calculation = raw.get("calculation")
    if isinstance(calculation, Mapping):
        text = _attr(calculation, "formula")
        if text:
            formula = html.unescape(text)

    members: list[str] = []
    container = raw.get("members")
    if isinstance(container, Mapping):
        for member in ensure_list(container.get("member")):
            if not isinstance(member, Mapping):
                continue
            alias = _attr(member, "alias") or _attr(member, "value")
            alias = html.unescape(alias)
            if alias and alias not in members:
                members.append(alias)

    value_range: ValueRange | None = None
    raw_range = raw.get("range")
    if isinstance(raw_range, Mapping):
        value_range = ValueRange(
            min=_attr(raw_range, "min"),
            max=_attr(raw_range, "max"),
            granularity=_attr(raw_range, "granularity"),
        )

    return Column(
        name=_attr(raw, "name"),
        caption=_attr(raw, "caption") or None,
        hidden=_attr(raw, "hidden").lower() == "true",
        formula=formula,
        datatype=_attr(raw, "datatype", "unknown"),
        role=_attr(raw, "role", "unknown"),
        value=html.unescape(_attr(raw, "value")),
        members=members,
        domain_type=_attr(raw, "param-domain-type"),
        value_range=value_range,
    )
