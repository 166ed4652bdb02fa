"""Field extraction: split datasource columns into calculations, parameters and source fields."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from twbgraph.calc._parser import extract_references, parse_functions, strip_brackets

if TYPE_CHECKING:
    from twbgraph._tree import Column, WorkbookTree
    from twbgraph.calc._protocol import AnalysisOptions

logger = logging.getLogger(__name__)

DUPLICATE_POLICIES = ("first", "last", "qualify")


@dataclass
class CalcNode:
    """A calculated field and its resolved edges."""

    name: str
    caption: str
    formula: str
    datasource: str
    hidden: bool = False
    all_references: list[str] = field(default_factory=list)
    depends_on_calcs: list[str] = field(default_factory=list)
    depends_on_source: list[str] = field(default_factory=list)
    depends_on_params: list[str] = field(default_factory=list)
    used_by: list[str] = field(default_factory=list)
    depth: int = -1  # -1 until the depth pass runs
    is_circular: bool = False

    @property
    def is_root(self) -> bool:
        return not self.depends_on_calcs

    @property
    def is_leaf(self) -> bool:
        return not self.used_by


@dataclass(frozen=True)
class Parameter:
    name: str
    caption: str
    datatype: str = "unknown"
    current_value: str = ""
    allowed_values: tuple[str, ...] = ()
    domain_type: str = ""
    value_range: tuple[str, str, str] | None = None  # (min, max, granularity)


@dataclass(frozen=True)
class SourceField:
    name: str
    caption: str
    datasource: str
    datatype: str = "unknown"
    role: str = "unknown"


@dataclass
class FieldSet:
    """Everything the extractor found, with symbol lookups.

    ``calculations`` is keyed by caption (the node identity). ``calc_index``
    maps every caption and internal name to the owning key, so references can
    be resolved with a single dict lookup.
    """

    calculations: dict[str, CalcNode] = field(default_factory=dict)
    calc_index: dict[str, str] = field(default_factory=dict)
    parameters: list[Parameter] = field(default_factory=list)
    parameter_names: set[str] = field(default_factory=set)
    source_fields: list[SourceField] = field(default_factory=list)
    source_names: set[str] = field(default_factory=set)

    def lookup_calc(self, symbol: str) -> CalcNode | None:
        key = self.calc_index.get(symbol)
        return self.calculations.get(key) if key is not None else None

    def summary(self) -> dict[str, int]:
        return {
            "calculatedFieldCount": len(self.calculations),
            "parameterCount": len(self.parameters),
            "sourceFieldCount": len(self.source_fields),
            "hiddenFieldCount": sum(1 for n in self.calculations.values() if n.hidden),
        }

    def functions_used(self) -> dict[str, list[str]]:
        """Caption -> function names called by its formula."""
        return {caption: parse_functions(n.formula) for caption, n in self.calculations.items()}


def extract_fields(tree: WorkbookTree, options: AnalysisOptions | None = None) -> FieldSet:
    """Walk every datasource and classify its columns.

    Hidden calculations are always registered so references to them resolve
    as calculation edges. ``include_hidden`` only filters report listings.
    """
    policy = "qualify" if options is None else options.duplicate_captions
    if policy not in DUPLICATE_POLICIES:
        raise ValueError(f"Unknown duplicate caption policy: {policy!r}")

    fields = FieldSet()
    for ds in tree:
        if ds.is_parameters:
            for col in ds.columns:
                _add_parameter(fields, col)
            continue

        for col in ds.columns:
            name = strip_brackets(col.name)
            caption = col.caption or name
            if not col.is_calculation:
                fields.source_fields.append(SourceField(
                    name=name,
                    caption=caption,
                    datasource=ds.name,
                    datatype=col.datatype,
                    role=col.role,
                ))
                fields.source_names.add(caption)
                fields.source_names.add(name)
                continue
            node = CalcNode(
                name=name,
                caption=caption,
                formula=col.formula or "",
                datasource=ds.name,
                hidden=col.hidden,
                all_references=extract_references(col.formula or ""),
            )
            _add_calculation(fields, node, policy)

    logger.debug(
        "Extracted %d calculations, %d parameters, %d source fields",
        len(fields.calculations), len(fields.parameters), len(fields.source_fields),
    )
    return fields


def _add_parameter(fields: FieldSet, col: Column) -> None:
    name = strip_brackets(col.name)
    caption = col.caption or name
    if not caption:
        return
    rng = col.value_range
    fields.parameters.append(Parameter(
        name=name,
        caption=caption,
        datatype=col.datatype,
        current_value=col.value,
        allowed_values=tuple(col.members),
        domain_type=col.domain_type,
        value_range=(rng.min, rng.max, rng.granularity) if rng is not None else None,
    ))
    fields.parameter_names.add(caption)
    if name:
        fields.parameter_names.add(name)


def _add_calculation(fields: FieldSet, node: CalcNode, policy: str) -> None:
    existing = fields.calculations.get(node.caption)
    if existing is not None:
        logger.warning(
            "Duplicate calculation caption %r in %s (first seen in %s), policy=%s",
            node.caption, node.datasource, existing.datasource, policy,
        )
        if policy == "first":
            _index(fields, node.name, existing.caption)
            return
        if policy == "qualify":
            base = f"{node.caption} ({node.datasource}"
            key = f"{base})"
            suffix = 2
            while key in fields.calculations:
                key = f"{base} #{suffix})"
                suffix += 1
            node.caption = key
            fields.calculations[node.caption] = node
            _index(fields, node.caption, node.caption)
            _index(fields, node.name, node.caption)
            return
        # last: the earlier entry and every symbol it owned are dropped
        del fields.calculations[existing.caption]
        fields.calc_index = {k: v for k, v in fields.calc_index.items() if v != existing.caption}

    fields.calculations[node.caption] = node
    fields.calc_index[node.caption] = node.caption
    _index(fields, node.name, node.caption)


def _index(fields: FieldSet, symbol: str, key: str) -> None:
    """Register *symbol* for *key* unless another calculation already owns it."""
    if symbol and symbol not in fields.calc_index:
        fields.calc_index[symbol] = key
