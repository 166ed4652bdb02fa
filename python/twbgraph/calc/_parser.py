"""Formula tokenizer: bracketed field reference extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass

from twbgraph._tree import PARAMETERS_DATASOURCE

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

# [Datasource].[prefix:FieldName:suffix] or [Datasource].[FieldName]
_QUALIFIED_RE = re.compile(r"^\[?([^\]]+)\]?\.\[?([^\]]+)\]?$")

# Function names: SUM(...), DATEDIFF(...)
_FUNC_RE = re.compile(r"([A-Z][A-Z0-9_]*)\s*\(", re.IGNORECASE)

_QUOTES = ('"', "'")


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def skip_literal(formula: str, i: int) -> int:
    """Index just past the string literal or ``//`` comment starting at *i*.

    Returns *i* unchanged when nothing to skip starts there. An unterminated
    quote is not a literal.
    """
    ch = formula[i]
    if ch in _QUOTES:
        end = formula.find(ch, i + 1)
        return i if end < 0 else end + 1
    if formula.startswith("//", i):
        end = formula.find("\n", i)
        return len(formula) if end < 0 else end + 1
    return i


def iter_bracket_tokens(formula: str) -> list[tuple[int, int, str]]:
    """All ``[...]`` tokens outside literals as ``(start, end, inner_text)``.

    Left-to-right, single level: a ``[`` opens a token that runs to the next
    ``]``. An unclosed ``[`` ends the scan.
    """
    tokens: list[tuple[int, int, str]] = []
    i = 0
    length = len(formula)
    while i < length:
        skipped = skip_literal(formula, i)
        if skipped != i:
            i = skipped
            continue
        if formula[i] == "[":
            end = formula.find("]", i + 1)
            if end < 0:
                break
            tokens.append((i, end + 1, formula[i + 1 : end]))
            i = end + 1
            continue
        i += 1
    return tokens


def _strip_literals(formula: str) -> str:
    """Drop string literals and comments so names inside them aren't matched."""
    out: list[str] = []
    i = 0
    while i < len(formula):
        skipped = skip_literal(formula, i)
        if skipped != i:
            out.append(" ")
            i = skipped
            continue
        out.append(formula[i])
        i += 1
    return "".join(out)


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def extract_references(formula: str) -> list[str]:
    """Ordered, de-duplicated bracket references in *formula*.

    ``[Parameters]`` only qualifies a parameter name and is never returned.
    """
    refs: list[str] = []
    seen: set[str] = set()
    for _, _, ref in iter_bracket_tokens(formula):
        if not ref or ref == PARAMETERS_DATASOURCE:
            continue
        if ref not in seen:
            refs.append(ref)
            seen.add(ref)
    return refs


def parse_functions(formula: str) -> list[str]:
    """Extract all function names used in a formula."""
    clean = _strip_literals(formula)
    # Bracketed field names can look like calls ("[Rate (USD)]")
    clean = re.sub(r"\[[^\]]*\]", " ", clean)
    funcs: list[str] = []
    seen: set[str] = set()
    for m in _FUNC_RE.finditer(clean):
        name = m.group(1).upper()
        if name not in seen:
            funcs.append(name)
            seen.add(name)
    return funcs


def strip_brackets(name: str) -> str:
    """``"[Calculation_1]"`` -> ``"Calculation_1"``."""
    return name.replace("[", "").replace("]", "")


# ---------------------------------------------------------------------------
# Qualified reference decomposition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldReference:
    """A decomposed ``[Datasource].[prefix:FieldName:suffix]`` reference."""

    datasource: str | None
    prefix: str | None
    field_name: str
    suffix: str | None


def parse_field_reference(reference: str) -> FieldReference:
    """Split a qualified reference into datasource, prefix, name and suffix.

    Falls back to a bare field name when the qualified shape doesn't match.
    """
    cleaned = reference
    if cleaned.startswith("["):
        cleaned = cleaned[1:]
    if cleaned.endswith("]"):
        cleaned = cleaned[:-1]

    m = _QUALIFIED_RE.match(cleaned)
    if m:
        datasource, field_part = m.group(1), m.group(2)
        parts = field_part.split(":")
        if len(parts) == 3:
            return FieldReference(
                datasource=datasource,
                prefix=parts[0] or None,
                field_name=parts[1],
                suffix=parts[2] or None,
            )
        return FieldReference(datasource, None, field_part, None)

    return FieldReference(None, None, cleaned, None)


def field_name(reference: str) -> str:
    """Human-readable field name of a (possibly qualified) reference."""
    return parse_field_reference(reference).field_name
