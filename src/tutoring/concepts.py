"""
SQL Concept Catalogue.

The fixed concept set that coverage is reported over, plus everything needed
to attribute an interaction to concepts:
- explicit error-subtype -> concept table (consulted first)
- text pattern rules, used when a subtype is unmapped
- normalization of raw SQL engine error messages to canonical subtypes
- three-step progressive hint guidance per subtype
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import assert_never

from src.tutoring.events import (
    CodeChangeEvent,
    ErrorEvent,
    ExecutionEvent,
    ExplanationViewEvent,
    HintRequestEvent,
    HintViewEvent,
    InteractionEvent,
    TextbookAddEvent,
    TextbookUpdateEvent,
)


@dataclass(frozen=True)
class ConceptNode:
    """A SQL concept learners are assessed on."""

    id: str
    name: str
    description: str
    prerequisites: tuple[str, ...]
    difficulty: str


CONCEPTS: tuple[ConceptNode, ...] = (
    ConceptNode(
        "select-basic", "Basic SELECT",
        "Retrieving data from a single table using SELECT statement", (), "beginner",
    ),
    ConceptNode(
        "where-clause", "WHERE Clause",
        "Filtering rows based on conditions", ("select-basic",), "beginner",
    ),
    ConceptNode(
        "joins", "JOIN Operations",
        "Combining data from multiple tables", ("select-basic", "where-clause"), "intermediate",
    ),
    ConceptNode(
        "aggregation", "Aggregate Functions",
        "Using COUNT, SUM, AVG, MAX, MIN with GROUP BY", ("select-basic",), "intermediate",
    ),
    ConceptNode(
        "subqueries", "Subqueries",
        "Using nested queries for complex filtering", ("select-basic", "where-clause"), "advanced",
    ),
    ConceptNode(
        "order-by", "ORDER BY Clause",
        "Sorting query results", ("select-basic",), "beginner",
    ),
)

CONCEPT_IDS: tuple[str, ...] = tuple(c.id for c in CONCEPTS)
_CONCEPTS_BY_ID = {c.id: c for c in CONCEPTS}

DEFAULT_SUBTYPE = "incomplete query"

SUBTYPE_CONCEPTS: dict[str, tuple[str, ...]] = {
    "aggregation misuse": ("aggregation",),
    "ambiguous reference": ("joins",),
    "constraint violation": ("where-clause",),
    "data type mismatch": ("where-clause",),
    "incomplete query": ("select-basic",),
    "incorrect distinct usage": ("select-basic",),
    "incorrect group by usage": ("aggregation",),
    "incorrect having clause": ("aggregation",),
    "incorrect join usage": ("joins",),
    "incorrect order by usage": ("order-by",),
    "incorrect select usage": ("select-basic",),
    "incorrect wildcard usage": ("select-basic",),
    "inefficient query": ("select-basic",),
    "missing commas": ("select-basic",),
    "missing quotes": ("select-basic",),
    "missing semicolons": ("select-basic",),
    "misspelling": ("where-clause",),
    "non-standard operators": ("where-clause",),
    "operator misuse": ("where-clause",),
    "undefined column": ("select-basic",),
    "undefined function": ("aggregation",),
    "undefined table": ("joins",),
    "unmatched brackets": ("where-clause",),
    "wrong positioning": ("order-by",),
}

SUBTYPE_ALIASES: dict[str, str] = {
    "unknown column": "undefined column",
    "no such column": "undefined column",
    "column not found": "undefined column",
    "unknown table": "undefined table",
    "no such table": "undefined table",
    "table not found": "undefined table",
    "unknown function": "undefined function",
    "no such function": "undefined function",
    "function not found": "undefined function",
    "ambiguous column": "ambiguous reference",
    "ambiguous table": "ambiguous reference",
    "ambiguous identifier": "ambiguous reference",
}

# Order matters only for the output order of inferred concepts.
CONCEPT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("subqueries", re.compile(
        r"\bsubquery\b|\bnested query\b|\bexists\s*\(|\bin\s*\(\s*select\b|\(\s*select\b", re.I)),
    ("joins", re.compile(
        r"\bjoin\b|\bjoined\b|\bforeign key\b|\bambiguous\b|\btable alias\b", re.I)),
    ("aggregation", re.compile(
        r"\bgroup by\b|\bhaving\b|\baggregate\b|\bcount\s*\(|\bsum\s*\(|\bavg\s*\(|\bmax\s*\(|\bmin\s*\(",
        re.I)),
    ("order-by", re.compile(r"\border by\b|\bsort\b|\bascending\b|\bdescending\b", re.I)),
    ("where-clause", re.compile(
        r"\bwhere\b|\bfilter\b|\bcondition\b|\boperator\b|\bpredicate\b|\bcomparison\b", re.I)),
)

HINT_GUIDANCE: dict[str, tuple[str, str, str]] = {
    "incomplete query": (
        "Start by completing the missing part of your SQL statement.",
        "Check whether each clause is present and complete before running again.",
        "Build the query incrementally: SELECT -> FROM -> WHERE/JOIN/GROUP BY, validating each step.",
    ),
    "undefined table": (
        "The table reference is likely incorrect.",
        "Verify the exact table name from the schema and use that spelling.",
        "Match every table in your query to a real schema table, then retry.",
    ),
    "undefined column": (
        "One or more column names do not match the schema.",
        "Compare your selected/filtered columns against the exact column names in the table.",
        "Rewrite the query with only verified column names, then add extra fields one at a time.",
    ),
    "undefined function": (
        "A function in the query is not recognized.",
        "Replace unsupported function names with functions available in this SQL dialect.",
        "Confirm function signatures and test the function on a small query first.",
    ),
    "ambiguous reference": (
        "A column reference is ambiguous across multiple tables.",
        "Prefix overlapping columns with table names or aliases.",
        "Use explicit aliases throughout SELECT, WHERE, GROUP BY, and ORDER BY.",
    ),
    "wrong positioning": (
        "A clause appears in the wrong order.",
        "Reorder clauses to standard SQL order.",
        "Use a fixed skeleton (SELECT -> FROM -> JOIN -> WHERE -> GROUP BY -> HAVING -> ORDER BY).",
    ),
    "aggregation misuse": (
        "Your aggregate function or grouping logic needs adjustment.",
        "Check that all non-aggregated columns in SELECT appear in GROUP BY.",
        "Apply aggregates only to values you want to summarize, and ensure GROUP BY includes all other selected columns.",
    ),
    "data type mismatch": (
        "A value does not match the expected data type for this operation.",
        "Compare the column type with the value you are providing.",
        "Convert values to the correct type before comparison or insertion.",
    ),
    "incorrect distinct usage": (
        "DISTINCT may be unnecessary or incorrectly applied.",
        "Check if the columns are already unique or if removing duplicates is actually needed.",
        "Remove redundant DISTINCT and rely on unique keys or GROUP BY when appropriate.",
    ),
    "incorrect group by usage": (
        "The GROUP BY clause is missing or contains incorrect columns.",
        "Ensure every non-aggregated column in SELECT is included in GROUP BY.",
        "Refactor the query to group by the exact set of non-aggregated columns.",
    ),
    "incorrect having clause": (
        "HAVING is being used incorrectly or filters are in the wrong place.",
        "Use HAVING only for conditions on aggregate results; move row filters to WHERE.",
        "Validate that aggregate conditions reference grouped data correctly.",
    ),
    "incorrect join usage": (
        "The JOIN condition or type is incorrect.",
        "Verify the join keys exist in both tables and the join type matches your intent.",
        "Specify explicit ON conditions and prefer explicit JOIN syntax over comma joins.",
    ),
    "incorrect order by usage": (
        "ORDER BY columns or direction are incorrect.",
        "Check that the sorting columns exist in the result set and ASC/DESC is intended.",
        "Limit sorting to necessary columns and ensure the order aligns with the requirement.",
    ),
    "incorrect select usage": (
        "The SELECT clause is missing required columns or includes invalid ones.",
        "List only columns needed and ensure they exist in the source tables.",
        "Build the column list incrementally, validating each against the schema.",
    ),
    "incorrect wildcard usage": (
        "Wildcards (*) are used incorrectly or too broadly.",
        "Replace * with explicit column names for clarity and performance.",
        "Select only the columns your application actually needs.",
    ),
    "inefficient query": (
        "The query can be rewritten for better performance.",
        "Look for unnecessary subqueries, redundant joins, or missing indexes.",
        "Simplify the query structure and ensure filters are applied as early as possible.",
    ),
    "missing commas": (
        "A comma is missing between columns or table references.",
        "Review the SELECT or FROM list and insert commas between items.",
        "Format lists with one item per line to make missing commas obvious.",
    ),
    "missing quotes": (
        "String literals are missing required quotes.",
        "Wrap text values in single quotes and escape embedded quotes properly.",
        "Consistently quote all string literals and verify special characters are escaped.",
    ),
    "missing semicolons": (
        "A statement terminator may be missing.",
        "End each SQL statement with a semicolon for clarity.",
        "Use semicolons consistently, especially in multi-statement batches.",
    ),
    "misspelling": (
        "A keyword or identifier appears to be misspelled.",
        "Compare the spelling against the schema and SQL keywords.",
        "Use consistent naming conventions and verify against the database catalog.",
    ),
    "non-standard operators": (
        "An operator is not recognized or is non-standard.",
        "Replace with standard SQL operators (e.g., = instead of ==).",
        "Verify operator syntax in the target SQL dialect documentation.",
    ),
    "operator misuse": (
        "An operator is being used incorrectly for this context.",
        "Check that the operator fits the data types and logic of the comparison.",
        "Review operator precedence and use parentheses to clarify intent.",
    ),
    "unmatched brackets": (
        "Opening and closing brackets or parentheses do not match.",
        "Count brackets to locate the mismatch and ensure proper nesting.",
        "Balance every opening bracket with a corresponding closing bracket.",
    ),
}


def get_concept(concept_id: str) -> ConceptNode | None:
    return _CONCEPTS_BY_ID.get(concept_id)


def canonical_subtype(subtype: str | None) -> str | None:
    """
    Normalize a subtype label to its canonical name.

    Returns None for labels outside the known subtype table, so callers can
    fall back to text patterns instead of silently picking a default.
    """
    raw = (subtype or "").strip().lower()
    if not raw:
        return None
    aliased = SUBTYPE_ALIASES.get(raw, raw)
    return aliased if aliased in SUBTYPE_CONCEPTS else None


def infer_concepts_from_text(*texts: str | None) -> list[str]:
    """Apply the pattern rules to free text (error messages, subtype labels)."""
    corpus = " ".join(t for t in texts if t)
    if not corpus:
        return []
    return [concept_id for concept_id, pattern in CONCEPT_PATTERNS if pattern.search(corpus)]


def concepts_for_subtype(subtype: str | None, text: str | None = None) -> list[str]:
    """Subtype table first, then pattern rules over the subtype label and text."""
    canonical = canonical_subtype(subtype)
    if canonical is not None:
        return list(SUBTYPE_CONCEPTS[canonical])
    return infer_concepts_from_text(subtype, text)


def _known(concept_ids: tuple[str, ...] | None) -> list[str]:
    if not concept_ids:
        return []
    seen: dict[str, None] = {}
    for concept_id in concept_ids:
        if concept_id in _CONCEPTS_BY_ID:
            seen.setdefault(concept_id, None)
    return list(seen)


def map_to_concepts(event: InteractionEvent) -> list[str]:
    """
    Attribute an interaction event to concept ids.

    Error-bearing events consult the subtype table first, then any concept ids
    the execution collaborator attached, then pattern rules on the error text.
    Executions and notes use the concept ids they carry.
    """
    match event:
        case ErrorEvent():
            canonical = canonical_subtype(event.error_subtype_id)
            if canonical is not None:
                return list(SUBTYPE_CONCEPTS[canonical])
            return _known(event.concept_ids) or infer_concepts_from_text(
                event.error_subtype_id, event.error
            )
        case HintViewEvent() | ExplanationViewEvent() | HintRequestEvent():
            return concepts_for_subtype(event.error_subtype_id)
        case ExecutionEvent() | TextbookAddEvent() | TextbookUpdateEvent():
            return _known(event.concept_ids)
        case CodeChangeEvent():
            return []
        case _:
            assert_never(event)


def _looks_misplaced(query: str) -> bool:
    compact = query.strip().lower()
    return compact.startswith(("from ", "where ", "group by ", "order by ", "join "))


def _looks_incomplete(query: str) -> bool:
    compact = query.strip().lower()
    if not compact:
        return False
    return re.search(r"(\bselect\b|\bfrom\b|\bwhere\b|\bgroup by\b|\border by\b|\bjoin\b)\s*$", compact) is not None


_ERROR_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"no such column|unknown column|has no column named|column not found|"
                r"does not exist.*column|invalid column|referenced column", re.I), "undefined column"),
    (re.compile(r"no such table|unknown table|no such relation|table not found|"
                r"does not exist.*table|invalid table|referenced table", re.I), "undefined table"),
    (re.compile(r"no such function|unknown function|undefined function|function not found|"
                r"does not exist.*function", re.I), "undefined function"),
    (re.compile(r"ambiguous column|ambiguous table|ambiguous reference|is ambiguous|"
                r"ambiguous identifier", re.I), "ambiguous reference"),
)

_LATE_ERROR_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"datatype mismatch|type mismatch|cannot convert|incompatible types|invalid.*type", re.I),
     "data type mismatch"),
    (re.compile(r"constraint failed|unique constraint|foreign key constraint|check constraint|"
                r"not null constraint", re.I), "constraint violation"),
    (re.compile(r"division by zero|divide by zero|arithmetic error|numeric overflow", re.I),
     "operator misuse"),
    (re.compile(r"like pattern|escape sequence|invalid escape", re.I), "operator misuse"),
    (re.compile(r"index.*already exists|index.*not found|no such index", re.I), "misspelling"),
    (re.compile(r"no such view|view.*not found|invalid view", re.I), "undefined table"),
    (re.compile(r'near\s*"[^"]*"\s*: syntax error|missing comma|expected comma', re.I), "missing commas"),
    (re.compile(r"unmatched.*bracket|unmatched.*parenthes|unclosed.*paren|mismatched.*bracket", re.I),
     "unmatched brackets"),
)


def normalize_sql_error_subtype(error_message: str, query: str = "") -> str:
    """
    Map a raw SQL engine error message to a canonical subtype.

    Args:
        error_message: Error text from the execution collaborator
        query: The attempted query, used for order/completeness heuristics

    Returns:
        A canonical subtype; "incomplete query" when nothing matches
    """
    for pattern, subtype in _ERROR_RULES:
        if pattern.search(error_message):
            return subtype

    if re.search(r"incomplete input|unterminated|unexpected end|unexpected eof|missing keyword|"
                 r"incomplete sql", error_message, re.I) or _looks_incomplete(query):
        return "incomplete query"

    if re.search(r"syntax error|unexpected token|wrong order", error_message, re.I) and _looks_misplaced(query):
        return "wrong positioning"

    for pattern, subtype in _LATE_ERROR_RULES:
        if pattern.search(error_message):
            return subtype

    return DEFAULT_SUBTYPE


def hint_text_for(subtype: str | None, level: int) -> str:
    """Progressive guidance for a subtype; level is clamped to 1..3."""
    canonical = canonical_subtype(subtype) or DEFAULT_SUBTYPE
    ladder = HINT_GUIDANCE.get(canonical, HINT_GUIDANCE[DEFAULT_SUBTYPE])
    return ladder[max(1, min(3, level)) - 1]
