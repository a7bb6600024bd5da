"""
Filter Compiler

Turns a TransactionFilter into an ordered list of SQLAlchemy boolean clauses.
Each present filter contributes exactly one clause; values are always bound
parameters, never interpolated into the SQL text.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import and_, or_, asc, desc, literal
from sqlalchemy.dialects import sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement

from finflow.core.exceptions import raise_validation_error
from finflow.models import Transaction, Category
from finflow.schemas import TransactionFilter, SortField, SortOrder

LIKE_ESCAPE = "\\"

# Logical sort name -> physical column. Nothing outside this table reaches ORDER BY.
SORT_COLUMNS = {
    SortField.DATE: Transaction.transaction_date,
    SortField.AMOUNT: Transaction.amount,
    SortField.CATEGORY: Category.name,
    SortField.CREATED_AT: Transaction.created_at,
}


@dataclass
class CompiledFilter:
    clauses: List[ColumnElement] = field(default_factory=list)

    @property
    def predicate(self) -> Optional[ColumnElement]:
        """Conjunction of all clauses, or None when no filter is present."""
        if not self.clauses:
            return None
        return and_(*self.clauses)

    def render(self, dialect: Optional[Dialect] = None) -> Tuple[str, List[Any]]:
        """Render to (sql, params) with positional placeholders, in emission order."""
        if not self.clauses:
            return "", []
        compiled = self.predicate.compile(dialect=dialect or sqlite.dialect())
        return compiled.string, [compiled.params[name] for name in compiled.positiontup]


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input only ever matches literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _start_date(value):
    return Transaction.transaction_date >= value


def _end_date(value):
    return Transaction.transaction_date <= value


def _category_ids(value):
    # One bound parameter per id keeps the rendered IN list positional.
    return Transaction.category_id.in_([literal(v, Transaction.category_id.type) for v in value])


def _type(value):
    return Category.type == value.value


def _min_amount(value):
    return Transaction.amount >= value


def _max_amount(value):
    return Transaction.amount <= value


def _search(value):
    pattern = f"%{escape_like(value)}%"
    return or_(
        Transaction.note.like(pattern, escape=LIKE_ESCAPE),
        Category.name.like(pattern, escape=LIKE_ESCAPE),
    )


# Emission order of the clauses, and therefore of the bound parameters.
FILTER_BUILDERS: List[Tuple[str, Callable[[Any], ColumnElement]]] = [
    ("start_date", _start_date),
    ("end_date", _end_date),
    ("category_ids", _category_ids),
    ("type", _type),
    ("min_amount", _min_amount),
    ("max_amount", _max_amount),
    ("search", _search),
]


def _is_present(value) -> bool:
    # An empty category selection means "no restriction", not "match nothing".
    if isinstance(value, (list, tuple, set)):
        return len(value) > 0
    return value is not None and value != ""


def compile_filters(filters: TransactionFilter) -> CompiledFilter:
    compiled = CompiledFilter()
    for name, builder in FILTER_BUILDERS:
        value = getattr(filters, name)
        if _is_present(value):
            compiled.clauses.append(builder(value))
    return compiled


@dataclass
class ResolvedSort:
    column: ColumnElement
    ascending: bool

    def apply(self, column: Optional[ColumnElement] = None) -> ColumnElement:
        target = self.column if column is None else column
        return asc(target) if self.ascending else desc(target)


def resolve_sort(sort_by, order=SortOrder.DESC) -> ResolvedSort:
    """Resolve a logical sort name and direction through SORT_COLUMNS."""
    try:
        key = SortField(sort_by)
    except ValueError:
        raise_validation_error("sort_by", f"Unsupported sort column. Allowed: {[f.value for f in SortField]}", sort_by)
    try:
        direction = SortOrder(order)
    except ValueError:
        raise_validation_error("order", "Order must be 'asc' or 'desc'", order)
    return ResolvedSort(column=SORT_COLUMNS[key], ascending=direction == SortOrder.ASC)
