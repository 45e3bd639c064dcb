"""
Data-binding engine: applies one user edit to a section forest.

Every function here is a pure transform. Only the path from the forest root
to the edited node is copied; every other tab, field and row is carried over
by reference, and an edit that addresses an unknown tab or field returns the
input forest itself. Lookups are by id because the UI may still be editing a
field that a structural edit has just removed, so a missing id is a no-op,
not an error.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from formbuilder.schemas.form import MAX_TABLE_ROWS, Column, FieldType, FormField, Row, Tab
from formbuilder.utils.formula import evaluate, to_number

logger = logging.getLogger(__name__)

# Well-known line columns summed into the line-details summary
SUM_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("Total", "Total Sum"),
    ("Discount", "Discount Sum"),
    ("VAT", "VAT Sum"),
)
TOTAL_AFTER_DISCOUNT = "Total After Discount"
SUMMARY_TAB_NAME = "Summary"

ColumnLike = Union[Column, Mapping[str, Any], str]


def _column_name(column: ColumnLike) -> str:
    if isinstance(column, Column):
        return column.name
    if isinstance(column, Mapping):
        return str(column.get("name", ""))
    return str(column)


def blank_row(columns: Iterable[ColumnLike]) -> Row:
    return {_column_name(column): "" for column in columns}


def apply_formulas(row: Row, columns: Sequence[Column]) -> Row:
    """Re-evaluate every calculated column of a row, in column order"""
    for column in columns:
        if column.is_calculated and column.calculation_formula:
            row[column.name] = evaluate(column.calculation_formula, row)
    return row


def _replace_field(
    forest: List[Tab],
    tab_id: str,
    field_id: str,
    transform: Callable[[FormField], FormField],
) -> List[Tab]:
    for tab_index, tab in enumerate(forest):
        if tab.id != tab_id:
            continue
        for field_index, field in enumerate(tab.fields):
            if field.id != field_id:
                continue
            new_field = transform(field)
            if new_field is field:
                return forest
            fields = list(tab.fields)
            fields[field_index] = new_field
            new_forest = list(forest)
            new_forest[tab_index] = tab.model_copy(update={"fields": fields})
            return new_forest
        logger.debug(f"Field {field_id} not found in tab {tab_id}; edit ignored")
        return forest
    logger.debug(f"Tab {tab_id} not found; edit ignored")
    return forest


def set_field_value(forest: List[Tab], tab_id: str, field_id: str, value: Any) -> List[Tab]:
    """Replace one field's value"""
    return _replace_field(
        forest, tab_id, field_id,
        lambda field: field.model_copy(update={"field_value": value}),
    )


def set_cell_value(
    forest: List[Tab],
    tab_id: str,
    field_id: str,
    row_index: int,
    column_name: str,
    value: Any,
) -> List[Tab]:
    """
    Set one table cell and recompute the calculated columns of its row.

    A table without rows is first given ``rowCount`` blank rows, and further
    blank rows are appended when ``row_index`` lies past the end. Indexes
    outside ``0 .. MAX_TABLE_ROWS - 1`` are ignored.
    """
    def transform(field: FormField) -> FormField:
        if not field.is_table or not 0 <= row_index < MAX_TABLE_ROWS:
            return field

        if field.table_data:
            rows = list(field.table_data)
        else:
            rows = [blank_row(field.columns) for _ in range(field.row_count)]
        while len(rows) <= row_index:
            rows.append(blank_row(field.columns))

        row = dict(rows[row_index])
        row[column_name] = value
        rows[row_index] = apply_formulas(row, field.columns)
        return field.model_copy(update={"table_data": rows})

    return _replace_field(forest, tab_id, field_id, transform)


def insert_row(
    forest: List[Tab],
    tab_id: str,
    field_id: str,
    columns: Optional[Sequence[ColumnLike]] = None,
) -> List[Tab]:
    """Append a row of empty cells. Formulas are not run until a cell is edited."""
    def transform(field: FormField) -> FormField:
        if not field.is_table:
            return field
        new_row = blank_row(field.columns if columns is None else columns)
        return field.model_copy(update={"table_data": [*field.table_data, new_row]})

    return _replace_field(forest, tab_id, field_id, transform)


def materialize_tables(forest: List[Tab]) -> List[Tab]:
    """Give every table without rows its default number of blank rows"""
    new_forest = list(forest)
    changed = False
    for tab_index, tab in enumerate(forest):
        fields = list(tab.fields)
        tab_changed = False
        for field_index, field in enumerate(tab.fields):
            if field.is_table and not field.table_data:
                row_count = min(max(field.row_count, 1), MAX_TABLE_ROWS)
                rows = [blank_row(field.columns) for _ in range(row_count)]
                fields[field_index] = field.model_copy(update={"table_data": rows})
                tab_changed = True
        if tab_changed:
            new_forest[tab_index] = tab.model_copy(update={"fields": fields})
            changed = True
    return new_forest if changed else forest


def sum_line_columns(lines: List[Tab]) -> Dict[str, float]:
    """Sum the well-known columns across every table row of the lines level"""
    sums: Dict[str, float] = {column: 0 for column, _ in SUM_COLUMNS}
    for tab in lines:
        for field in tab.fields:
            if not field.is_table:
                continue
            for row in field.table_data:
                for column in sums:
                    if column in row:
                        sums[column] += to_number(row[column])
    return sums


def _index_of(fields: List[FormField], name: str) -> Optional[int]:
    for index, field in enumerate(fields):
        if field.field_name == name:
            return index
    return None


def recompute_aggregates(lines: List[Tab], line_details: List[Tab]) -> List[Tab]:
    """
    Write the line totals into the first line-details tab.

    Produces "Total Sum", "Discount Sum", "VAT Sum" and "Total After
    Discount" as calculated text fields with two decimals. A sum that is
    exactly zero is not shown: its derived field is left out or removed.

    Args:
        lines: The lines forest to sum over
        line_details: The forest receiving the derived fields

    Returns:
        The updated line-details forest, or ``line_details`` itself when
        nothing changed
    """
    sums = sum_line_columns(lines)
    derived = [(label, sums[column]) for column, label in SUM_COLUMNS]
    derived.append((TOTAL_AFTER_DISCOUNT, sums["Total"] - sums["Discount"]))

    if line_details:
        summary_tab = line_details[0]
    elif any(amount != 0 for _, amount in derived):
        summary_tab = Tab(name=SUMMARY_TAB_NAME)
    else:
        return line_details

    fields = list(summary_tab.fields)
    for label, amount in derived:
        index = _index_of(fields, label)
        if amount == 0:
            if index is not None and fields[index].is_calculated:
                del fields[index]
            continue

        text = f"{amount:.2f}"
        if index is None:
            fields.append(FormField(
                field_name=label,
                field_type=FieldType.TEXT,
                field_value=text,
                is_calculated=True,
            ))
            continue

        existing = fields[index]
        if existing.field_value != text or not existing.is_calculated:
            fields[index] = existing.model_copy(update={"field_value": text, "is_calculated": True})

    if line_details and len(fields) == len(summary_tab.fields) and all(
        new is old for new, old in zip(fields, summary_tab.fields)
    ):
        return line_details

    new_tab = summary_tab.model_copy(update={"fields": fields})
    return [new_tab, *line_details[1:]]
