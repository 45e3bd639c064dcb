from typing import List

from fastapi import APIRouter

from formbuilder.schemas.form import AggregateRequest, CellValueEdit, FieldValueEdit, RowInsert, Tab
from formbuilder.services.data_binding import (
    insert_row,
    materialize_tables,
    recompute_aggregates,
    set_cell_value,
    set_field_value,
)

# Stateless edit transforms: the client posts its current forest and gets
# the updated one back. Unknown tab or field ids leave the forest unchanged.
router = APIRouter()


@router.post("/field-value", response_model=List[Tab])
async def edit_field_value(edit: FieldValueEdit):
    return set_field_value(edit.forest, edit.tab_id, edit.field_id, edit.value)


@router.post("/cell-value", response_model=List[Tab])
async def edit_cell_value(edit: CellValueEdit):
    """
    Set one table cell and recompute the calculated columns of its row.
    """
    return set_cell_value(edit.forest, edit.tab_id, edit.field_id, edit.row_index, edit.column_name, edit.value)


@router.post("/insert-row", response_model=List[Tab])
async def add_table_row(edit: RowInsert):
    return insert_row(edit.forest, edit.tab_id, edit.field_id, edit.columns)


@router.post("/aggregates", response_model=List[Tab])
async def refresh_aggregates(request: AggregateRequest):
    """
    Recompute the line-details totals from the lines tables.
    """
    return recompute_aggregates(request.lines, request.line_details)


@router.post("/materialize", response_model=List[Tab])
async def materialize(forest: List[Tab]):
    return materialize_tables(forest)
