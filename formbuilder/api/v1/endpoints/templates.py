from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from formbuilder.db.local_session import DatabaseManager
from formbuilder.schemas.form import (
    ColumnCreate,
    ColumnUpdate,
    FieldCreate,
    FieldUpdate,
    Level,
    RecordCreate,
    Tab,
    TabCreate,
    Template,
    TemplateCreate,
)
from formbuilder.services.data_binding import materialize_tables
from formbuilder.services.form_repository import TemplateRepository
from formbuilder.services.renderer import build_tree_view, render_preview_html
from formbuilder.services.template_editor import TemplateEditor

router = APIRouter()
get_session = DatabaseManager().get_session


def get_editor(db: Session) -> TemplateEditor:
    return TemplateEditor(TemplateRepository(db))


@router.get("/", response_model=List[Template])
async def list_templates(db: Session = Depends(get_session)):
    """
    Get all form templates.
    """
    return TemplateRepository(db).list_templates()


@router.post("/", response_model=Template, status_code=status.HTTP_201_CREATED)
async def create_template(template_data: TemplateCreate, db: Session = Depends(get_session)):
    """
    Create an empty template with no header, lines or line details.
    """
    return TemplateRepository(db).create_template(template_data.template_name)


@router.get("/{template_id}", response_model=Template)
async def get_template(
    template_id: int = Path(..., description="Template ID"),
    db: Session = Depends(get_session)
):
    return TemplateRepository(db).get_template(template_id)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: int, db: Session = Depends(get_session)):
    TemplateRepository(db).delete_template(template_id)
    return None


@router.get("/{template_id}/tree")
async def get_template_tree(template_id: int, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Get the Header / Lines / Line Details outline of a template.
    """
    return build_tree_view(TemplateRepository(db).get_template(template_id))


@router.get("/{template_id}/preview", response_class=HTMLResponse)
async def preview_template(template_id: int, db: Session = Depends(get_session)):
    return HTMLResponse(render_preview_html(TemplateRepository(db).get_template(template_id)))


@router.get("/{template_id}/blank-record", response_model=RecordCreate)
async def get_blank_record(template_id: int, db: Session = Depends(get_session)):
    """
    Get the template's sections ready to be filled in as a new record.

    Tables without rows are given their default number of empty rows.
    """
    template = TemplateRepository(db).get_template(template_id)
    return RecordCreate(
        header=materialize_tables(template.header),
        lines=materialize_tables(template.lines),
        line_details=materialize_tables(template.line_details),
    )


@router.put("/{template_id}/sections/{level}", response_model=Template)
async def overwrite_sections(
    template_id: int,
    level: Level,
    forest: List[Tab],
    db: Session = Depends(get_session)
):
    """
    Replace one level of a template with the given tabs.
    """
    return TemplateRepository(db).overwrite_section_forest(template_id, level, forest)


@router.post("/{template_id}/sections/{level}/tabs", response_model=Tab, status_code=status.HTTP_201_CREATED)
async def add_tab(template_id: int, level: Level, tab_data: TabCreate, db: Session = Depends(get_session)):
    return get_editor(db).add_tab(template_id, level, tab_data.name, tab_data.parent_tab_id)


@router.delete("/{template_id}/sections/{level}/tabs/{tab_id}", response_model=Template)
async def delete_tab(template_id: int, level: Level, tab_id: str, db: Session = Depends(get_session)):
    """
    Delete a tab together with its nested tabs, fields and columns.
    """
    return get_editor(db).delete_tab(template_id, level, tab_id)


@router.post(
    "/{template_id}/sections/{level}/tabs/{tab_id}/fields",
    response_model=Template,
    status_code=status.HTTP_201_CREATED
)
async def add_field(
    template_id: int,
    level: Level,
    tab_id: str,
    field_data: FieldCreate,
    db: Session = Depends(get_session)
):
    """
    Add a field to a tab.

    Field and column names must be unique, ignoring case, across the header
    and lines of the template.
    """
    return get_editor(db).add_field(template_id, level, tab_id, field_data)


@router.put("/{template_id}/sections/{level}/tabs/{tab_id}/fields/{field_id}", response_model=Template)
async def edit_field(
    template_id: int,
    level: Level,
    tab_id: str,
    field_id: str,
    field_data: FieldUpdate,
    db: Session = Depends(get_session)
):
    return get_editor(db).edit_field(template_id, level, tab_id, field_id, field_data)


@router.delete("/{template_id}/sections/{level}/tabs/{tab_id}/fields/{field_id}", response_model=Template)
async def delete_field(
    template_id: int,
    level: Level,
    tab_id: str,
    field_id: str,
    db: Session = Depends(get_session)
):
    return get_editor(db).delete_field(template_id, level, tab_id, field_id)


@router.post(
    "/{template_id}/sections/{level}/tabs/{tab_id}/columns",
    response_model=Template,
    status_code=status.HTTP_201_CREATED
)
async def add_columns(
    template_id: int,
    level: Level,
    tab_id: str,
    columns_data: List[ColumnCreate],
    db: Session = Depends(get_session)
):
    """
    Add columns to the tab's table. The table is created when the tab has none.
    """
    return get_editor(db).add_column(template_id, level, tab_id, columns_data)


@router.put("/{template_id}/sections/{level}/tabs/{tab_id}/columns/{column_id}", response_model=Template)
async def edit_column(
    template_id: int,
    level: Level,
    tab_id: str,
    column_id: str,
    column_data: ColumnUpdate,
    db: Session = Depends(get_session)
):
    return get_editor(db).edit_column(template_id, level, tab_id, column_id, column_data)


@router.delete(
    "/{template_id}/sections/{level}/tabs/{tab_id}/fields/{field_id}/columns/{column_id}",
    response_model=Template
)
async def delete_column(
    template_id: int,
    level: Level,
    tab_id: str,
    field_id: str,
    column_id: str,
    db: Session = Depends(get_session)
):
    return get_editor(db).delete_column(template_id, level, tab_id, field_id, column_id)
