"""
View models for the form screens.

The renderer owns no data rules of its own. Edits are routed into the
data-binding engine, the resulting forest is handed to the change callback,
and ``view()`` describes what the page should show.
"""
import logging
import os
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from formbuilder.schemas.form import (
    OPTION_FIELD_TYPES,
    Column,
    FieldType,
    FormField,
    Level,
    Record,
    SectionLevels,
    Tab,
    Template,
)
from formbuilder.services.data_binding import (
    insert_row,
    materialize_tables,
    recompute_aggregates,
    set_cell_value,
    set_field_value,
)
from formbuilder.services.form_repository import RecordRepository
from formbuilder.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

LEVEL_LABELS = {
    Level.HEADER: "Header",
    Level.LINES: "Lines",
    Level.LINE_DETAILS: "Line Details",
}

FIELD_WIDGETS = {
    "text": "input",
    "number": "input",
    "email": "input",
    "password": "input",
    "tel": "input",
    "url": "input",
    "date": "input",
    "time": "input",
    "datetime-local": "input",
    "textarea": "textarea",
    "select": "select",
    "checkbox": "checkbox",
    "radio": "radio",
    "file": "file",
    "api-dropdown": "async-select",
    "table": "table",
}

COLUMN_WIDGETS = {
    "text": "input",
    "number": "input",
    "date": "input",
    "boolean": "checkbox",
    "api-dropdown": "async-select",
}

TEMPLATES_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")

ChangeCallback = Callable[[List[Tab]], None]


class Notification(BaseModel):
    kind: str  # "success" or "error"
    message: str


def _option_view(option: Any) -> Dict[str, Any]:
    if isinstance(option, dict):
        value = option.get("value", option.get("label", ""))
        return {"value": value, "label": option.get("label", value)}
    return {"value": option, "label": option}


def _column_view(column: Column) -> Dict[str, Any]:
    return {
        "id": column.id,
        "name": column.name,
        "type": column.type,
        "widget": COLUMN_WIDGETS.get(column.type, "unsupported"),
        "read_only": column.is_calculated,
        "formula": column.calculation_formula,
        "endpoint": column.endpoint,
    }


def _cell_view(column: Column, row: Dict[str, Any]) -> Any:
    value = row.get(column.name, "")
    if column.type == "boolean":
        return bool(value)
    return "" if value is None else value


def field_view(field: FormField) -> Dict[str, Any]:
    view = {
        "id": field.id,
        "label": field.field_name,
        "type": field.field_type,
        "widget": FIELD_WIDGETS.get(field.field_type, "unsupported"),
        "value": "" if field.field_value is None else field.field_value,
        "placeholder": field.field_placeholder or "",
        "required": field.is_required,
        "read_only": field.is_calculated,
    }
    if field.field_type in OPTION_FIELD_TYPES:
        view["options"] = [_option_view(option) for option in field.field_options or []]
    if field.field_type == FieldType.API_DROPDOWN.value:
        view["endpoint"] = field.endpoint
    if field.is_table:
        view["columns"] = [_column_view(column) for column in field.columns]
        view["rows"] = [[_cell_view(column, row) for column in field.columns] for row in field.table_data]
        view["can_insert_row"] = True
    return view


class SectionRenderer:
    """
    Edit state for one level of a form.

    Keeps the active tab valid as the forest changes: when the active tab
    disappears the first tab becomes active, or none when the level is empty.
    """

    def __init__(self, forest: Sequence[Tab], on_change: Optional[ChangeCallback] = None):
        self.forest: List[Tab] = list(forest)
        self.on_change = on_change
        self.active_tab_id: Optional[str] = self.forest[0].id if self.forest else None

    def set_forest(self, forest: Sequence[Tab]) -> None:
        self.forest = list(forest)
        if not any(tab.id == self.active_tab_id for tab in self.forest):
            self.active_tab_id = self.forest[0].id if self.forest else None

    def select_tab(self, tab_id: str) -> None:
        if any(tab.id == tab_id for tab in self.forest):
            self.active_tab_id = tab_id

    def _find_field(self, tab_id: str, field_id: str) -> Optional[FormField]:
        for tab in self.forest:
            if tab.id == tab_id:
                return next((field for field in tab.fields if field.id == field_id), None)
        return None

    def _emit(self, forest: List[Tab]) -> None:
        self.set_forest(forest)
        if self.on_change is not None:
            self.on_change(self.forest)

    def change_field(self, tab_id: str, field_id: str, value: Any) -> None:
        field = self._find_field(tab_id, field_id)
        if field is not None and field.is_calculated:
            return
        self._emit(set_field_value(self.forest, tab_id, field_id, value))

    def change_cell(self, tab_id: str, field_id: str, row_index: int, column_name: str, value: Any) -> None:
        field = self._find_field(tab_id, field_id)
        if field is not None and any(c.name == column_name and c.is_calculated for c in field.columns):
            return
        self._emit(set_cell_value(self.forest, tab_id, field_id, row_index, column_name, value))

    def insert_row(self, tab_id: str, field_id: str) -> None:
        self._emit(insert_row(self.forest, tab_id, field_id))

    def view(self) -> Dict[str, Any]:
        if not self.forest:
            return {"tabs": [], "show_tab_strip": False, "active_tab_id": None,
                    "fields": [], "message": "No fields defined."}

        active = next(tab for tab in self.forest if tab.id == self.active_tab_id)
        return {
            "tabs": [{"id": tab.id, "name": tab.name, "active": tab.id == active.id} for tab in self.forest],
            "show_tab_strip": len(self.forest) > 1,
            "active_tab_id": active.id,
            "fields": [field_view(field) for field in active.fields],
            "message": None if active.fields else "No fields defined for this tab.",
        }


class FormEditSession:
    """
    Editing a record: three section renderers plus saving.

    Edits apply locally straight away and ``lines`` edits refresh the
    line-details totals. Saving is a follow-up step; when it fails the
    local edits stay and an error notification is reported.
    """

    def __init__(self, levels: SectionLevels, repository: RecordRepository, record_id: Optional[int] = None):
        self.repository = repository
        self.record_id = record_id
        self.state = SectionLevels(header=levels.header, lines=levels.lines, line_details=levels.line_details)
        self.notifications: List[Notification] = []
        self.renderers: Dict[Level, SectionRenderer] = {
            level: SectionRenderer(self.state.forest(level), on_change=partial(self._on_level_change, level))
            for level in Level
        }

    @classmethod
    def from_template(cls, template: Template, repository: RecordRepository) -> "FormEditSession":
        """A blank record from a template, with default rows in every table"""
        levels = SectionLevels(
            header=materialize_tables(template.header),
            lines=materialize_tables(template.lines),
            line_details=materialize_tables(template.line_details),
        )
        return cls(levels, repository)

    @classmethod
    def from_record(cls, record: Record, repository: RecordRepository) -> "FormEditSession":
        return cls(record, repository, record_id=record.id)

    def renderer(self, level) -> SectionRenderer:
        return self.renderers[Level(level)]

    def _on_level_change(self, level: Level, forest: List[Tab]) -> None:
        self.state = self.state.with_forest(level, forest)
        if level == Level.LINES:
            details = recompute_aggregates(forest, self.state.line_details)
            if details is not self.state.line_details:
                self.state = self.state.with_forest(Level.LINE_DETAILS, details)
                self.renderers[Level.LINE_DETAILS].set_forest(details)

    def _notify(self, kind: str, message: str) -> Notification:
        notification = Notification(kind=kind, message=message)
        self.notifications.append(notification)
        return notification

    def save(self) -> Notification:
        """Persist the whole record; failures are reported, not raised"""
        try:
            if self.record_id is None:
                record = self.repository.save_record(self.state)
                self.record_id = record.id
                return self._notify("success", "Form data saved successfully!")
            self.repository.update_record(self.record_id, self.state)
            return self._notify("success", "Entry updated successfully!")
        except PersistenceError as e:
            logger.error(f"Saving record {self.record_id} failed: {e.message}")
            return self._notify("error", f"Error saving form data: {e.message}")

    def view(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "levels": {level.value: self.renderers[level].view() for level in Level},
        }


def _tab_tree(forest: List[Tab]) -> List[Dict[str, Any]]:
    """
    Nest tabs under their parent tabs.

    Tabs whose parent is missing are roots. Tabs caught in a parent cycle
    have no root above them, so the first of them met in forest order is
    promoted to a root and the cycle is cut there.
    """
    nodes = {}
    for tab in forest:
        nodes[tab.id] = {
            "id": tab.id,
            "name": tab.name,
            "fields": [
                {
                    "id": field.id,
                    "name": field.field_name,
                    "type": field.field_type,
                    "required": field.is_required,
                    "columns": [
                        {
                            "id": column.id,
                            "name": column.name,
                            "type": column.type,
                            "is_calculated": column.is_calculated,
                            "formula": column.calculation_formula,
                        }
                        for column in field.columns
                    ],
                }
                for field in tab.fields
            ],
            "children": [],
        }

    children: Dict[str, List[str]] = {tab_id: [] for tab_id in nodes}
    for tab in forest:
        if tab.parent_tab_id in children and tab.parent_tab_id != tab.id:
            children[tab.parent_tab_id].append(tab.id)

    placed = set()

    def place(root_id: str) -> Dict[str, Any]:
        placed.add(root_id)
        stack = [root_id]
        while stack:
            tab_id = stack.pop()
            for child_id in children[tab_id]:
                if child_id not in placed:
                    placed.add(child_id)
                    nodes[tab_id]["children"].append(nodes[child_id])
                    stack.append(child_id)
        return nodes[root_id]

    roots = [
        place(tab.id)
        for tab in forest
        if tab.id not in placed and (tab.parent_tab_id not in children or tab.parent_tab_id == tab.id)
    ]
    for tab in forest:
        if tab.id not in placed:
            roots.append(place(tab.id))
    return roots


def build_tree_view(template: Template) -> Dict[str, Any]:
    """The Header / Lines / Line Details outline used by the template editor"""
    return {
        "id": template.id,
        "templateName": template.template_name,
        "levels": [
            {
                "level": level.value,
                "label": label,
                "count": len(template.forest(level)),
                "tabs": _tab_tree(template.forest(level)),
            }
            for level, label in LEVEL_LABELS.items()
        ],
    }


def build_preview(template: Template) -> Dict[str, Any]:
    sections = []
    for level, label in LEVEL_LABELS.items():
        forest = template.forest(level)
        if not forest:
            continue
        sections.append({
            "level": level.value,
            "title": label,
            "show_tab_strip": len(forest) > 1,
            "active_tab_id": forest[0].id,
            "tabs": [
                {
                    "id": tab.id,
                    "name": tab.name,
                    "fields": [
                        {
                            "name": field.field_name,
                            "type": field.field_type,
                            "placeholder": field.field_placeholder,
                            "required": field.is_required,
                            "options": ", ".join(
                                str(_option_view(option)["value"]) for option in field.field_options or []
                            ),
                            "columns": [column.name for column in field.columns],
                        }
                        for field in tab.fields
                    ],
                }
                for tab in forest
            ],
        })
    return {
        "id": template.id,
        "templateName": template.template_name,
        "sections": sections,
        "is_empty": not sections,
    }


def render_preview_html(template: Template) -> str:
    env = Environment(
        loader=FileSystemLoader(TEMPLATES_PATH),
        autoescape=select_autoescape(['html', 'xml'])
    )
    return env.get_template("form_preview.html").render(preview=build_preview(template))


def build_record_grid(records: Sequence[Record], visible: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """
    Browse view over saved records: one row per record, one column per
    header field name.

    Args:
        records: Records to show
        visible: Optional subset of column headers to keep

    Returns:
        Dictionary with all headers, the visible headers and the rows
    """
    headers: List[str] = []
    for record in records:
        for tab in record.header:
            for field in tab.fields:
                if field.field_name not in headers:
                    headers.append(field.field_name)
    all_headers = ["ID", *headers]

    rows = []
    for record in records:
        row: Dict[str, Any] = {"ID": record.id}
        for header in headers:
            value = ""
            # Later tabs win when a name repeats
            for tab in record.header:
                for field in tab.fields:
                    if field.field_name == header:
                        value = field.field_value or ""
            row[header] = value
        rows.append(row)

    shown = all_headers if visible is None else [h for h in all_headers if h in set(visible)]
    return {
        "all_headers": all_headers,
        "headers": shown,
        "rows": [{header: row[header] for header in shown} for row in rows],
    }
