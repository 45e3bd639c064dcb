import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from formbuilder.schemas.form import (
    OPTION_FIELD_TYPES,
    Column,
    ColumnCreate,
    ColumnUpdate,
    FieldCreate,
    FieldType,
    FieldUpdate,
    FormField,
    Level,
    Tab,
    Template,
)
from formbuilder.services.form_repository import TemplateRepository
from formbuilder.utils.exceptions import (
    DuplicateNameError,
    EmptyNameError,
    FormElementNotFoundError,
    FormValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "New Table"
DEFAULT_ROW_COUNT = 5

# Field and column names must be unique across these levels
UNIQUE_NAME_LEVELS = (Level.HEADER, Level.LINES)


def clean_name(name: Optional[str], what: str = "Name") -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise EmptyNameError(what)
    return cleaned


def normalize_options(field_type: str, options: Union[List[Any], str, None]) -> Optional[List[Any]]:
    """Options apply to select/radio/checkbox only; text input holds one option per line"""
    if field_type not in OPTION_FIELD_TYPES:
        return None
    if options is None:
        return []
    if isinstance(options, str):
        return [line.strip() for line in options.split("\n") if line.strip()]
    return list(options)


def taken_names(
    template: Template,
    exclude_field_id: Optional[str] = None,
    exclude_column_id: Optional[str] = None,
) -> Set[str]:
    """Case-folded field and column names of the header and lines levels"""
    names = set()
    for level in UNIQUE_NAME_LEVELS:
        for tab in template.forest(level):
            for field in tab.fields:
                if field.id != exclude_field_id:
                    names.add(field.field_name.casefold())
                for column in field.columns:
                    if column.id != exclude_column_id:
                        names.add(column.name.casefold())
    return names


def check_unique(names: Iterable[str], taken: Set[str]) -> None:
    """Reject names already taken or repeated within the same submission"""
    seen = set(taken)
    for name in names:
        key = name.casefold()
        if key in seen:
            raise DuplicateNameError(name)
        seen.add(key)


def find_tab(forest: List[Tab], tab_id: str) -> Tuple[int, Tab]:
    for index, tab in enumerate(forest):
        if tab.id == tab_id:
            return index, tab
    raise FormElementNotFoundError(f"Tab {tab_id} not found")


def find_field(tab: Tab, field_id: str) -> Tuple[int, FormField]:
    for index, field in enumerate(tab.fields):
        if field.id == field_id:
            return index, field
    raise FormElementNotFoundError(f"Field {field_id} not found in tab {tab.id}")


def _with_field(forest: List[Tab], tab_index: int, fields: List[FormField]) -> List[Tab]:
    new_forest = list(forest)
    new_forest[tab_index] = forest[tab_index].model_copy(update={"fields": fields})
    return new_forest


class TemplateEditor:
    """
    Structural edits to a template's tabs, fields and table columns.

    Each operation loads the template, builds the new forest for one level in
    memory and stores it with a single ``overwrite_section_forest`` call. When
    the write fails nothing has changed and the caller keeps its last
    confirmed template.
    """

    def __init__(self, repository: TemplateRepository):
        self.repository = repository

    def _commit(self, template: Template, level: Level, forest: List[Tab]) -> Template:
        return self.repository.overwrite_section_forest(template.id, level, forest)

    def add_tab(
        self,
        template_id: int,
        level: Union[Level, str],
        name: str,
        parent_tab_id: Optional[str] = None,
    ) -> Tab:
        """
        Append a new, empty tab to a level

        Args:
            template_id: Template ID
            level: Level receiving the tab
            name: Tab name
            parent_tab_id: Optional tab of the same level to nest under

        Returns:
            The created tab
        """
        level = Level(level)
        name = clean_name(name, "Tab name")
        template = self.repository.get_template(template_id)
        forest = template.forest(level)

        if parent_tab_id is not None:
            find_tab(forest, parent_tab_id)

        tab = Tab(name=name, parent_tab_id=parent_tab_id)
        self._commit(template, level, [*forest, tab])
        logger.info(f"Added tab {tab.id} ({name}) to {level.value} of template {template_id}")
        return tab

    def delete_tab(self, template_id: int, level: Union[Level, str], tab_id: str) -> Template:
        """Remove a tab, its nested tabs and everything they own"""
        level = Level(level)
        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        find_tab(forest, tab_id)

        doomed = {tab_id}
        grew = True
        while grew:
            children = {tab.id for tab in forest if tab.parent_tab_id in doomed} - doomed
            grew = bool(children)
            doomed |= children

        updated = self._commit(template, level, [tab for tab in forest if tab.id not in doomed])
        logger.info(f"Deleted {len(doomed)} tab(s) from {level.value} of template {template_id}")
        return updated

    def add_field(
        self,
        template_id: int,
        level: Union[Level, str],
        tab_id: str,
        field_data: FieldCreate,
    ) -> Template:
        level = Level(level)
        name = clean_name(field_data.field_name, "Field name")
        columns = [self._new_column(column) for column in field_data.columns]

        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)
        check_unique([name, *(column.name for column in columns)], taken_names(template))

        field_type = str(FieldType(field_data.field_type).value)
        field = FormField(
            field_name=name,
            field_type=field_type,
            field_value=field_data.field_value,
            field_placeholder=(field_data.field_placeholder or "").strip() or None,
            is_required=field_data.is_required,
            field_options=normalize_options(field_type, field_data.field_options),
            endpoint=field_data.endpoint if field_type == FieldType.API_DROPDOWN.value else None,
            columns=columns if field_type == FieldType.TABLE.value else [],
            row_count=field_data.row_count,
        )
        updated = self._commit(template, level, _with_field(forest, tab_index, [*tab.fields, field]))
        logger.info(f"Added {field_type} field {field.id} ({name}) to tab {tab_id}")
        return updated

    def edit_field(
        self,
        template_id: int,
        level: Union[Level, str],
        tab_id: str,
        field_id: str,
        field_data: FieldUpdate,
    ) -> Template:
        """Update a field's attributes. Its id and type never change."""
        level = Level(level)
        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)
        field_index, field = find_field(tab, field_id)

        update: Dict[str, Any] = field_data.model_dump(exclude_unset=True)
        for key in ("field_name", "is_required", "row_count"):
            if update.get(key) is None:
                update.pop(key, None)

        if "field_name" in update:
            update["field_name"] = clean_name(update["field_name"], "Field name")
            check_unique([update["field_name"]], taken_names(template, exclude_field_id=field_id))
        if "field_options" in update:
            update["field_options"] = normalize_options(field.field_type, update["field_options"])
        if "field_placeholder" in update:
            update["field_placeholder"] = (update["field_placeholder"] or "").strip() or None

        fields = list(tab.fields)
        fields[field_index] = field.model_copy(update=update)
        updated = self._commit(template, level, _with_field(forest, tab_index, fields))
        logger.info(f"Edited field {field_id} in tab {tab_id}")
        return updated

    def delete_field(self, template_id: int, level: Union[Level, str], tab_id: str, field_id: str) -> Template:
        level = Level(level)
        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)
        find_field(tab, field_id)

        fields = [field for field in tab.fields if field.id != field_id]
        updated = self._commit(template, level, _with_field(forest, tab_index, fields))
        logger.info(f"Deleted field {field_id} from tab {tab_id}")
        return updated

    @staticmethod
    def _new_column(column_data: ColumnCreate) -> Column:
        return Column(
            name=clean_name(column_data.name, "Column name"),
            type=column_data.type,
            is_calculated=column_data.is_calculated,
            calculation_formula=column_data.calculation_formula if column_data.is_calculated else None,
            endpoint=column_data.endpoint,
        )

    def add_column(
        self,
        template_id: int,
        level: Union[Level, str],
        tab_id: str,
        columns_data: List[ColumnCreate],
    ) -> Template:
        """
        Add columns to the tab's table, creating the table field first when
        the tab has none

        Args:
            template_id: Template ID
            level: Level holding the tab
            tab_id: Tab ID
            columns_data: Columns to append, in order

        Returns:
            The updated template
        """
        level = Level(level)
        if not columns_data:
            raise FormValidationError("At least one column is required")
        new_columns = [self._new_column(column) for column in columns_data]

        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)
        taken = taken_names(template)
        check_unique([column.name for column in new_columns], taken)

        fields = list(tab.fields)
        table_index = next((i for i, field in enumerate(fields) if field.is_table), None)
        if table_index is None:
            reserved = taken | {column.name.casefold() for column in new_columns}
            fields.append(FormField(
                field_name=self._unique_table_name(reserved),
                field_type=FieldType.TABLE,
                columns=new_columns,
                row_count=DEFAULT_ROW_COUNT,
                table_data=[],
            ))
        else:
            table = fields[table_index]
            fields[table_index] = table.model_copy(update={"columns": [*table.columns, *new_columns]})

        updated = self._commit(template, level, _with_field(forest, tab_index, fields))
        logger.info(f"Added {len(new_columns)} column(s) to tab {tab_id}")
        return updated

    @staticmethod
    def _unique_table_name(taken: Set[str]) -> str:
        name = DEFAULT_TABLE_NAME
        suffix = 2
        while name.casefold() in taken:
            name = f"{DEFAULT_TABLE_NAME} {suffix}"
            suffix += 1
        return name

    def edit_column(
        self,
        template_id: int,
        level: Union[Level, str],
        tab_id: str,
        column_id: str,
        column_data: ColumnUpdate,
    ) -> Template:
        """Update a column's attributes. Its id and type never change."""
        level = Level(level)
        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)

        for field_index, field in enumerate(tab.fields):
            for column_index, column in enumerate(field.columns):
                if column.id == column_id:
                    break
            else:
                continue
            break
        else:
            raise FormElementNotFoundError(f"Column {column_id} not found in tab {tab_id}")

        update: Dict[str, Any] = column_data.model_dump(exclude_unset=True)
        for key in ("name", "is_calculated"):
            if update.get(key) is None:
                update.pop(key, None)

        table_data = field.table_data
        if "name" in update:
            update["name"] = clean_name(update["name"], "Column name")
            check_unique([update["name"]], taken_names(template, exclude_column_id=column_id))
            if update["name"] != column.name:
                # Carry cell values over to the new key
                table_data = [
                    {(update["name"] if key == column.name else key): value for key, value in row.items()}
                    for row in field.table_data
                ]
        if update.get("is_calculated") is False:
            update["calculation_formula"] = None

        columns = list(field.columns)
        columns[column_index] = column.model_copy(update=update)
        fields = list(tab.fields)
        fields[field_index] = field.model_copy(update={"columns": columns, "table_data": table_data})
        updated = self._commit(template, level, _with_field(forest, tab_index, fields))
        logger.info(f"Edited column {column_id} of field {field.id}")
        return updated

    def delete_column(
        self,
        template_id: int,
        level: Union[Level, str],
        tab_id: str,
        field_id: str,
        column_id: str,
    ) -> Template:
        level = Level(level)
        template = self.repository.get_template(template_id)
        forest = template.forest(level)
        tab_index, tab = find_tab(forest, tab_id)
        field_index, field = find_field(tab, field_id)

        removed = next((column for column in field.columns if column.id == column_id), None)
        if removed is None:
            raise FormElementNotFoundError(f"Column {column_id} not found in field {field_id}")

        columns = [column for column in field.columns if column.id != column_id]
        table_data = [{k: v for k, v in row.items() if k != removed.name} for row in field.table_data]
        fields = list(tab.fields)
        fields[field_index] = field.model_copy(update={"columns": columns, "table_data": table_data})
        updated = self._commit(template, level, _with_field(forest, tab_index, fields))
        logger.info(f"Deleted column {column_id} from field {field_id}")
        return updated
