import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formbuilder.utils.json_utils import parse_json_field

# A table row maps column names to cell values. Rows are positional.
Row = Dict[str, Any]

# Upper bound on the rows a table may be given or padded to
MAX_TABLE_ROWS = 1000


def new_id() -> str:
    return str(uuid.uuid4())


class Level(str, Enum):
    """The three independent section forests of a template or record"""
    HEADER = "header"
    LINES = "lines"
    LINE_DETAILS = "lineDetails"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    EMAIL = "email"
    PASSWORD = "password"
    TEL = "tel"
    URL = "url"
    DATE = "date"
    TIME = "time"
    DATETIME_LOCAL = "datetime-local"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    FILE = "file"
    API_DROPDOWN = "api-dropdown"
    TABLE = "table"


class ColumnType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    API_DROPDOWN = "api-dropdown"


# Field types whose options are entered as a list of choices
OPTION_FIELD_TYPES = {FieldType.SELECT.value, FieldType.RADIO.value, FieldType.CHECKBOX.value}


class FormModel(BaseModel):
    """
    Base for the schema value types.

    Instances are frozen: every edit builds new objects with ``model_copy`` so
    untouched subtrees keep their identity.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Column(FormModel):
    id: str = Field(default_factory=new_id)
    name: str
    type: ColumnType = ColumnType.TEXT
    is_calculated: bool = Field(False, alias="isCalculated")
    calculation_formula: Optional[str] = Field(None, alias="calculationFormula")
    endpoint: Optional[str] = None


class FormField(FormModel):
    id: str = Field(default_factory=new_id)
    field_name: str
    field_type: FieldType = FieldType.TEXT
    field_value: Any = None
    field_placeholder: Optional[str] = None
    is_required: bool = False
    field_options: Optional[List[Any]] = None
    # Set on derived summary fields; they are not user-editable
    is_calculated: bool = Field(False, alias="isCalculated")
    endpoint: Optional[str] = None

    # Only meaningful for field_type == "table"
    columns: List[Column] = Field(default_factory=list)
    table_data: List[Row] = Field(default_factory=list, alias="tableData")
    row_count: int = Field(5, alias="rowCount", ge=0, le=MAX_TABLE_ROWS)

    @field_validator("table_data", mode="before")
    @classmethod
    def _decode_table_data(cls, value):
        # Older writers stored tableData as JSON text inside the field
        if value is None or isinstance(value, str):
            return parse_json_field(value)
        return value

    @field_validator("columns", mode="before")
    @classmethod
    def _default_columns(cls, value):
        return value if value is not None else []

    @property
    def is_table(self) -> bool:
        return self.field_type == FieldType.TABLE.value


class Tab(FormModel):
    """A named, ordered group of fields. Also called a section."""
    id: str = Field(default_factory=new_id)
    name: str
    fields: List[FormField] = Field(default_factory=list)
    parent_tab_id: Optional[str] = None
    level: Optional[Level] = None
    order_index: Optional[int] = None

    @field_validator("fields", mode="before")
    @classmethod
    def _default_fields(cls, value):
        return value if value is not None else []


Section = Tab
SectionForest = List[Tab]


class SectionLevels(FormModel):
    """The header/lines/lineDetails triple shared by templates and records"""
    header: List[Tab] = Field(default_factory=list)
    lines: List[Tab] = Field(default_factory=list)
    line_details: List[Tab] = Field(default_factory=list, alias="lineDetails")

    def forest(self, level: Union[Level, str]) -> List[Tab]:
        level = Level(level)
        if level == Level.HEADER:
            return self.header
        if level == Level.LINES:
            return self.lines
        return self.line_details

    def with_forest(self, level: Union[Level, str], forest: List[Tab]):
        attr = {
            Level.HEADER: "header",
            Level.LINES: "lines",
            Level.LINE_DETAILS: "line_details",
        }[Level(level)]
        return self.model_copy(update={attr: list(forest)})


class Template(SectionLevels):
    id: int
    template_name: str = Field(alias="templateName")
    created_at: Optional[datetime] = None


class Record(SectionLevels):
    id: int
    created_at: Optional[datetime] = None


# Request bodies

class TemplateCreate(FormModel):
    template_name: str = Field(alias="templateName")


class TabCreate(FormModel):
    name: str
    parent_tab_id: Optional[str] = None


class ColumnCreate(FormModel):
    name: str
    type: ColumnType = ColumnType.TEXT
    is_calculated: bool = Field(False, alias="isCalculated")
    calculation_formula: Optional[str] = Field(None, alias="calculationFormula")
    endpoint: Optional[str] = None


class ColumnUpdate(FormModel):
    """Column edits. The column type cannot be changed once created."""
    name: Optional[str] = None
    is_calculated: Optional[bool] = Field(None, alias="isCalculated")
    calculation_formula: Optional[str] = Field(None, alias="calculationFormula")
    endpoint: Optional[str] = None


class FieldCreate(FormModel):
    field_name: str
    field_type: FieldType = FieldType.TEXT
    field_value: Any = None
    field_placeholder: Optional[str] = None
    is_required: bool = False
    # A list of options, or one option per line
    field_options: Optional[Union[List[Any], str]] = None
    endpoint: Optional[str] = None
    columns: List[ColumnCreate] = Field(default_factory=list)
    row_count: int = Field(5, alias="rowCount", ge=0, le=MAX_TABLE_ROWS)


class FieldUpdate(FormModel):
    """Field edits. The field type cannot be changed once created."""
    field_name: Optional[str] = None
    field_value: Any = None
    field_placeholder: Optional[str] = None
    is_required: Optional[bool] = None
    field_options: Optional[Union[List[Any], str]] = None
    endpoint: Optional[str] = None
    row_count: Optional[int] = Field(None, alias="rowCount", ge=0, le=MAX_TABLE_ROWS)


class RecordCreate(FormModel):
    header: List[Tab] = Field(default_factory=list)
    lines: List[Tab] = Field(default_factory=list)
    line_details: List[Tab] = Field(default_factory=list, alias="lineDetails")


class RecordUpdate(RecordCreate):
    pass


class FieldValueEdit(FormModel):
    forest: List[Tab]
    tab_id: str
    field_id: str
    value: Any = None


class CellValueEdit(FormModel):
    forest: List[Tab]
    tab_id: str
    field_id: str
    row_index: int = Field(ge=0, lt=MAX_TABLE_ROWS)
    column_name: str
    value: Any = None


class RowInsert(FormModel):
    forest: List[Tab]
    tab_id: str
    field_id: str
    # Defaults to the table's own columns
    columns: Optional[List[Column]] = None


class AggregateRequest(FormModel):
    lines: List[Tab] = Field(default_factory=list)
    line_details: List[Tab] = Field(default_factory=list, alias="lineDetails")


class Option(FormModel):
    value: Any
    label: Any


class OptionPage(FormModel):
    options: List[Option] = Field(default_factory=list)
    has_more: bool = Field(False, alias="hasMore")
    next_page_token: Optional[str] = Field(None, alias="nextPageToken")
    # True when a newer query for the same dropdown started first
    superseded: bool = False
