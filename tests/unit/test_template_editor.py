import pytest

from formbuilder.schemas.form import ColumnCreate, ColumnUpdate, FieldCreate, FieldUpdate, Level
from formbuilder.services.form_repository import TemplateRepository
from formbuilder.services.template_editor import TemplateEditor, normalize_options
from formbuilder.utils.exceptions import (
    DuplicateNameError,
    EmptyNameError,
    FormElementNotFoundError,
    FormValidationError,
    PersistenceError,
    TemplateNotFoundError,
)


@pytest.fixture
def repository(db_session):
    return TemplateRepository(db_session)


@pytest.fixture
def editor(repository):
    return TemplateEditor(repository)


@pytest.fixture
def template(repository):
    return repository.create_template("Invoice")


def all_names(template):
    names = []
    for level in (Level.HEADER, Level.LINES):
        for tab in template.forest(level):
            for field in tab.fields:
                names.append(field.field_name.casefold())
                names.extend(column.name.casefold() for column in field.columns)
    return names


def test_create_template_starts_empty(template):
    assert template.template_name == "Invoice"
    assert template.header == [] and template.lines == [] and template.line_details == []


def test_blank_template_name_is_rejected(repository):
    with pytest.raises(EmptyNameError):
        repository.create_template("   ")
    assert repository.list_templates() == []


def test_add_tab_and_field(editor, repository, template):
    tab = editor.add_tab(template.id, Level.HEADER, "  General ")
    assert tab.name == "General"

    updated = editor.add_field(template.id, "header", tab.id, FieldCreate(field_name="Customer"))
    assert [t.name for t in updated.header] == ["General"]
    field = updated.header[0].fields[0]
    assert field.field_name == "Customer"
    assert field.field_type == "text"
    assert repository.get_template(template.id) == updated


def test_add_tab_requires_name(editor, template):
    with pytest.raises(EmptyNameError):
        editor.add_tab(template.id, "header", "")


def test_add_tab_with_unknown_parent(editor, template):
    with pytest.raises(FormElementNotFoundError):
        editor.add_tab(template.id, "header", "Child", parent_tab_id="missing")


def test_unknown_template(editor):
    with pytest.raises(TemplateNotFoundError):
        editor.add_tab(999, "header", "General")


def test_duplicate_name_across_levels_is_rejected(editor, repository, template):
    header_tab = editor.add_tab(template.id, "header", "General")
    lines_tab = editor.add_tab(template.id, "lines", "Items")
    editor.add_field(template.id, "header", header_tab.id, FieldCreate(field_name="Customer"))
    before = repository.get_template(template.id)

    with pytest.raises(DuplicateNameError):
        editor.add_field(template.id, "lines", lines_tab.id, FieldCreate(field_name="customer"))
    with pytest.raises(DuplicateNameError):
        editor.add_column(template.id, "lines", lines_tab.id, [ColumnCreate(name="CUSTOMER")])

    assert repository.get_template(template.id) == before


def test_line_details_names_do_not_count(editor, template):
    details_tab = editor.add_tab(template.id, "lineDetails", "Summary")
    header_tab = editor.add_tab(template.id, "header", "General")
    editor.add_field(template.id, "lineDetails", details_tab.id, FieldCreate(field_name="Notes"))
    updated = editor.add_field(template.id, "header", header_tab.id, FieldCreate(field_name="Notes"))
    assert updated.header[0].fields[0].field_name == "Notes"


def test_duplicate_within_one_batch_is_rejected(editor, repository, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    before = repository.get_template(template.id)

    with pytest.raises(DuplicateNameError):
        editor.add_column(template.id, "lines", tab.id, [ColumnCreate(name="Price"), ColumnCreate(name="price")])
    assert repository.get_template(template.id) == before


def test_add_column_requires_columns(editor, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    with pytest.raises(FormValidationError):
        editor.add_column(template.id, "lines", tab.id, [])


def test_add_column_creates_table(editor, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    updated = editor.add_column(template.id, "lines", tab.id, [
        ColumnCreate(name="Quantity", type="number"),
        ColumnCreate(name="Price", type="number"),
    ])
    table = updated.lines[0].fields[0]
    assert table.field_name == "New Table"
    assert table.field_type == "table"
    assert table.row_count == 5
    assert table.table_data == []
    assert [c.name for c in table.columns] == ["Quantity", "Price"]
    assert len({c.id for c in table.columns}) == 2

    # Further columns go to the same table
    updated = editor.add_column(template.id, "lines", tab.id, [
        ColumnCreate(name="Total", is_calculated=True, calculation_formula="Quantity * Price"),
    ])
    assert len(updated.lines[0].fields) == 1
    total = updated.lines[0].fields[0].columns[-1]
    assert total.is_calculated is True
    assert total.calculation_formula == "Quantity * Price"


def test_second_new_table_gets_unique_name(editor, template):
    first = editor.add_tab(template.id, "lines", "Items")
    second = editor.add_tab(template.id, "lines", "Services")
    editor.add_column(template.id, "lines", first.id, [ColumnCreate(name="A")])
    updated = editor.add_column(template.id, "lines", second.id, [ColumnCreate(name="B")])

    assert updated.lines[1].fields[0].field_name == "New Table 2"
    names = all_names(updated)
    assert len(names) == len(set(names))


def test_add_table_field_with_columns(editor, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    updated = editor.add_field(template.id, "lines", tab.id, FieldCreate(
        field_name="Items",
        field_type="table",
        columns=[ColumnCreate(name="Qty")],
        row_count=3,
    ))
    table = updated.lines[0].fields[0]
    assert table.row_count == 3
    assert table.columns[0].name == "Qty"
    assert table.columns[0].id


def test_table_field_column_clashing_with_its_own_name(editor, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    with pytest.raises(DuplicateNameError):
        editor.add_field(template.id, "lines", tab.id, FieldCreate(
            field_name="Items", field_type="table", columns=[ColumnCreate(name="items")],
        ))


def test_options_from_text(editor, template):
    tab = editor.add_tab(template.id, "header", "General")
    updated = editor.add_field(template.id, "header", tab.id, FieldCreate(
        field_name="Status",
        field_type="select",
        field_options="Open\n\n  Closed \n",
    ))
    assert updated.header[0].fields[0].field_options == ["Open", "Closed"]


def test_normalize_options_ignores_non_option_types():
    assert normalize_options("text", ["a"]) is None
    assert normalize_options("radio", None) == []
    assert normalize_options("checkbox", ("a", "b")) == ["a", "b"]


def test_edit_field_keeps_id_and_type(editor, template):
    tab = editor.add_tab(template.id, "header", "General")
    added = editor.add_field(template.id, "header", tab.id, FieldCreate(field_name="Amount", field_type="number"))
    field_id = added.header[0].fields[0].id

    updated = editor.edit_field(template.id, "header", tab.id, field_id, FieldUpdate(
        field_name="Net Amount", is_required=True, field_placeholder="0.00",
    ))
    field = updated.header[0].fields[0]
    assert field.id == field_id
    assert field.field_type == "number"
    assert field.field_name == "Net Amount"
    assert field.is_required is True
    assert field.field_placeholder == "0.00"


def test_edit_field_may_keep_its_own_name(editor, template):
    tab = editor.add_tab(template.id, "header", "General")
    added = editor.add_field(template.id, "header", tab.id, FieldCreate(field_name="Amount"))
    field_id = added.header[0].fields[0].id

    updated = editor.edit_field(template.id, "header", tab.id, field_id, FieldUpdate(field_name="amount"))
    assert updated.header[0].fields[0].field_name == "amount"


def test_edit_unknown_field(editor, template):
    tab = editor.add_tab(template.id, "header", "General")
    with pytest.raises(FormElementNotFoundError):
        editor.edit_field(template.id, "header", tab.id, "missing", FieldUpdate(field_name="X"))


def test_delete_field(editor, template):
    tab = editor.add_tab(template.id, "header", "General")
    added = editor.add_field(template.id, "header", tab.id, FieldCreate(field_name="Amount"))
    updated = editor.delete_field(template.id, "header", tab.id, added.header[0].fields[0].id)
    assert updated.header[0].fields == []


def test_delete_tab_cascades_to_children(editor, template):
    root = editor.add_tab(template.id, "header", "Root")
    child = editor.add_tab(template.id, "header", "Child", parent_tab_id=root.id)
    editor.add_tab(template.id, "header", "Grandchild", parent_tab_id=child.id)
    other = editor.add_tab(template.id, "header", "Other")

    updated = editor.delete_tab(template.id, "header", root.id)
    assert [tab.id for tab in updated.header] == [other.id]


def test_edit_column(editor, repository, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    added = editor.add_column(template.id, "lines", tab.id, [
        ColumnCreate(name="Qty", type="number"),
        ColumnCreate(name="Total", is_calculated=True, calculation_formula="Qty * 2"),
    ])
    table = added.lines[0].fields[0]
    qty, total = table.columns
    repository.overwrite_section_forest(template.id, "lines", [
        added.lines[0].model_copy(update={"fields": [table.model_copy(update={"table_data": [{"Qty": 4, "Total": 8}]})]}),
    ])

    updated = editor.edit_column(template.id, "lines", tab.id, qty.id, ColumnUpdate(name="Quantity"))
    table = updated.lines[0].fields[0]
    assert table.columns[0].name == "Quantity"
    assert table.columns[0].id == qty.id
    assert table.columns[0].type == "number"
    assert table.table_data == [{"Quantity": 4, "Total": 8}]

    updated = editor.edit_column(template.id, "lines", tab.id, total.id, ColumnUpdate(is_calculated=False))
    column = updated.lines[0].fields[0].columns[1]
    assert column.is_calculated is False
    assert column.calculation_formula is None


def test_edit_unknown_column(editor, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    with pytest.raises(FormElementNotFoundError):
        editor.edit_column(template.id, "lines", tab.id, "missing", ColumnUpdate(name="X"))


def test_delete_column_drops_cells(editor, repository, template):
    tab = editor.add_tab(template.id, "lines", "Items")
    added = editor.add_column(template.id, "lines", tab.id, [ColumnCreate(name="A"), ColumnCreate(name="B")])
    table = added.lines[0].fields[0]
    repository.overwrite_section_forest(template.id, "lines", [
        added.lines[0].model_copy(update={"fields": [table.model_copy(update={"table_data": [{"A": 1, "B": 2}]})]}),
    ])

    updated = editor.delete_column(template.id, "lines", tab.id, table.id, table.columns[0].id)
    table = updated.lines[0].fields[0]
    assert [c.name for c in table.columns] == ["B"]
    assert table.table_data == [{"B": 2}]


def test_failed_write_leaves_template_unchanged(editor, repository, template, monkeypatch):
    tab = editor.add_tab(template.id, "header", "General")
    before = repository.get_template(template.id)

    def fail(*args, **kwargs):
        raise PersistenceError("Template could not be updated")

    monkeypatch.setattr(repository, "overwrite_section_forest", fail)
    with pytest.raises(PersistenceError):
        editor.add_field(template.id, "header", tab.id, FieldCreate(field_name="Customer"))

    monkeypatch.undo()
    assert repository.get_template(template.id) == before
