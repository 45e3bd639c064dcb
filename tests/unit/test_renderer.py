import json
from datetime import datetime

from formbuilder.schemas.form import FormField, Record, SectionLevels, Tab, Template
from formbuilder.services.form_repository import RecordRepository
from formbuilder.services.renderer import (
    FormEditSession,
    SectionRenderer,
    build_preview,
    build_record_grid,
    build_tree_view,
    render_preview_html,
)
from formbuilder.utils.exceptions import PersistenceError


class FailingRepository:
    def save_record(self, record):
        raise PersistenceError("Record could not be created")

    def update_record(self, record_id, record):
        raise PersistenceError(f"Record {record_id} could not be updated")


def make_template(lines_forest):
    return Template(
        id=1,
        template_name="Invoice",
        header=[
            Tab(id="h1", name="General", fields=[
                FormField(id="cust", field_name="Customer", field_placeholder="Name", is_required=True),
                FormField(id="status", field_name="Status", field_type="select", field_options=["Open", "Closed"]),
            ]),
            Tab(id="h2", name="Extra", parent_tab_id="h1"),
        ],
        lines=lines_forest,
    )


def test_active_tab_defaults_to_first():
    renderer = SectionRenderer([Tab(id="a", name="A"), Tab(id="b", name="B")])
    assert renderer.active_tab_id == "a"
    view = renderer.view()
    assert view["show_tab_strip"] is True
    assert view["message"] == "No fields defined for this tab."


def test_active_tab_falls_back_when_removed():
    renderer = SectionRenderer([Tab(id="a", name="A"), Tab(id="b", name="B")])
    renderer.select_tab("b")
    assert renderer.active_tab_id == "b"

    renderer.set_forest([Tab(id="a", name="A")])
    assert renderer.active_tab_id == "a"
    assert renderer.view()["show_tab_strip"] is False

    renderer.set_forest([])
    assert renderer.active_tab_id is None
    assert renderer.view()["message"] == "No fields defined."


def test_select_unknown_tab_is_ignored():
    renderer = SectionRenderer([Tab(id="a", name="A")])
    renderer.select_tab("zzz")
    assert renderer.active_tab_id == "a"


def test_field_edit_reaches_callback():
    forest = [Tab(id="a", name="A", fields=[FormField(id="f", field_name="Customer")])]
    changes = []
    renderer = SectionRenderer(forest, on_change=changes.append)

    renderer.change_field("a", "f", "ACME")
    assert changes[-1][0].fields[0].field_value == "ACME"
    assert renderer.view()["fields"][0]["value"] == "ACME"


def test_calculated_field_and_column_are_read_only(lines_forest):
    summary = [Tab(id="s", name="Summary", fields=[
        FormField(id="sum", field_name="Total Sum", field_value="1.00", is_calculated=True),
    ])]
    changes = []
    renderer = SectionRenderer(summary, on_change=changes.append)
    renderer.change_field("s", "sum", "99")
    assert changes == []
    assert renderer.view()["fields"][0]["read_only"] is True

    lines = SectionRenderer(lines_forest, on_change=changes.append)
    lines.change_cell("lines-tab", "items", 0, "Total", 5)
    assert changes == []
    columns = lines.view()["fields"][0]["columns"]
    assert [c["read_only"] for c in columns] == [False, False, True]


def test_table_view(lines_forest):
    renderer = SectionRenderer(lines_forest)
    renderer.insert_row("lines-tab", "items")
    renderer.change_cell("lines-tab", "items", 0, "Quantity", "2")
    renderer.change_cell("lines-tab", "items", 0, "Price", "5")

    table = renderer.view()["fields"][0]
    assert table["widget"] == "table"
    assert table["can_insert_row"] is True
    assert table["rows"] == [["2", "5", 10]]


def test_edit_session_refreshes_totals(db_session, lines_forest):
    session = FormEditSession.from_template(make_template(lines_forest), RecordRepository(db_session))
    assert len(session.state.lines[0].fields[0].table_data) == 5

    lines = session.renderer("lines")
    lines.change_cell("lines-tab", "items", 0, "Quantity", 3)
    lines.change_cell("lines-tab", "items", 0, "Price", 10)

    details = session.state.line_details
    assert details[0].name == "Summary"
    assert {f.field_name: f.field_value for f in details[0].fields} == {
        "Total Sum": "30.00",
        "Total After Discount": "30.00",
    }
    assert session.renderer("lineDetails").view()["fields"][0]["read_only"] is True


def test_save_creates_then_updates(db_session, lines_forest):
    repository = RecordRepository(db_session)
    session = FormEditSession.from_template(make_template(lines_forest), repository)
    session.renderer("header").change_field("h1", "cust", "ACME")

    first = session.save()
    assert first.kind == "success"
    assert first.message == "Form data saved successfully!"
    record_id = session.record_id
    assert record_id is not None

    session.renderer("header").change_field("h1", "cust", "Globex")
    second = session.save()
    assert second.message == "Entry updated successfully!"
    assert session.record_id == record_id
    assert repository.get_record(record_id).header[0].fields[0].field_value == "Globex"


def test_failed_save_keeps_local_edits(lines_forest):
    record = Record(id=7, header=[Tab(id="h", name="General", fields=[FormField(id="f", field_name="Customer")])])
    session = FormEditSession.from_record(record, FailingRepository())
    session.renderer("header").change_field("h", "f", "ACME")

    notification = session.save()
    assert notification.kind == "error"
    assert notification.message.startswith("Error saving form data")
    assert session.state.header[0].fields[0].field_value == "ACME"
    assert session.notifications == [notification]


def test_tree_view(lines_forest):
    tree = build_tree_view(make_template(lines_forest))
    levels = {level["level"]: level for level in tree["levels"]}
    assert [level["label"] for level in tree["levels"]] == ["Header", "Lines", "Line Details"]
    assert levels["header"]["count"] == 2
    assert levels["lineDetails"]["count"] == 0

    root = levels["header"]["tabs"]
    assert [tab["id"] for tab in root] == ["h1"]
    assert root[0]["children"][0]["id"] == "h2"
    table = levels["lines"]["tabs"][0]["fields"][0]
    assert [c["name"] for c in table["columns"]] == ["Quantity", "Price", "Total"]
    assert table["columns"][2]["formula"] == "Quantity * Price"


def test_preview(lines_forest):
    preview = build_preview(make_template(lines_forest))
    assert [s["level"] for s in preview["sections"]] == ["header", "lines"]
    fields = preview["sections"][0]["tabs"][0]["fields"]
    assert fields[0]["placeholder"] == "Name"
    assert fields[0]["required"] is True
    assert fields[1]["options"] == "Open, Closed"

    html = render_preview_html(make_template(lines_forest))
    assert "Invoice" in html
    assert "Customer" in html


def test_preview_html_escapes_names():
    template = Template(id=2, template_name="<script>alert(1)</script>")
    html = render_preview_html(template)
    assert "<script>alert(1)</script>" not in html
    assert build_preview(template)["is_empty"] is True


def test_record_grid():
    created = datetime(2024, 1, 1)
    records = [
        Record(id=1, created_at=created, header=[
            Tab(id="a", name="A", fields=[FormField(field_name="Customer", field_value="ACME")]),
            Tab(id="b", name="B", fields=[FormField(field_name="Customer", field_value="Later")]),
        ]),
        Record(id=2, created_at=created, header=[
            Tab(id="a", name="A", fields=[
                FormField(field_name="Date", field_value="2024-01-02"),
                FormField(field_name="Customer"),
            ]),
        ]),
    ]
    grid = build_record_grid(records)
    assert grid["all_headers"] == ["ID", "Customer", "Date"]
    assert grid["rows"] == [
        {"ID": 1, "Customer": "Later", "Date": ""},
        {"ID": 2, "Customer": "", "Date": "2024-01-02"},
    ]

    narrowed = build_record_grid(records, visible=["ID", "Date"])
    assert narrowed["headers"] == ["ID", "Date"]
    assert narrowed["all_headers"] == ["ID", "Customer", "Date"]
    assert narrowed["rows"][1] == {"ID": 2, "Date": "2024-01-02"}


def test_record_grid_without_records():
    assert build_record_grid([]) == {"all_headers": ["ID"], "headers": ["ID"], "rows": []}


def test_tree_view_cuts_parent_cycles():
    template = Template(id=3, template_name="Loop", header=[
        Tab(id="a", name="A", parent_tab_id="b"),
        Tab(id="b", name="B", parent_tab_id="a"),
        Tab(id="c", name="C"),
        Tab(id="d", name="D", parent_tab_id="d"),
    ])
    tree = build_tree_view(template)
    roots = tree["levels"][0]["tabs"]

    assert [tab["id"] for tab in roots] == ["c", "d", "a"]
    assert [tab["id"] for tab in roots[2]["children"]] == ["b"]
    assert roots[2]["children"][0]["children"] == []
    # The view is plain data again
    assert json.loads(json.dumps(tree)) == tree
