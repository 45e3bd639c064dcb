import logging
from typing import List, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formbuilder.models.models import FormRecord, FormTemplate
from formbuilder.schemas.form import Level, Record, SectionLevels, Tab, Template
from formbuilder.utils.exceptions import (
    EmptyNameError,
    PersistenceError,
    RecordNotFoundError,
    TemplateNotFoundError,
)
from formbuilder.utils.forest_codec import decode_forest, encode_forest

logger = logging.getLogger(__name__)

_LEVEL_COLUMNS = {
    Level.HEADER: "header",
    Level.LINES: "lines",
    Level.LINE_DETAILS: "line_details",
}


def _template_from_row(row: FormTemplate) -> Template:
    return Template(
        id=row.id,
        template_name=row.template_name,
        header=decode_forest(row.header),
        lines=decode_forest(row.lines),
        line_details=decode_forest(row.line_details),
        created_at=row.created_at,
    )


def _record_from_row(row: FormRecord) -> Record:
    return Record(
        id=row.id,
        header=decode_forest(row.header),
        lines=decode_forest(row.lines),
        line_details=decode_forest(row.line_details),
        created_at=row.created_at,
    )


class TemplateRepository:
    """
    Data access for form templates.

    Structural edits go through ``overwrite_section_forest``, which replaces a
    whole level in one write. There is no merge: the last writer wins.
    """

    def __init__(self, db_session: Session):
        """
        Initialize with a database session

        Args:
            db_session: SQLAlchemy session
        """
        self.db = db_session

    def _get_row(self, template_id: int) -> FormTemplate:
        row = self.db.get(FormTemplate, template_id)
        if row is None:
            raise TemplateNotFoundError(template_id)
        return row

    def list_templates(self) -> List[Template]:
        try:
            rows = self.db.query(FormTemplate).order_by(FormTemplate.id).all()
            return [_template_from_row(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving templates: {str(e)}")
            raise PersistenceError("Templates could not be loaded")

    def get_template(self, template_id: int) -> Template:
        try:
            return _template_from_row(self._get_row(template_id))
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving template {template_id}: {str(e)}")
            raise PersistenceError(f"Template {template_id} could not be loaded")

    def create_template(self, template_name: str) -> Template:
        """
        Create a template with empty header, lines and line details

        Args:
            template_name: Display name, must not be blank

        Returns:
            Created template
        """
        name = (template_name or "").strip()
        if not name:
            raise EmptyNameError("Template name")

        try:
            row = FormTemplate(template_name=name, header=[], lines=[], line_details=[])
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info(f"Created template {row.id} ({name})")
            return _template_from_row(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating template: {str(e)}")
            raise PersistenceError("Template could not be created")

    def delete_template(self, template_id: int) -> None:
        try:
            row = self._get_row(template_id)
            self.db.delete(row)
            self.db.commit()
            logger.info(f"Deleted template {template_id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting template {template_id}: {str(e)}")
            raise PersistenceError(f"Template {template_id} could not be deleted")

    def overwrite_section_forest(
        self,
        template_id: int,
        level: Union[Level, str],
        forest: List[Tab],
    ) -> Template:
        """
        Replace one level of a template with a new forest in a single write

        Args:
            template_id: Template ID
            level: header, lines or lineDetails
            forest: The complete new forest for that level

        Returns:
            The template as stored after the write
        """
        column = _LEVEL_COLUMNS[Level(level)]
        try:
            row = self._get_row(template_id)
            setattr(row, column, encode_forest(forest))
            self.db.commit()
            self.db.refresh(row)
            return _template_from_row(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating {Level(level).value} of template {template_id}: {str(e)}")
            raise PersistenceError(f"Template {template_id} could not be updated")


class RecordRepository:
    """Data access for filled-in forms. Updates overwrite the whole record."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get_row(self, record_id: int) -> FormRecord:
        row = self.db.get(FormRecord, record_id)
        if row is None:
            raise RecordNotFoundError(record_id)
        return row

    def list_records(self) -> List[Record]:
        try:
            rows = self.db.query(FormRecord).order_by(FormRecord.id).all()
            return [_record_from_row(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving records: {str(e)}")
            raise PersistenceError("Records could not be loaded")

    def get_record(self, record_id: int) -> Record:
        try:
            return _record_from_row(self._get_row(record_id))
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving record {record_id}: {str(e)}")
            raise PersistenceError(f"Record {record_id} could not be loaded")

    def save_record(self, record: SectionLevels) -> Record:
        try:
            row = FormRecord(
                header=encode_forest(record.header),
                lines=encode_forest(record.lines),
                line_details=encode_forest(record.line_details),
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info(f"Saved record {row.id}")
            return _record_from_row(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error saving record: {str(e)}")
            raise PersistenceError("Record could not be created")

    def update_record(self, record_id: int, record: SectionLevels) -> None:
        try:
            row = self._get_row(record_id)
            row.header = encode_forest(record.header)
            row.lines = encode_forest(record.lines)
            row.line_details = encode_forest(record.line_details)
            self.db.commit()
            logger.info(f"Updated record {record_id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating record {record_id}: {str(e)}")
            raise PersistenceError(f"Record {record_id} could not be updated")

    def delete_record(self, record_id: int) -> None:
        try:
            row = self._get_row(record_id)
            self.db.delete(row)
            self.db.commit()
            logger.info(f"Deleted record {record_id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting record {record_id}: {str(e)}")
            raise PersistenceError(f"Record {record_id} could not be deleted")
