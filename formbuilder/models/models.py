from datetime import datetime
from typing import Any, List

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy.sql import func

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
SectionForestType = JSON().with_variant(JSONB(), "postgresql")


class FormTemplate(Base):
    """A form schema: three section forests without record data"""
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    template_name: Mapped[str] = mapped_column("templateName", String, nullable=False)

    # Section forests. Older rows may hold JSON text instead of arrays.
    header: Mapped[Any] = mapped_column(SectionForestType, nullable=False, default=list)
    lines: Mapped[Any] = mapped_column(SectionForestType, nullable=False, default=list)
    line_details: Mapped[Any] = mapped_column("lineDetails", SectionForestType, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class FormRecord(Base):
    """
    A filled-in form. Records are self-contained snapshots and carry no
    reference to the template that produced them.
    """
    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    header: Mapped[Any] = mapped_column(SectionForestType, nullable=False, default=list)
    lines: Mapped[Any] = mapped_column(SectionForestType, nullable=False, default=list)
    line_details: Mapped[Any] = mapped_column("lineDetails", SectionForestType, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
