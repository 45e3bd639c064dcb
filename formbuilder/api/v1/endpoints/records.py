from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from formbuilder.db.local_session import DatabaseManager
from formbuilder.schemas.form import Record, RecordCreate, RecordUpdate
from formbuilder.services.form_repository import RecordRepository
from formbuilder.services.renderer import build_record_grid

router = APIRouter()
get_session = DatabaseManager().get_session


@router.get("/", response_model=List[Record])
async def list_records(db: Session = Depends(get_session)):
    return RecordRepository(db).list_records()


@router.get("/grid")
async def get_record_grid(
    visible: Optional[List[str]] = Query(None, description="Column headers to show"),
    db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Browse saved records as a grid of header field values.
    """
    return build_record_grid(RecordRepository(db).list_records(), visible)


@router.post("/", response_model=Record, status_code=status.HTTP_201_CREATED)
async def save_record(record_data: RecordCreate, db: Session = Depends(get_session)):
    """
    Save a filled-in form as a new record.
    """
    return RecordRepository(db).save_record(record_data)


@router.get("/{record_id}", response_model=Record)
async def get_record(record_id: int, db: Session = Depends(get_session)):
    return RecordRepository(db).get_record(record_id)


@router.put("/{record_id}", response_model=Record)
async def update_record(record_id: int, record_data: RecordUpdate, db: Session = Depends(get_session)):
    """
    Overwrite a record's header, lines and line details.
    """
    repository = RecordRepository(db)
    repository.update_record(record_id, record_data)
    return repository.get_record(record_id)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(record_id: int, db: Session = Depends(get_session)):
    RecordRepository(db).delete_record(record_id)
    return None
