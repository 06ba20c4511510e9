"""Translation history endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from babeldesk.api.deps import get_history
from babeldesk.errors import JobNotFoundError
from babeldesk.jobs.models import HistoryRecord
from babeldesk.storage.history import HistoryStore

router = APIRouter()


@router.get("/history", response_model=List[HistoryRecord])
async def list_history(history: HistoryStore = Depends(get_history)):
    return history.list()


@router.get("/history/{record_id}", response_model=HistoryRecord)
async def get_history_record(record_id: str, history: HistoryStore = Depends(get_history)):
    record = history.get(record_id)
    if record is None:
        raise JobNotFoundError(f"History record '{record_id}' not found")
    return record


@router.delete("/history/{record_id}", response_model=List[HistoryRecord])
async def remove_history_record(record_id: str, history: HistoryStore = Depends(get_history)):
    """Remove a record and return the remaining history."""
    return history.remove(record_id)
