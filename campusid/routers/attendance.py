import logging
from datetime import date

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from campusid.dependencies import get_ledger
from campusid.images import read_image_upload
from campusid.services.ledger import LedgerService, entry_payload
from ledger.errors import OracleError
from ledger.models import DailyStatus, local_date
from ledger.store import daily_report, summarize

logger = logging.getLogger(__name__)

router = APIRouter()


class StatusUpdate(BaseModel):
    user_id: str
    status: DailyStatus
    day: date = Field(alias="date")


@router.post("/attendance/recognize")
async def recognize_attendance(
    ledger: LedgerService = Depends(get_ledger),
    file: UploadFile = File(...),
):
    probe = await read_image_upload(file)
    try:
        return await ledger.recognize(probe)
    except OracleError as e:
        logger.error("Recognition failed: %s", e)
        raise HTTPException(status_code=502, detail="Recognition error. Please try again.")


@router.get("/attendance")
def attendance(
    day: date | None = Query(default=None, alias="date"),
    ledger: LedgerService = Depends(get_ledger),
):
    entries = ledger.store.entries()
    if day is not None:
        entries = tuple(e for e in entries if e.day == day)
    return [entry_payload(e) for e in entries]


@router.get("/attendance/daily")
def attendance_daily(
    day: date | None = Query(default=None, alias="date"),
    ledger: LedgerService = Depends(get_ledger),
):
    target = day or local_date(ledger.clock())
    rows = daily_report(ledger.store.identities(), ledger.store.entries(), target)
    return {
        "summary": summarize(rows, target),
        "rows": rows,
    }


@router.put("/attendance/status")
def update_attendance_status(payload: StatusUpdate, ledger: LedgerService = Depends(get_ledger)):
    mutation = ledger.update_status(payload.user_id, payload.status, payload.day)
    return {
        "ok": True,
        "action": mutation.kind,
        "entry": entry_payload(mutation.entry) if mutation.entry else None,
    }


@router.get("/dashboard")
def dashboard(ledger: LedgerService = Depends(get_ledger)):
    return ledger.dashboard()
