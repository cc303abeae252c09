from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from campusid.dependencies import get_ledger
from campusid.services.ledger import LedgerService
from ledger.reconciliation import MATCH_CONFIDENCE_THRESHOLD, parse_clock

router = APIRouter()


class LateThresholdUpdate(BaseModel):
    late_threshold: str


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config")
def ledger_config(ledger: LedgerService = Depends(get_ledger)):
    return {
        "late_threshold": ledger.late_threshold.strftime("%H:%M"),
        "manual_entry_time": ledger.manual_entry_time.strftime("%H:%M"),
        "match_threshold": MATCH_CONFIDENCE_THRESHOLD,
        "autosave_interval_seconds": ledger.autosave.interval_seconds,
    }


@router.put("/settings/late-threshold")
def set_late_threshold(payload: LateThresholdUpdate, ledger: LedgerService = Depends(get_ledger)):
    try:
        threshold = parse_clock(payload.late_threshold)
    except ValueError:
        raise HTTPException(status_code=400, detail="Late threshold must be HH:MM.")
    ledger.late_threshold = threshold
    return {"late_threshold": threshold.strftime("%H:%M")}
