import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import BaseModel

from campusid.dependencies import get_ledger
from campusid.services.ledger import LedgerService
from ledger.codec import (
    encode_attendance_report,
    encode_entries,
    encode_identities,
    encode_roster_listing,
)
from ledger.errors import FormatError, PersistenceError

logger = logging.getLogger(__name__)

router = APIRouter()


class StorageConnect(BaseModel):
    path: str


def _csv_download(content: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -----------------------------
# Storage target + autosave
# -----------------------------
@router.post("/storage/connect")
async def connect_storage(payload: StorageConnect, ledger: LedgerService = Depends(get_ledger)):
    folder = payload.path.strip()
    if not folder:
        raise HTTPException(status_code=400, detail="Folder path is required.")

    try:
        result = await ledger.connect(Path(folder).expanduser())
    except FormatError as e:
        logger.warning("Refusing to connect %s: %s", folder, e)
        raise HTTPException(status_code=400, detail=f"Failed to parse existing files: {e}")
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "ok": True,
        "message": f"Connected to '{Path(result['target']).name}'. Auto-load/save enabled.",
        **result,
    }


@router.get("/storage/status")
def storage_status(ledger: LedgerService = Depends(get_ledger)):
    return ledger.autosave.status()


@router.post("/storage/save")
async def save_storage(ledger: LedgerService = Depends(get_ledger)):
    if ledger.autosave.gateway is None:
        raise HTTPException(status_code=400, detail="No storage folder connected.")
    ok = await ledger.autosave.flush()
    if not ok:
        detail = ledger.autosave.last_error or "Changes were made while saving; retry."
        raise HTTPException(status_code=503, detail=f"Auto-save failed: {detail}")
    return {"ok": True, **ledger.autosave.status()}


# -----------------------------
# Backups + exports
# -----------------------------
@router.get("/export/users")
def export_users(ledger: LedgerService = Depends(get_ledger)):
    identities = ledger.store.identities()
    if not identities:
        raise HTTPException(status_code=400, detail="Database is empty.")
    stamp = ledger.clock().date().isoformat()
    return _csv_download(encode_identities(identities), f"campus_users_backup_{stamp}.csv")


@router.get("/export/attendance")
def export_attendance(ledger: LedgerService = Depends(get_ledger)):
    entries = ledger.store.entries()
    if not entries:
        raise HTTPException(status_code=400, detail="No records.")
    stamp = ledger.clock().date().isoformat()
    return _csv_download(encode_entries(entries), f"campus_attendance_backup_{stamp}.csv")


@router.get("/export/roster")
def export_roster(ledger: LedgerService = Depends(get_ledger)):
    identities = ledger.store.identities()
    if not identities:
        raise HTTPException(status_code=400, detail="No users.")
    return _csv_download(encode_roster_listing(identities), "student_list.csv")


@router.get("/export/report")
def export_report(ledger: LedgerService = Depends(get_ledger)):
    entries = ledger.store.entries()
    if not entries:
        raise HTTPException(status_code=400, detail="No records.")
    return _csv_download(encode_attendance_report(entries, ledger.store.identities()), "report.csv")


# -----------------------------
# Restore
# -----------------------------
@router.post("/import/users")
async def import_users(ledger: LedgerService = Depends(get_ledger), file: UploadFile = File(...)):
    data = await file.read()
    try:
        count = ledger.import_identities(data)
    except FormatError as e:
        logger.warning("Roster import rejected: %s", e)
        raise HTTPException(status_code=400, detail="Failed to parse file.")
    return {"ok": True, "message": "Database restored.", "count": count}


@router.post("/import/attendance")
async def import_attendance(ledger: LedgerService = Depends(get_ledger), file: UploadFile = File(...)):
    data = await file.read()
    try:
        count = ledger.import_entries(data)
    except FormatError as e:
        logger.warning("Attendance import rejected: %s", e)
        raise HTTPException(status_code=400, detail="Failed to parse file.")
    return {"ok": True, "message": "History restored.", "count": count}
