import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from campusid.dependencies import get_ledger
from campusid.images import read_image_upload
from campusid.services.ledger import LedgerService, RegistrationBlocked, identity_payload
from ledger.errors import OracleError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users")
def users(ledger: LedgerService = Depends(get_ledger)):
    return [identity_payload(u) for u in ledger.store.identities()]


@router.get("/users/{user_id}")
def user_detail(user_id: str, include_image: bool = False, ledger: LedgerService = Depends(get_ledger)):
    identity = ledger.store.get_identity(user_id)
    if identity is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return identity_payload(identity, include_image=include_image)


@router.post("/users")
async def register_user(
    ledger: LedgerService = Depends(get_ledger),
    name: str = Form(...),
    role: str = Form(...),
    department: str = Form(...),
    file: UploadFile = File(...),
):
    name = name.strip()
    role = role.strip()
    department = department.strip()

    if not name or not role or not department:
        raise HTTPException(status_code=400, detail="All fields are required.")

    image = await read_image_upload(file)

    try:
        identity = await ledger.register(name, role, department, image)
    except RegistrationBlocked as e:
        raise HTTPException(
            status_code=409,
            detail=f"Registration blocked: face already matches {e.existing.name}.",
        )
    except OracleError as e:
        logger.error("Registration verification failed: %s", e)
        raise HTTPException(status_code=502, detail="Verification failed due to an error. Please try again.")

    return {
        **identity_payload(identity),
        "message": f"Successfully registered {identity.name}.",
    }


@router.delete("/users/{user_id}")
def delete_user(user_id: str, ledger: LedgerService = Depends(get_ledger)):
    if not ledger.delete_identity(user_id):
        raise HTTPException(status_code=404, detail="User not found.")
    return {"ok": True}
