from fastapi import Request

from campusid.services.ledger import LedgerService


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger
