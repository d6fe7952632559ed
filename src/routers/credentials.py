from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.database import get_db
from src.dtos.budget_dto import (
    CredentialCreate,
    CredentialRead,
    ProfileSlots,
    RateBudgetRead,
)
from src.services.budget_ledger_service import BudgetLedger
from src.services.key_pool_service import KeyPoolManager

router = APIRouter(prefix="/api/v1", tags=["credentials"])


@router.get("/owners/{owner_id}/credentials")
def list_credentials(owner_id: str, db: Session = Depends(get_db)):
    pool = KeyPoolManager(db)
    return {
        "keys": pool.list_credentials(owner_id),
        "slots": pool.profile_slots(owner_id),
        "has_default_key": bool(pool.default_api_key),
    }


@router.post(
    "/owners/{owner_id}/credentials",
    response_model=CredentialRead,
    status_code=201,
)
def add_credential(owner_id: str, body: CredentialCreate, db: Session = Depends(get_db)):
    return KeyPoolManager(db).register_credential(
        owner_id,
        body.api_key,
        api_name=settings.SEARCH_API_NAME,
        label=body.label,
        daily_limit=body.daily_limit,
        is_unlimited=body.is_unlimited,
    )


@router.get("/owners/{owner_id}/slots", response_model=ProfileSlots)
def get_slots(owner_id: str, db: Session = Depends(get_db)):
    return KeyPoolManager(db).profile_slots(owner_id)


@router.get("/usage/{api_name}", response_model=list[RateBudgetRead])
def get_usage(api_name: str, db: Session = Depends(get_db)):
    return BudgetLedger(db).usage_for_day(api_name)
