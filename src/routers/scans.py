from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.core.database import get_db
from src.dtos.scan_dto import (
    BatchStats,
    ExpansionRequest,
    ExpansionResponse,
    ScanStatusRead,
)
from src.services.scan_scheduler_service import ScanSchedulerService

router = APIRouter(prefix="/api/v1/profiles", tags=["scans"])


class ScanStarted(BaseModel):
    profile_id: str
    batch_id: str
    scan_status: str


class ScanFailure(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


@router.post("/{profile_id}/scan", response_model=ScanStarted)
def begin_scan(profile_id: str, db: Session = Depends(get_db)):
    batch_id = ScanSchedulerService(db).begin_scan(profile_id)
    return ScanStarted(profile_id=profile_id, batch_id=batch_id, scan_status="scanning")


@router.post("/{profile_id}/scan/{batch_id}/expansion", response_model=ExpansionResponse)
def start_expansion(
    profile_id: str,
    batch_id: str,
    body: ExpansionRequest,
    db: Session = Depends(get_db),
):
    svc = ScanSchedulerService(db)
    queued = svc.start_expansion(
        profile_id,
        batch_id,
        roles=body.roles,
        searched_roles=body.searched_roles,
        user_locations=body.user_locations,
        searched_locations=body.searched_locations,
    )
    status = svc.get_scan_status(profile_id)
    return ExpansionResponse(
        profile_id=profile_id,
        batch_id=batch_id,
        tasks_queued=queued,
        scan_status=status.scan_status,
    )


@router.post("/{profile_id}/scan/{batch_id}/fail")
def fail_scan(
    profile_id: str,
    batch_id: str,
    body: ScanFailure,
    db: Session = Depends(get_db),
):
    failed = ScanSchedulerService(db).fail_scan(profile_id, batch_id, body.reason)
    return {"profile_id": profile_id, "batch_id": batch_id, "failed": failed}


@router.get("/{profile_id}/scan", response_model=ScanStatusRead)
def get_scan_status(profile_id: str, db: Session = Depends(get_db)):
    return ScanSchedulerService(db).get_scan_status(profile_id)


@router.get("/{profile_id}/batches/{batch_id}/stats", response_model=BatchStats)
def get_batch_stats(profile_id: str, batch_id: str, db: Session = Depends(get_db)):
    return ScanSchedulerService(db).get_batch_stats(profile_id, batch_id)
