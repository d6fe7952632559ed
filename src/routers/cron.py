from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from src.core.database import get_db
from src.dtos.scan_dto import CycleStats
from src.services.scan_executor_service import ScanExecutorService

router = APIRouter(prefix="/cron", tags=["cron"])


def get_executor(db: Session = Depends(get_db)) -> ScanExecutorService:
    return ScanExecutorService(db)


@router.post("/process-scan-queue", response_model=CycleStats)
async def process_scan_queue(
    limit: int | None = Query(default=None, ge=1, le=50),
    executor: ScanExecutorService = Depends(get_executor),
):
    """Run one executor cycle. Meant to be hit by an external scheduler."""
    return await executor.run_cycle(limit)
