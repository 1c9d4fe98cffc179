"""Dev-only test harness. Mounted only when ENV == "dev"."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from willtank.core.deps import get_db
from willtank.schemas.dev import TestExecutorAccessRequest
from willtank.services import demo_service

router = APIRouter(prefix="/dev", tags=["dev"])


@router.post("/test-executor-access")
async def test_executor_access(
    data: TestExecutorAccessRequest,
    db: Session = Depends(get_db),
):
    """Actions: setup_test_data, trigger_death_verification, get_verification_status, cleanup_test_data."""
    try:
        return await demo_service.invoke(db, data.action, data.user_id)
    except demo_service.UnknownActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
