"""
Timeline generation from evidence summaries.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.services.timeline_service import timeline_service
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class TimelineRequest(BaseModel):
    caseId: Optional[str] = None
    timelineId: Optional[str] = None
    timelineName: Optional[str] = None
    focus: Optional[str] = None


@router.post("/create-timeline-from-evidence")
async def create_timeline(body: TimelineRequest, db: Session = Depends(get_db)):
    """
    Returns: { "message", "eventCount", "timelineId"? }.
    """
    if not body.caseId:
        raise RequestValidationFailed("Case ID is required")

    return await timeline_service.create_from_evidence(
        db,
        body.caseId,
        timeline_id=body.timelineId,
        timeline_name=body.timelineName,
        focus=body.focus,
    )
