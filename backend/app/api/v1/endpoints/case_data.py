"""
Manual writes to a case's theory, insights or activity trail.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.services.case_data_service import case_data_service
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class UpdateCaseDataRequest(BaseModel):
    caseId: Optional[str] = None
    updateType: Optional[str] = None
    payload: Optional[dict] = None


@router.post("/update-case-data")
async def update_case_data(body: UpdateCaseDataRequest, db: Session = Depends(get_db)):
    """
    updateType is one of case_theory, case_insight, agent_activity.
    Returns: { "message" }.
    """
    if not body.caseId or not body.updateType or body.payload is None:
        raise RequestValidationFailed("caseId, updateType, and payload are required")

    message = case_data_service.apply_manual_update(db, body.caseId, body.updateType, body.payload)
    return {"message": message}
