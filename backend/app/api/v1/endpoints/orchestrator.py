"""
AI orchestrator endpoint: one command against a case's configured model.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.agent.orchestrator import dispatch_command
from app.api.v1.deps import get_optional_user_id
from app.db.database import get_db
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class OrchestratorRequest(BaseModel):
    caseId: Optional[str] = Field(None, description="Case to run the command against")
    command: Optional[str] = Field(None, description="user_prompt, process_additional_files, web_search, ...")
    payload: Optional[Dict[str, Any]] = Field(default_factory=dict, description="Command arguments")


@router.post("/ai-orchestrator")
async def run_command(
    body: OrchestratorRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    """
    Route the command to the case's backend and wait for it to finish.
    Returns: { "message", "caseId" }.
    """
    if not body.caseId or not user_id or not body.command:
        raise RequestValidationFailed("caseId, userId, and command are required")

    message = await dispatch_command(db, body.caseId, user_id, body.command, body.payload or {})
    return {"message": message, "caseId": body.caseId}
