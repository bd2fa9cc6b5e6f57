"""
Evidence intake and per-file enrichment endpoints.
"""
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import get_optional_user_id
from app.db.database import get_db
from app.db.models import AIModel
from app.services.case_setup_service import case_setup_service, run_intake_pipeline
from app.services.file_processing_service import file_processing_service
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class StartAnalysisRequest(BaseModel):
    caseId: Optional[str] = None
    fileNames: List[str] = Field(default_factory=list, description="Paths relative to {userId}/{caseId}/")
    caseGoals: Optional[str] = None
    systemInstruction: Optional[str] = None
    aiModel: str = AIModel.openai.value
    openaiAssistantId: Optional[str] = None


class AdditionalFilesRequest(BaseModel):
    caseId: Optional[str] = None
    newFileNames: Optional[List[str]] = None


class FileRequest(BaseModel):
    fileId: Optional[str] = None
    fileName: Optional[str] = None
    filePath: Optional[str] = None

    def require(self) -> None:
        if not self.fileId or not self.fileName or not self.filePath:
            raise RequestValidationFailed("fileId, fileName, and filePath are required")


@router.post("/start-analysis")
async def start_analysis(
    body: StartAnalysisRequest,
    background_tasks: BackgroundTasks,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    """
    Store the case directives and file rows, then enrich and analyse the
    files in the background.
    """
    if not body.caseId or not user_id:
        raise RequestValidationFailed("Case ID and User ID are required")

    file_ids = case_setup_service.start_analysis(
        db,
        case_id=body.caseId,
        user_id=user_id,
        file_names=body.fileNames,
        case_goals=body.caseGoals,
        system_instruction=body.systemInstruction,
        ai_model=body.aiModel,
        openai_assistant_id=body.openaiAssistantId,
    )
    if file_ids:
        background_tasks.add_task(
            run_intake_pipeline,
            body.caseId,
            user_id,
            file_ids,
            body.fileNames,
            body.aiModel == AIModel.openai.value,
        )
    return {"message": "Analysis is starting in the background.", "caseId": body.caseId}


@router.post("/process-additional-files")
async def process_additional_files(
    body: AdditionalFilesRequest,
    background_tasks: BackgroundTasks,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    if not body.caseId or not user_id or not body.newFileNames:
        raise RequestValidationFailed("Case ID, User ID, and new file names are required")

    file_ids = case_setup_service.add_files(db, body.caseId, user_id, body.newFileNames)
    background_tasks.add_task(
        run_intake_pipeline, body.caseId, user_id, file_ids, body.newFileNames, True,
    )
    return {"message": "New files are being processed in the background.", "caseId": body.caseId}


@router.post("/file-categorizer")
async def categorize_file(body: FileRequest, db: Session = Depends(get_db)):
    """
    Returns: { "category", "suggestedName" }.
    """
    body.require()
    return await file_processing_service.categorize(db, body.fileId, body.fileName, body.filePath)


@router.post("/file-summarizer")
async def summarize_file(body: FileRequest, db: Session = Depends(get_db)):
    """
    Returns: { "summary", "tags" }.
    """
    body.require()
    return await file_processing_service.summarize(db, body.fileId, body.fileName, body.filePath)
