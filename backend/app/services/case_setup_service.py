# app/services/case_setup_service.py

import posixpath
from typing import List, Optional
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.database import SessionLocal
from app.db.models import (
    ActivityStatus,
    AIModel,
    Case,
    CaseFileMetadata,
    CaseStatus,
    CaseTheory,
)
from app.services.activity_service import activity_service
from app.services.file_processing_service import file_processing_service
from app.services.storage_service import evidence_path
from app.utils.exceptions import CaseNotFoundError, OrchestratorError, RequestValidationFailed


class CaseSetupService:
    """
    Case bootstrap and evidence intake.

    The request path only writes rows; enrichment and the model's first look
    at the files run afterwards in ``run_intake_pipeline`` with their own
    session.
    """

    def _get_case(self, db: Session, case_id: str, user_id: str) -> Case:
        case = db.query(Case).filter(Case.id == case_id, Case.user_id == user_id).first()
        if not case:
            raise CaseNotFoundError(case_id)
        return case

    def _insert_files(
        self,
        db: Session,
        case: Case,
        user_id: str,
        file_names: List[str],
        description: Optional[str] = None,
    ) -> List[CaseFileMetadata]:
        rows = []
        for relative_path in file_names:
            row = CaseFileMetadata(
                case_id=case.id,
                file_name=posixpath.basename(relative_path) or relative_path,
                file_path=evidence_path(user_id, case.id, relative_path),
                description=description,
            )
            db.add(row)
            rows.append(row)
        db.commit()
        return rows

    def start_analysis(
        self,
        db: Session,
        case_id: str,
        user_id: str,
        file_names: List[str],
        case_goals: Optional[str],
        system_instruction: Optional[str],
        ai_model: str,
        openai_assistant_id: Optional[str] = None,
    ) -> List[str]:
        if ai_model not in {m.value for m in AIModel}:
            raise RequestValidationFailed(f"Unsupported AI model: {ai_model}")

        case = self._get_case(db, case_id, user_id)
        case.case_goals = case_goals
        case.system_instruction = system_instruction
        case.ai_model = ai_model
        case.status = CaseStatus.in_progress.value
        case.analysis_progress = 0
        case.analysis_status_message = "Analysis starting..."
        if openai_assistant_id:
            case.openai_assistant_id = openai_assistant_id

        if not db.query(CaseTheory).filter(CaseTheory.case_id == case_id).first():
            db.add(CaseTheory(case_id=case_id, status="initial"))
        db.commit()

        activity_service.log(
            db, case_id, "System", "Setup", "Case Created",
            f"Case analysis initialized with {len(file_names)} file(s) using {ai_model}.",
        )

        rows = self._insert_files(db, case, user_id, file_names)
        logger.info(f"Started analysis for case {case_id} with {len(rows)} files")
        return [row.id for row in rows]

    def add_files(self, db: Session, case_id: str, user_id: str, new_file_names: List[str]) -> List[str]:
        if not new_file_names:
            raise RequestValidationFailed("newFileNames must be a non-empty list.")

        case = self._get_case(db, case_id, user_id)
        activity_service.log(
            db, case_id, "System", "File Processor", "New Evidence Uploaded",
            f"{len(new_file_names)} new file(s) uploaded: {', '.join(new_file_names)}",
            ActivityStatus.processing.value,
        )

        rows = self._insert_files(
            db, case, user_id, new_file_names,
            description=f"Additional file uploaded for case {case_id}",
        )
        if case.status == CaseStatus.analysis_complete.value:
            case.status = CaseStatus.in_progress.value
            db.commit()
        return [row.id for row in rows]


async def run_intake_pipeline(
    case_id: str,
    user_id: str,
    file_ids: List[str],
    file_names: List[str],
    forward_to_model: bool,
) -> None:
    """
    Background task: categorize and summarize each new file, then let the
    case's model process them.
    """
    from app.agent.orchestrator import dispatch_command

    db = SessionLocal()
    try:
        files = db.query(CaseFileMetadata).filter(CaseFileMetadata.id.in_(file_ids)).all()
        for f in files:
            await file_processing_service.enrich_quietly(db, f.id, f.file_name, f.file_path)

        if forward_to_model:
            try:
                await dispatch_command(db, case_id, user_id, "process_additional_files", {"newFileNames": file_names})
            except Exception as e:
                message = e.message if isinstance(e, OrchestratorError) else str(e)
                logger.error(f"Background processing of new files failed for case {case_id}: {message}")
                activity_service.log(
                    db, case_id, "System", "Error Handler", "New File Processing Failed",
                    f"Could not hand the new files to the case model: {message}",
                    ActivityStatus.error.value,
                )
    finally:
        db.close()


# Singleton instance
case_setup_service = CaseSetupService()
