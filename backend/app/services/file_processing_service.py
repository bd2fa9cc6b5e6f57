# app/services/file_processing_service.py

import hashlib
from typing import Optional
from sqlalchemy.orm import Session

from app.agent.prompts import binary_summarizer_prompt, categorizer_prompt, summarizer_prompt
from app.core.config import settings
from app.core.logger import logger
from app.db.models import ActivityStatus, CaseFileMetadata
from app.services.activity_service import activity_service
from app.services.ai_service import ai_service
from app.services.storage_service import storage_service
from app.utils.exceptions import OrchestratorError, RequestValidationFailed


def _error_text(e: Exception) -> str:
    return e.message if isinstance(e, OrchestratorError) else str(e)


def _text_or_none(blob: bytes) -> Optional[str]:
    try:
        return blob.decode("utf-8")
    except UnicodeDecodeError:
        return None


class FileProcessingService:
    """
    Per-file enrichment run after upload: a category plus a descriptive
    filename, and a short summary plus tags.
    """

    def _get_file(self, db: Session, file_id: str) -> CaseFileMetadata:
        row = db.query(CaseFileMetadata).filter(CaseFileMetadata.id == file_id).first()
        if not row:
            raise RequestValidationFailed(f"File metadata {file_id} not found", status_code=404)
        return row

    async def categorize(self, db: Session, file_id: str, file_name: str, file_path: str) -> dict:
        """
        Ask the model for a category and a suggested filename.
        """
        row = self._get_file(db, file_id)
        case_id = row.case_id
        try:
            return await self._categorize(db, row, file_name, file_path)
        except Exception as e:
            db.rollback()
            activity_service.log(
                db, case_id, "Categorizer Agent", "Error Handler", "File Categorization Failed",
                f"Failed to categorize {file_name}: {_error_text(e)}", ActivityStatus.error.value,
            )
            raise

    async def _categorize(self, db: Session, row: CaseFileMetadata, file_name: str, file_path: str) -> dict:
        blob = storage_service.download(file_path)
        snippet = blob.decode("utf-8", errors="replace")[: settings.CATEGORIZER_SNIPPET_CHARS]

        result = await ai_service.complete_json(categorizer_prompt(file_name, snippet))
        category = result.get("category")
        suggested_name = result.get("suggestedName")
        if not category or not suggested_name:
            raise OrchestratorError("AI failed to return a valid category and suggested name.")

        # Names become zip entry paths; no separators allowed
        suggested_name = str(suggested_name).replace("/", "_").replace("\\", "_")

        row.file_category = str(category)
        row.suggested_name = suggested_name
        db.commit()
        logger.info(f"Categorized {file_name} as {category} -> {suggested_name}")
        activity_service.log(
            db, row.case_id, "Categorizer Agent", "AI", "File Categorized",
            f"{file_name} filed under {row.file_category} as {suggested_name}.",
        )
        return {"category": row.file_category, "suggestedName": suggested_name}

    async def summarize(self, db: Session, file_id: str, file_name: str, file_path: str) -> dict:
        """
        Ask the model for a one-to-two sentence summary and 3-5 tags.
        Files that aren't UTF-8 text are summarized from the filename alone.
        """
        row = self._get_file(db, file_id)
        case_id = row.case_id
        try:
            return await self._summarize(db, row, file_name, file_path)
        except Exception as e:
            db.rollback()
            activity_service.log(
                db, case_id, "Summarizer Agent", "Error Handler", "Summarization Failed",
                f"Failed to summarize {file_name}: {_error_text(e)}", ActivityStatus.error.value,
            )
            raise

    async def _summarize(self, db: Session, row: CaseFileMetadata, file_name: str, file_path: str) -> dict:
        blob = storage_service.download(file_path)

        text = _text_or_none(blob)
        if text is None:
            logger.warning(f"Could not read {file_name} as text; summarizing from filename")
            prompt = binary_summarizer_prompt(file_name)
        else:
            prompt = summarizer_prompt(file_name, text[: settings.SUMMARIZER_SNIPPET_CHARS])

        result = await ai_service.complete_json(prompt)
        summary = result.get("summary") if isinstance(result.get("summary"), str) else None
        tags = [str(t) for t in result["tags"]] if isinstance(result.get("tags"), list) else None
        if not summary and not tags:
            raise OrchestratorError("AI failed to return any valid data.")

        row.description = summary
        row.tags = tags
        row.file_hash = hashlib.sha256(blob).hexdigest()
        db.commit()
        activity_service.log(
            db, row.case_id, "Summarizer Agent", "AI", "File Summarization Complete",
            f"{file_name}: {summary or ', '.join(tags)}",
        )
        return {"summary": summary, "tags": tags}

    async def enrich_quietly(self, db: Session, file_id: str, file_name: str, file_path: str) -> None:
        """
        Background variant: both steps, failures logged rather than raised.
        """
        for step in (self.categorize, self.summarize):
            try:
                await step(db, file_id, file_name, file_path)
            except Exception as e:
                # Already on the activity trail; the next step still runs
                logger.error(f"{step.__name__} failed for {file_name}: {_error_text(e)}")


file_processing_service = FileProcessingService()
