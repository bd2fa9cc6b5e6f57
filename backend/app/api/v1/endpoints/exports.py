"""
File downloads: organized evidence zip and the Markdown case report.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.services.archive_service import archive_service
from app.services.report_service import report_service
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class ZipRequest(BaseModel):
    caseId: Optional[str] = None
    category: Optional[str] = None


class ReportRequest(BaseModel):
    caseId: Optional[str] = None


def _attachment(content: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/download-organized-zip")
async def download_organized_zip(body: ZipRequest, db: Session = Depends(get_db)):
    if not body.caseId:
        raise RequestValidationFailed("Case ID is required")

    data, filename = archive_service.build_organized_zip(db, body.caseId, body.category or None)
    return _attachment(data, filename, "application/zip")


@router.post("/generate-case-report")
async def generate_case_report(body: ReportRequest, db: Session = Depends(get_db)):
    if not body.caseId:
        raise RequestValidationFailed("Case ID is required")

    markdown, filename = report_service.generate(db, body.caseId)
    return _attachment(markdown.encode("utf-8"), filename, "text/markdown; charset=utf-8")
