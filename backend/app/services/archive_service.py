# app/services/archive_service.py

import io
import posixpath
import re
import zipfile
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.models import CaseFileMetadata
from app.services.storage_service import storage_service
from app.utils.exceptions import NoFilesToArchiveError, StorageDownloadError


def archive_filename(case_id: str, category: Optional[str]) -> str:
    if category:
        safe = re.sub(r"\s+", "_", category)
        return f"case_{case_id}_{safe}.zip"
    return f"organized_case_{case_id}.zip"


def _unique_name(name: str, used: set) -> str:
    """Suffix repeated entry names as `name (2).ext`, `name (3).ext`, ..."""
    candidate = name
    stem, ext = posixpath.splitext(name)
    n = 2
    while candidate in used:
        candidate = f"{stem} ({n}){ext}"
        n += 1
    used.add(candidate)
    return candidate


class ArchiveService:
    """
    Zips a case's categorized evidence under the AI-suggested filenames.

    Without a category every file goes under a ``<category>/`` folder
    (``Uncategorized/`` when it has none); with a category the matching
    files sit at the archive root.
    """

    def build_organized_zip(
        self,
        db: Session,
        case_id: str,
        category: Optional[str] = None,
    ) -> Tuple[bytes, str]:
        query = db.query(CaseFileMetadata).filter(
            CaseFileMetadata.case_id == case_id,
            CaseFileMetadata.suggested_name.isnot(None),
        )
        if category:
            query = query.filter(CaseFileMetadata.file_category == category)
        files = query.all()

        if not files:
            raise NoFilesToArchiveError(category)

        buffer = io.BytesIO()
        written = 0
        used_names: set = set()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for f in files:
                try:
                    blob = storage_service.download(f.file_path)
                except StorageDownloadError as e:
                    logger.error(f"Skipping {f.file_path} in zip: {e.message}")
                    continue

                name_in_zip = f.suggested_name or f.file_name
                if not category:
                    name_in_zip = f"{f.file_category or 'Uncategorized'}/{name_in_zip}"
                name_in_zip = _unique_name(name_in_zip, used_names)
                archive.writestr(name_in_zip, blob)
                written += 1

        logger.info(f"Built zip for case {case_id}: {written}/{len(files)} files")
        return buffer.getvalue(), archive_filename(case_id, category)


archive_service = ArchiveService()
