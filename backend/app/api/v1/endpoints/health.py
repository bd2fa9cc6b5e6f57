"""
Readiness checks: database and evidence bucket.
"""
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter
from sqlalchemy import text

from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal
from app.services.storage_service import storage_service

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except Exception as e:
        return "error", f"Database: {str(e)}"
    finally:
        db.close()


def _check_storage() -> tuple[str, str]:
    try:
        storage_service.s3_client.head_bucket(Bucket=settings.EVIDENCE_BUCKET)
        return "ok", f"Bucket '{settings.EVIDENCE_BUCKET}' accessible"
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        return "error", f"Storage: {code} - {str(e)}"
    except BotoCoreError as e:
        return "error", f"Storage: {str(e)}"


@router.get("/ready")
def readiness():
    checks = {}
    for name, check in (("database", _check_database), ("storage", _check_storage)):
        state, detail = check()
        checks[name] = {"status": state, "detail": detail}
        if state != "ok":
            logger.warning(f"Readiness check {name} failed: {detail}")

    overall = "ok" if all(c["status"] == "ok" for c in checks.values()) else "degraded"
    return {"status": overall, "checks": checks}
