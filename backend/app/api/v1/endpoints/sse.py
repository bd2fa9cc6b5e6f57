"""
Server-Sent Events feed of a case's agent activity trail
"""
from fastapi import APIRouter, Depends, Request
from typing import AsyncIterator
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import asyncio
import json
from datetime import datetime

from app.api.v1.deps import get_user_id
from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal, get_db
from app.db.models import AgentActivity, Case
from app.services.activity_service import ActivityCursor
from app.utils.exceptions import CaseNotFoundError

router = APIRouter()


def serialize_activity(row: AgentActivity) -> dict:
    return {
        "id": row.id,
        "case_id": row.case_id,
        "agent_name": row.agent_name,
        "agent_role": row.agent_role,
        "activity_type": row.activity_type,
        "content": row.content,
        "status": row.status,
        "timestamp": row.timestamp.isoformat(),
    }


async def activity_events(case_id: str, request: Request) -> AsyncIterator[dict]:
    """
    Poll the activity table and yield SSE events until the client leaves.

    Each row is sent once, with its id as the SSE ``id``. A fresh session
    is opened per poll so the stream never holds a pooled connection.
    """
    cursor = ActivityCursor(case_id)
    retry_count = 0
    max_retries = 3

    while retry_count < max_retries:
        if await request.is_disconnected():
            logger.info(f"Activity stream client disconnected for case {case_id}")
            break

        session = SessionLocal()
        try:
            for row in cursor.next_batch(session):
                yield {"event": "activity", "id": row.id, "data": json.dumps(serialize_activity(row))}

            yield {
                "event": "ping",
                "data": json.dumps({"timestamp": datetime.utcnow().isoformat()})
            }
            retry_count = 0

        except Exception as e:
            logger.error(f"Activity stream error for case {case_id}: {str(e)}")
            retry_count += 1
            yield {
                "event": "error",
                "data": json.dumps({"message": "Temporary error, retrying...", "retry": retry_count})
            }
        finally:
            session.close()

        await asyncio.sleep(settings.ACTIVITY_STREAM_POLL_SECONDS)

    logger.info(f"Activity stream ended for case {case_id}")


@router.get("/cases/{case_id}/activities/stream")
async def stream_activities(
    case_id: str,
    request: Request,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """
    Subscribe to a case's agent activities via Server-Sent Events

    Events:
    - activity: one agent_activities row (existing rows first, then new ones)
    - ping: Keepalive
    """
    if not db.query(Case).filter(Case.id == case_id, Case.user_id == user_id).first():
        raise CaseNotFoundError(case_id)

    return EventSourceResponse(activity_events(case_id, request))
