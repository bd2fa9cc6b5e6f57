# app/services/activity_service.py

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logger import logger
from app.db.models import ActivityStatus, AgentActivity, Case


class ActivityService:
    """
    Writes the agent activity trail the case screen renders live.

    Every write commits on its own. A failed write is logged and dropped so
    the command that produced it keeps going.
    """

    def log(
        self,
        db: Session,
        case_id: str,
        agent_name: str,
        agent_role: str,
        activity_type: str,
        content: str,
        status: str = ActivityStatus.completed.value,
    ) -> Optional[AgentActivity]:
        try:
            row = AgentActivity(
                case_id=case_id,
                agent_name=agent_name,
                agent_role=agent_role,
                activity_type=activity_type,
                content=content,
                status=getattr(status, "value", status),
                timestamp=datetime.utcnow(),
            )
            db.add(row)
            db.commit()
            return row
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to insert agent activity '{activity_type}' for case {case_id}: {str(e)}")
            return None

    def update_progress(self, db: Session, case_id: str, progress: int, message: str) -> None:
        """
        Update the progress bar fields on the case.
        """
        try:
            case = db.query(Case).filter(Case.id == case_id).first()
            if not case:
                return
            case.analysis_progress = progress
            case.analysis_status_message = message
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to update progress for case {case_id}: {str(e)}")

    def list_since(
        self,
        db: Session,
        case_id: str,
        since: Optional[datetime] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 200,
    ) -> List[AgentActivity]:
        """
        Rows stamped at or after ``since``, oldest first, ties broken by id.
        """
        query = db.query(AgentActivity).filter(AgentActivity.case_id == case_id)
        if since is not None:
            query = query.filter(AgentActivity.timestamp >= since)
        excluded = list(exclude_ids or [])
        if excluded:
            query = query.filter(AgentActivity.id.notin_(excluded))
        return (
            query.order_by(AgentActivity.timestamp.asc(), AgentActivity.id.asc())
            .limit(limit)
            .all()
        )


activity_service = ActivityService()


class ActivityCursor:
    """
    Read position of one live feed over a case's activity rows.

    Each page starts a lookback window before the newest timestamp already
    sent and skips ids already sent. Rows sharing a timestamp across a page
    boundary are not lost, and neither is a row whose stamp is older than a
    row another request committed first, as long as it lands inside the
    window.
    """

    def __init__(
        self,
        case_id: str,
        lookback_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
    ):
        self.case_id = case_id
        if lookback_seconds is None:
            lookback_seconds = settings.ACTIVITY_STREAM_LOOKBACK_SECONDS
        self.lookback = timedelta(seconds=lookback_seconds)
        self.page_size = page_size or settings.ACTIVITY_STREAM_PAGE_SIZE
        self.high_water: Optional[datetime] = None
        self._sent: Dict[str, datetime] = {}

    def next_batch(self, db: Session) -> List[AgentActivity]:
        since = None if self.high_water is None else self.high_water - self.lookback
        rows = activity_service.list_since(
            db, self.case_id, since, exclude_ids=self._sent.keys(), limit=self.page_size,
        )
        for row in rows:
            self._sent[row.id] = row.timestamp
            if self.high_water is None or row.timestamp > self.high_water:
                self.high_water = row.timestamp

        if self.high_water is not None:
            # Older ids fall outside the next query on their own
            floor = self.high_water - self.lookback
            self._sent = {k: ts for k, ts in self._sent.items() if ts >= floor}
        return rows


def insert_agent_activity(
    db: Session,
    case_id: str,
    agent_name: str,
    agent_role: str,
    activity_type: str,
    content: str,
    status: str = ActivityStatus.completed.value,
) -> Optional[AgentActivity]:
    return activity_service.log(db, case_id, agent_name, agent_role, activity_type, content, status)
