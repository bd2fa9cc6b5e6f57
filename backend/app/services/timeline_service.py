# app/services/timeline_service.py

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from app.agent.prompts import timeline_prompt
from app.core.config import settings
from app.core.logger import logger
from app.db.models import ActivityStatus, CaseFileMetadata, CaseTimeline, InsightType
from app.services.activity_service import activity_service
from app.services.ai_service import ai_service
from app.services.case_data_service import case_data_service
from app.utils.exceptions import OrchestratorError

AGENT_NAME = "Timeline Agent"
AGENT_ROLE = "Chronology Specialist"
ACTIVITY_TYPE = "Timeline Generation"

DEFAULT_TIMELINE_NAME = "Evidence Timeline"


def parse_event_date(value) -> datetime:
    """
    Event dates come back as YYYY-MM-DD, ISO timestamps or "Date Unknown".
    Anything unparseable is stamped with the current time.
    """
    if isinstance(value, str):
        raw = value.strip()
        for fmt in ("%Y-%m-%d", "%Y-%m", "%Y"):
            try:
                return datetime.strptime(raw, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            pass
    return datetime.utcnow()


class TimelineService:
    """
    Builds a chronology from file summaries. Every call appends a fresh
    batch of events to the timeline; earlier batches are never removed or
    merged.
    """

    def _ensure_timeline(
        self,
        db: Session,
        case_id: str,
        timeline_id: Optional[str],
        timeline_name: Optional[str],
        focus: Optional[str],
    ) -> CaseTimeline:
        timeline = None
        if timeline_id:
            timeline = (
                db.query(CaseTimeline)
                .filter(CaseTimeline.id == timeline_id, CaseTimeline.case_id == case_id)
                .first()
            )
        if timeline is None:
            kwargs = {"id": timeline_id} if timeline_id else {}
            timeline = CaseTimeline(
                case_id=case_id,
                name=timeline_name or DEFAULT_TIMELINE_NAME,
                focus=focus,
                **kwargs,
            )
            db.add(timeline)
            db.commit()
        return timeline

    async def create_from_evidence(
        self,
        db: Session,
        case_id: str,
        timeline_id: Optional[str] = None,
        timeline_name: Optional[str] = None,
        focus: Optional[str] = None,
    ) -> dict:
        activity_service.log(
            db, case_id, AGENT_NAME, AGENT_ROLE, ACTIVITY_TYPE,
            "Starting timeline generation process...",
            ActivityStatus.processing.value,
        )
        try:
            return await self._generate(db, case_id, timeline_id, timeline_name, focus)
        except Exception as e:
            db.rollback()
            logger.error(f"Timeline generation failed for case {case_id}: {str(e)}")
            activity_service.log(
                db, case_id, AGENT_NAME, AGENT_ROLE, ACTIVITY_TYPE,
                f"Error during timeline generation: {e}",
                ActivityStatus.error.value,
            )
            raise

    async def _generate(
        self,
        db: Session,
        case_id: str,
        timeline_id: Optional[str],
        timeline_name: Optional[str],
        focus: Optional[str],
    ) -> dict:
        files = db.query(CaseFileMetadata).filter(CaseFileMetadata.case_id == case_id).all()
        if not files:
            activity_service.log(
                db, case_id, AGENT_NAME, AGENT_ROLE, ACTIVITY_TYPE,
                "No files found to analyze for timeline.",
            )
            return {"message": "No files to analyze.", "eventCount": 0}

        timeline = self._ensure_timeline(db, case_id, timeline_id, timeline_name, focus)
        timeline_id = timeline.id
        known_file_ids = {f.id for f in files}

        evidence_context = "\n\n".join(
            f'File: "{f.suggested_name or f.file_name}" (ID: {f.id})\n'
            f"Summary: {f.description or 'No summary available.'}"
            for f in files
        )

        result = await ai_service.complete_json(timeline_prompt(evidence_context, focus or timeline.focus))
        events = result.get("timeline_events")
        if not isinstance(events, list):
            raise OrchestratorError("AI response did not contain a valid 'timeline_events' array.")

        if len(events) > settings.TIMELINE_MAX_EVENTS:
            logger.warning(
                f"Timeline for case {case_id} returned {len(events)} events; "
                f"keeping the first {settings.TIMELINE_MAX_EVENTS}"
            )
            events = events[: settings.TIMELINE_MAX_EVENTS]

        saved = 0
        for event in events:
            if not isinstance(event, dict) or not event.get("title"):
                continue
            file_ids = [
                fid for fid in (event.get("relevant_file_ids") or [])
                if isinstance(fid, str) and fid in known_file_ids
            ]
            row = case_data_service.add_insight(
                db, case_id,
                title=str(event["title"]),
                description=str(event.get("description") or ""),
                insight_type=InsightType.auto_generated_event.value,
                relevant_file_ids=file_ids or None,
                timeline_id=timeline_id,
                timestamp=parse_event_date(event.get("event_date")),
            )
            if row is not None:
                saved += 1

        activity_service.log(
            db, case_id, AGENT_NAME, AGENT_ROLE, ACTIVITY_TYPE,
            f"Successfully generated and saved {saved} timeline events.",
        )
        return {
            "message": f"Successfully generated {saved} timeline events.",
            "eventCount": saved,
            "timelineId": timeline_id,
        }


timeline_service = TimelineService()
