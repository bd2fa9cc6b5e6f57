# app/services/case_data_service.py

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.models import ActivityStatus, AgentActivity, Case, CaseInsight, CaseTheory, InsightType
from app.services.activity_service import activity_service
from app.services.structured_output import StructuredUpdate, parse_structured_update
from app.utils.exceptions import (
    CaseNotFoundError,
    OrchestratorError,
    RequestValidationFailed,
    StructuredOutputError,
)

UPDATE_TYPES = ("case_theory", "case_insight", "agent_activity")


class CaseDataService:
    """
    Applies the structured part of a model reply to the case tables.

    The theory row is replaced wholesale; each insight is appended as its
    own row. Writes commit one at a time, so a failed insight does not undo
    the theory update before it.
    """

    def apply_response(
        self,
        db: Session,
        case_id: str,
        response_text: str,
        agent_name: str,
    ) -> Optional[StructuredUpdate]:
        try:
            update = parse_structured_update(response_text)
        except StructuredOutputError as e:
            logger.warning(f"Structured output rejected for case {case_id}: {e.message}")
            activity_service.log(
                db, case_id, agent_name, "Error Handler",
                "Structured Output Rejected",
                f"Could not apply case theory/insight update from the response: {e.message}",
                ActivityStatus.error.value,
            )
            return None

        if update is None:
            return None

        if update.theory_update is not None:
            self.replace_theory(db, case_id, update)
        for insight in update.insights:
            self.add_insight(
                db, case_id,
                title=insight.title,
                description=insight.description,
                insight_type=insight.insight_type,
            )
        return update

    def replace_theory(self, db: Session, case_id: str, update: StructuredUpdate) -> None:
        theory_update = update.theory_update
        try:
            theory = db.query(CaseTheory).filter(CaseTheory.case_id == case_id).first()
            if theory is None:
                theory = CaseTheory(case_id=case_id)
                db.add(theory)
            theory.fact_patterns = list(theory_update.fact_patterns)
            theory.legal_arguments = list(theory_update.legal_arguments)
            theory.potential_outcomes = list(theory_update.potential_outcomes)
            if theory_update.status:
                theory.status = theory_update.status
            theory.last_updated = datetime.utcnow()
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Error updating case theory for case {case_id}: {str(e)}")

    def add_insight(
        self,
        db: Session,
        case_id: str,
        title: str,
        description: str,
        insight_type: str,
        relevant_file_ids: Optional[list] = None,
        timeline_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[CaseInsight]:
        try:
            row = CaseInsight(
                case_id=case_id,
                title=title,
                description=description,
                insight_type=insight_type,
                relevant_file_ids=relevant_file_ids,
                timeline_id=timeline_id,
                timestamp=timestamp or datetime.utcnow(),
            )
            db.add(row)
            db.commit()
            return row
        except Exception as e:
            db.rollback()
            logger.error(f"Error inserting case insight for case {case_id}: {str(e)}")
            return None


    def apply_manual_update(self, db: Session, case_id: str, update_type: str, payload: dict) -> str:
        """
        Direct write of one theory, insight or activity row for a case.
        Unlike the model-driven path, a failed write is raised.
        """
        if update_type not in UPDATE_TYPES:
            raise RequestValidationFailed("Invalid updateType")
        if not db.query(Case.id).filter(Case.id == case_id).first():
            raise CaseNotFoundError(case_id)

        if update_type == "case_theory":
            label = "case theory"
        elif update_type == "case_insight":
            label = "case insight"
        else:
            label = "agent activity"

        try:
            if update_type == "case_theory":
                theory = db.query(CaseTheory).filter(CaseTheory.case_id == case_id).first()
                if theory is None:
                    theory = CaseTheory(case_id=case_id)
                    db.add(theory)
                theory.fact_patterns = list(payload.get("fact_patterns") or [])
                theory.legal_arguments = list(payload.get("legal_arguments") or [])
                theory.potential_outcomes = list(payload.get("potential_outcomes") or [])
                theory.status = payload.get("status") or theory.status or "initial"
                theory.last_updated = datetime.utcnow()
                message = "Case theory updated successfully."

            elif update_type == "case_insight":
                insight_type = payload.get("insight_type") or InsightType.general.value
                if insight_type not in {t.value for t in InsightType}:
                    insight_type = InsightType.general.value
                db.add(CaseInsight(
                    case_id=case_id,
                    title=payload.get("title") or "Untitled insight",
                    description=payload.get("description"),
                    insight_type=insight_type,
                    timestamp=datetime.utcnow(),
                ))
                message = "Case insight added successfully."

            else:
                db.add(AgentActivity(
                    case_id=case_id,
                    agent_name=payload.get("agent_name") or "User",
                    agent_role=payload.get("agent_role") or "Client",
                    activity_type=payload.get("activity_type") or "Note",
                    content=payload.get("content"),
                    status=payload.get("status") or ActivityStatus.completed.value,
                    timestamp=datetime.utcnow(),
                ))
                message = "Agent activity added successfully."

            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Error writing {label} for case {case_id}: {str(e)}")
            raise OrchestratorError(f"Failed to update {label}: {str(e)}") from e

        return message


case_data_service = CaseDataService()
