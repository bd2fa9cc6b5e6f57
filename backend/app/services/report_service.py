# app/services/report_service.py

import re
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from app.db.models import Case, CaseFileMetadata, CaseInsight, CaseTheory, InsightType
from app.utils.exceptions import CaseNotFoundError


def _fmt(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "Unknown"


def _bullets(items: Optional[list], empty: str) -> List[str]:
    if not items:
        return [empty]
    return [f"- {item}" for item in items]


def _cell(value: Optional[str]) -> str:
    return (value or "").replace("|", "\\|").replace("\n", " ")


class ReportService:
    """
    Markdown case report: directives, theory, insights, timeline and the
    evidence log.
    """

    def generate(self, db: Session, case_id: str) -> Tuple[str, str]:
        case = db.query(Case).filter(Case.id == case_id).first()
        if not case:
            raise CaseNotFoundError(case_id)

        theory = db.query(CaseTheory).filter(CaseTheory.case_id == case_id).first()
        insights = (
            db.query(CaseInsight)
            .filter(CaseInsight.case_id == case_id)
            .order_by(CaseInsight.timestamp.asc())
            .all()
        )
        files = (
            db.query(CaseFileMetadata)
            .filter(CaseFileMetadata.case_id == case_id)
            .order_by(CaseFileMetadata.uploaded_at.asc())
            .all()
        )
        events = [i for i in insights if i.insight_type == InsightType.auto_generated_event.value]
        key_insights = [i for i in insights if i.insight_type != InsightType.auto_generated_event.value]

        lines = [
            f"# Case Report: {case.name}",
            "",
            f"**Case ID:** {case.id}",
            f"**Case Type:** {case.type or 'Not specified'}",
            f"**Current Status:** {case.status}",
            f"**Last Updated:** {_fmt(case.last_updated)}",
            "",
            "## Case Directives",
            "",
            "### Primary Goals",
            case.case_goals or "Not specified.",
            "",
            "### System Instructions for AI",
            case.system_instruction or "Not specified.",
            "",
            "### User-Specified Legal Arguments",
            case.user_specified_arguments or "Not specified.",
            "",
            "## AI-Generated Case Theory",
            "",
        ]

        if theory:
            lines += [f"**Status:** {theory.status}", f"**Last Updated:** {_fmt(theory.last_updated)}", ""]
            lines += ["### Fact Patterns"] + _bullets(theory.fact_patterns, "No fact patterns identified yet.") + [""]
            lines += ["### Legal Arguments"] + _bullets(theory.legal_arguments, "No legal arguments identified yet.") + [""]
            lines += ["### Potential Outcomes"] + _bullets(theory.potential_outcomes, "No potential outcomes identified yet.") + [""]
        else:
            lines += ["No case theory has been generated yet.", ""]

        lines += ["## AI-Generated Key Insights", ""]
        if key_insights:
            for insight in key_insights:
                lines += [
                    f"### {insight.title} ({insight.insight_type})",
                    f"*Generated on: {_fmt(insight.timestamp)}*",
                    "",
                    insight.description or "",
                    "",
                ]
        else:
            lines += ["No key insights have been generated yet.", ""]

        lines += ["## Timeline of Key Events", ""]
        if events:
            for event in events:
                lines += [f"**{event.timestamp.strftime('%Y-%m-%d')}**: {event.title}", f"> {event.description or ''}", ""]
        else:
            lines += ["No timeline events have been generated yet.", ""]

        lines += ["## Evidence Log", ""]
        if files:
            lines += [
                "| Suggested Filename | Category | SHA-256 Hash | Summary |",
                "|--------------------|----------|--------------|---------|",
            ]
            for f in files:
                lines.append(
                    f"| {_cell(f.suggested_name) or 'N/A'} | {_cell(f.file_category) or 'Uncategorized'} "
                    f"| {f.file_hash or 'Not calculated'} | {_cell(f.description) or 'No summary.'} |"
                )
        else:
            lines.append("No evidence files have been uploaded for this case.")

        safe_name = re.sub(r"[^A-Za-z0-9]+", "_", case.name or "case").strip("_") or "case"
        return "\n".join(lines) + "\n", f"Case_Report_{safe_name}_{case.id}.md"


report_service = ReportService()
