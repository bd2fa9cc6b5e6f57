"""
agent/orchestrator.py

Case command dispatcher.

Reads the case's ``ai_model`` and hands the command to exactly one backend
(OpenAI Assistants or Gemini). Retries are the backend's business; nothing
is retried here. Diagnostic commands don't need a backend and are answered
directly.

Usage:
    from app.agent.orchestrator import dispatch_command

    message = await dispatch_command(db, case_id, user_id, "user_prompt",
                                     {"promptContent": "Summarize the evidence"})
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.agent.commands import validate_payload
from app.agent.gemini_handler import gemini_handler
from app.agent.openai_handler import openai_handler
from app.core.config import settings
from app.db.models import ActivityStatus, AIModel, Case
from app.services.activity_service import activity_service
from app.utils.exceptions import CaseNotFoundError, OrchestratorError, UnsupportedModelError

logger = logging.getLogger(__name__)

DIAGNOSTIC_COMMANDS = {"diagnose_case_settings", "diagnose_gemini_connection"}


async def dispatch_command(
    db:           Session,
    case_id:      str,
    user_id:      str,
    command:      str,
    payload:      Optional[dict] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> str:
    logger.info("Dispatching command=%s case=%s", command, case_id)

    try:
        if command in DIAGNOSTIC_COMMANDS:
            return await _run_diagnostic(db, case_id, command)
        payload = validate_payload(command, payload)

        case = db.query(Case).filter(Case.id == case_id).first()
        if not case:
            raise CaseNotFoundError(case_id)

        ai_model = case.ai_model
        if ai_model == AIModel.gemini.value:
            return await gemini_handler.handle_command(db, case, command, payload)
        if ai_model == AIModel.openai.value:
            return await openai_handler.handle_command(
                db, case, command, payload, user_id, cancel_event=cancel_event,
            )

        activity_service.log(
            db, case_id, "Orchestrator", "System", "Routing Error",
            f"Unsupported or null AI model configured: [{ai_model}]. Halting execution.",
            ActivityStatus.error.value,
        )
        raise UnsupportedModelError(ai_model)

    except Exception as e:
        if isinstance(e, OrchestratorError) and e.status_code < 500:
            logger.warning("Command %s rejected for case %s: %s", command, case_id, e.message)
            raise
        message = e.message if isinstance(e, OrchestratorError) else str(e)
        logger.error("Command %s failed for case %s: %s", command, case_id, message)
        _record_failure(db, case_id, message)
        raise


def _record_failure(db: Session, case_id: str, message: str) -> None:
    try:
        db.rollback()
        case = db.query(Case).filter(Case.id == case_id).first()
        if case:
            case.analysis_status_message = message
            db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Failed to record failure on case %s: %s", case_id, e)


async def _run_diagnostic(db: Session, case_id: str, command: str) -> str:
    if command == "diagnose_case_settings":
        case = db.query(Case).filter(Case.id == case_id).first()
        if not case:
            activity_service.log(
                db, case_id, "Diagnostic Agent", "System", "Diagnostic Failed",
                "Could not fetch case settings: Case not found.",
                ActivityStatus.error.value,
            )
            raise CaseNotFoundError(case_id)
        report = "\n".join([
            "--- Case Settings Report ---",
            f"Case ID: {case.id}",
            f"Case Name: {case.name}",
            f"AI Model: {case.ai_model}",
            f"OpenAI Assistant ID: {case.openai_assistant_id or 'Not set'}",
            f"OpenAI Thread ID: {case.openai_thread_id or 'Not set'}",
            f"Gemini Chat Turns: {len(case.gemini_turns)}",
            "--------------------------",
        ])
        activity_service.log(db, case_id, "Diagnostic Agent", "System", "Diagnostic Report", report)
        return "Diagnostics complete. Check the agent activity log."

    # diagnose_gemini_connection
    try:
        await gemini_handler.test_connection()
    except Exception as e:
        activity_service.log(
            db, case_id, "Diagnostic Agent", "System", "Gemini Connection Test Failed",
            f"Failed to connect to Gemini API using {settings.GEMINI_MODEL}: {e}",
            ActivityStatus.error.value,
        )
        raise OrchestratorError(
            f"Gemini Connection Test Failed for {settings.GEMINI_MODEL}: {e}. "
            "Please verify GOOGLE_GEMINI_API_KEY and that it has access to this model."
        ) from e

    activity_service.log(
        db, case_id, "Diagnostic Agent", "System", "Gemini Connection Test",
        f"Successfully connected to Google Gemini API with the {settings.GEMINI_MODEL} model.",
    )
    return f"Gemini API connection successful for {settings.GEMINI_MODEL}!"
