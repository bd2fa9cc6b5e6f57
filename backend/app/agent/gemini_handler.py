"""
agent/gemini_handler.py

Google Gemini backend for the case orchestrator.

Gemini has no server-side thread, so the conversation lives in
``gemini_chat_turns``: every call sends the full ordered history plus the
new user turn, then appends the new turns. Appends are numbered from the
history length read at the start of the command; if another request got
there first the unique (case_id, seq) key rejects the insert and the
command fails with ChatHistoryConflictError instead of losing a turn.

Rate limiting (HTTP 429 / quota errors) is retried with exponential
backoff, each wait recorded in the activity trail.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from google import genai
from google.genai import types
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.agent.commands import BACKEND_COMMANDS, validate_payload
from app.agent.prompts import (
    GEMINI_RERUN_PROMPT,
    GEMINI_SYSTEM_INSTRUCTION,
    gemini_files_note,
    gemini_web_search_prompt,
)
from app.core.config import settings
from app.db.models import ActivityStatus, Case, CaseStatus, GeminiChatTurn
from app.services.activity_service import activity_service
from app.services.case_data_service import case_data_service
from app.services.web_search_service import search_web
from app.utils.exceptions import (
    ChatHistoryConflictError,
    ConfigurationError,
    GeminiRetryExhaustedError,
    OrchestratorError,
    UnsupportedCommandError,
)

logger = logging.getLogger(__name__)

AGENT_NAME = "Google Gemini"

T = TypeVar("T")


def _is_rate_limited(exc: Exception) -> bool:
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    if code == 429:
        return True
    return "quota" in str(exc).lower()


async def call_gemini_with_retry(
    db:            Session,
    case_id:       str,
    fn:            Callable[[], Awaitable[T]],
    max_retries:   Optional[int] = None,
    initial_delay: Optional[float] = None,
) -> T:
    """
    Run ``fn`` and retry it on rate limiting.

    Waits initial_delay × 2^n between attempts (5 s, 10 s, ... by default).
    After ``max_retries`` rate-limited attempts GeminiRetryExhaustedError is
    raised without a further call. Other errors propagate immediately.
    """
    max_retries = max_retries if max_retries is not None else settings.GEMINI_MAX_RETRIES
    initial_delay = (
        initial_delay if initial_delay is not None else settings.GEMINI_RETRY_INITIAL_DELAY_SECONDS
    )

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not _is_rate_limited(e):
                raise
            attempt += 1
            if attempt >= max_retries:
                logger.error("Gemini rate limited %d times for case %s; giving up", attempt, case_id)
                raise GeminiRetryExhaustedError(attempt, str(e)) from e

            delay = initial_delay * (2 ** (attempt - 1))
            logger.warning(
                "Gemini rate limited (attempt %s/%s), retrying in %.1fs", attempt, max_retries, delay
            )
            activity_service.log(
                db, case_id, AGENT_NAME, "System", "Rate Limit Backoff",
                f"Gemini API rate limit reached. Retrying in {delay:g} seconds "
                f"(attempt {attempt} of {max_retries}).",
                ActivityStatus.processing.value,
            )
            await asyncio.sleep(delay)


class GeminiHandler:

    def __init__(self, client: Optional[genai.Client] = None):
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not settings.GOOGLE_GEMINI_API_KEY:
                raise ConfigurationError("GOOGLE_GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=settings.GOOGLE_GEMINI_API_KEY)
        return self._client

    # ========================================================================
    # Vendor call
    # ========================================================================

    async def generate(self, case: Case, history: list[dict], prompt: str) -> str:
        contents = list(history) + [{"role": "user", "parts": [{"text": prompt}]}]
        config = types.GenerateContentConfig(
            max_output_tokens=settings.GEMINI_MAX_OUTPUT_TOKENS,
            system_instruction=GEMINI_SYSTEM_INSTRUCTION.format(
                case_goals=case.case_goals or "Not specified",
                system_instruction=case.system_instruction or "None",
            ),
        )
        response = await self.client.aio.models.generate_content(
            model=settings.GEMINI_MODEL,
            contents=contents,
            config=config,
        )
        text = getattr(response, "text", None)
        if not text:
            raise OrchestratorError("The AI model did not return a valid response.")
        return text

    async def test_connection(self) -> None:
        await self.client.aio.models.generate_content(model=settings.GEMINI_MODEL, contents="test")

    # ========================================================================
    # Commands
    # ========================================================================

    async def handle_command(self, db: Session, case: Case, command: str, payload: dict) -> str:
        if command not in BACKEND_COMMANDS:
            raise UnsupportedCommandError(command, backend="Gemini")
        payload = validate_payload(command, payload)

        if command == "user_prompt":
            prompt = payload["promptContent"].strip()
            activity_service.log(
                db, case.id, "User", "Client", "User Prompt", payload.get("displayPrompt") or prompt,
            )
            await self._converse(
                db, case, prompt,
                activity_type="Response",
                failure_type="Gemini Interaction Failed",
                failure_prefix="Failed to get response from Gemini",
            )
            return "Google Gemini responded."

        if command == "re_run_analysis":
            await self._converse(
                db, case, GEMINI_RERUN_PROMPT,
                activity_type="Response",
                failure_type="Gemini Interaction Failed",
                failure_prefix="Failed to get response from Gemini",
            )
            return "Google Gemini responded."

        if command == "process_additional_files":
            file_names = [n for n in payload["newFileNames"] if n]
            note = gemini_files_note(file_names)
            expected_seq = self._next_seq(case)
            activity_service.log(db, case.id, AGENT_NAME, "File Processor", "File Processing Note", note)
            self.append_turns(db, case, expected_seq, [("model", note)])
            return "Gemini noted new files, RAG setup required for analysis."

        if command == "web_search":
            query = payload["query"].strip()
            try:
                results = await search_web(query)
            except OrchestratorError as e:
                activity_service.log(
                    db, case.id, "Web Search Agent", "Error Handler", "Web Search Failed",
                    f"Failed to perform web search: {e.message}", ActivityStatus.error.value,
                )
                raise
            await self._converse(
                db, case, gemini_web_search_prompt(query, results),
                activity_type="Response (Web Search)",
                failure_type="Gemini Web Search Processing Failed",
                failure_prefix="Failed to process web search results with Gemini",
            )
            return "Google Gemini processed web search results."

        raise UnsupportedCommandError(command, backend="Gemini")

    async def _converse(
        self,
        db:             Session,
        case:           Case,
        prompt:         str,
        activity_type:  str,
        failure_type:   str,
        failure_prefix: str,
    ) -> str:
        history = case.gemini_chat_history
        expected_seq = self._next_seq(case)
        case_id = case.id

        activity_service.update_progress(db, case_id, 50, "Gemini is processing the request...")
        try:
            text = await call_gemini_with_retry(
                db, case_id, lambda: self.generate(case, history, prompt),
            )
        except Exception as e:
            logger.error("Gemini call failed for case %s: %s", case_id, e)
            activity_service.log(
                db, case_id, AGENT_NAME, "Error Handler", failure_type,
                f"{failure_prefix}: {e}", ActivityStatus.error.value,
            )
            if isinstance(e, OrchestratorError):
                raise
            raise OrchestratorError(f"{failure_prefix}: {e}") from e

        self.append_turns(db, case, expected_seq, [("user", prompt), ("model", text)])
        case_data_service.apply_response(db, case_id, text, AGENT_NAME)
        activity_service.log(db, case_id, AGENT_NAME, "AI", activity_type, text)

        case.status = CaseStatus.analysis_complete.value
        db.commit()
        activity_service.update_progress(db, case_id, 100, "Analysis complete!")
        return text

    # ========================================================================
    # Chat history
    # ========================================================================

    @staticmethod
    def _next_seq(case: Case) -> int:
        turns = case.gemini_turns
        return turns[-1].seq + 1 if turns else 0

    @staticmethod
    def append_turns(
        db:           Session,
        case:         Case,
        expected_seq: int,
        turns:        list[tuple[str, str]],
    ) -> None:
        """
        Append turns numbered from ``expected_seq``. A seq already taken means
        another request appended since we read the history.
        """
        case_id = case.id
        try:
            for offset, (role, text) in enumerate(turns):
                db.add(GeminiChatTurn(
                    case_id=case_id,
                    seq=expected_seq + offset,
                    role=role,
                    parts=[{"text": text}],
                ))
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning("Gemini chat history conflict for case %s at seq %s", case_id, expected_seq)
            raise ChatHistoryConflictError(case_id) from e
        db.expire(case, ["gemini_turns"])


gemini_handler = GeminiHandler()
