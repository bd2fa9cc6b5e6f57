"""
agent/openai_handler.py

OpenAI Assistants backend for the case orchestrator.

Each case owns one assistant and one thread. A command appends a message
to the thread, starts a run and polls it to a terminal status:

    queued → in_progress → {completed | failed | cancelled | expired | incomplete}
                 ↕
          requires_action  (we run the requested tools and submit outputs)

Polling backs off exponentially from OPENAI_RUN_POLL_INITIAL_SECONDS up to
OPENAI_RUN_POLL_MAX_SECONDS. Past OPENAI_RUN_TIMEOUT_SECONDS, or when the
caller sets its cancel event, the run is cancelled on OpenAI's side and
RunTimeoutError is raised.

Usage:
    from app.agent.openai_handler import openai_handler

    message = await openai_handler.handle_command(db, case, "user_prompt",
                                                  {"promptContent": "..."}, user_id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Optional

from openai import AsyncOpenAI
from sqlalchemy.orm import Session

from app.agent.commands import BACKEND_COMMANDS, validate_payload
from app.agent.prompts import (
    ASSISTANT_INSTRUCTIONS,
    OPENAI_RERUN_PROMPT,
    new_files_prompt,
    web_search_results_prompt,
)
from app.agent.tools.registry import TOOL_REGISTRY, ToolContext, dispatch_tool, get_openai_tools
from app.core.config import settings
from app.db.models import ActivityStatus, Case, CaseFileMetadata, CaseStatus
from app.services.activity_service import activity_service
from app.services.case_data_service import case_data_service
from app.services.storage_service import evidence_path, storage_service
from app.services.web_search_service import search_web
from app.utils.exceptions import (
    ConfigurationError,
    OrchestratorError,
    RunFailedError,
    RunTimeoutError,
    StorageDownloadError,
    UnsupportedCommandError,
)

logger = logging.getLogger(__name__)

AGENT_NAME = "OpenAI Assistant"

TERMINAL_STATUSES = {"completed", "failed", "cancelled", "expired", "incomplete"}
ACTIVE_STATUSES   = {"queued", "in_progress", "cancelling", "requires_action"}


class OpenAIHandler:

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    # ========================================================================
    # Session (assistant + thread)
    # ========================================================================

    async def ensure_session(self, db: Session, case: Case) -> tuple[str, str]:
        """
        Create the case's assistant and thread on first use, refresh the
        assistant's instructions on every use. Returns (assistant_id, thread_id).
        """
        instructions = ASSISTANT_INSTRUCTIONS.format(
            case_goals=case.case_goals or "Not specified",
            system_instruction=case.system_instruction or "None",
        )
        tools = get_openai_tools()

        assistant_id = case.openai_assistant_id
        if assistant_id:
            await self.client.beta.assistants.update(
                assistant_id, instructions=instructions, tools=tools,
            )
        else:
            assistant = await self.client.beta.assistants.create(
                name=f"Family Law AI for Case: {case.name}",
                instructions=instructions,
                tools=tools,
                model=settings.OPENAI_ASSISTANT_MODEL,
            )
            assistant_id = assistant.id
            logger.info("Created assistant %s for case %s", assistant_id, case.id)

        thread_id = case.openai_thread_id
        if not thread_id:
            thread = await self.client.beta.threads.create()
            thread_id = thread.id
            logger.info("Created thread %s for case %s", thread_id, case.id)

        if (case.openai_assistant_id, case.openai_thread_id) != (assistant_id, thread_id):
            case.openai_assistant_id = assistant_id
            case.openai_thread_id = thread_id
            db.commit()
        return assistant_id, thread_id

    # ========================================================================
    # Run polling
    # ========================================================================

    async def poll_run(
        self,
        db:           Session,
        case_id:      str,
        thread_id:    str,
        run_id:       str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Poll until the run reaches a terminal status and return it.
        Tool calls are executed and submitted along the way.
        """
        initial  = max(0.05, float(settings.OPENAI_RUN_POLL_INITIAL_SECONDS))
        ceiling  = max(initial, float(settings.OPENAI_RUN_POLL_MAX_SECONDS))
        deadline = time.monotonic() + float(settings.OPENAI_RUN_TIMEOUT_SECONDS)
        interval = initial
        answered: set[str] = set()

        while True:
            run = await self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)
            status = run.status
            logger.debug("OpenAI run %s status: %s", run_id, status)

            if status in TERMINAL_STATUSES:
                return run

            if status == "requires_action":
                await self._submit_tool_outputs(db, case_id, thread_id, run, answered)
                # Fresh outputs usually resume quickly
                interval = initial
            elif status not in ACTIVE_STATUSES:
                logger.warning("OpenAI run %s reported unknown status %r", run_id, status)

            if cancel_event is not None and cancel_event.is_set():
                await self._cancel_run(thread_id, run_id)
                raise RunTimeoutError(run_id, "was cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                await self._cancel_run(thread_id, run_id)
                raise RunTimeoutError(
                    run_id, f"timed out after {settings.OPENAI_RUN_TIMEOUT_SECONDS:g}s"
                )

            await self._wait(min(interval, remaining), cancel_event)
            interval = min(interval * 2, ceiling)

    @staticmethod
    async def _wait(delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
        except Exception as e:
            logger.warning("Could not cancel OpenAI run %s: %s", run_id, e)

    async def _submit_tool_outputs(
        self,
        db:        Session,
        case_id:   str,
        thread_id: str,
        run:       Any,
        answered:  set[str],
    ) -> None:
        required = getattr(run, "required_action", None)
        if required is None or required.type != "submit_tool_outputs":
            return

        context = ToolContext(case_id=case_id)
        tool_outputs = []
        for call in required.submit_tool_outputs.tool_calls:
            if call.id in answered:
                continue
            name = call.function.name
            if name not in TOOL_REGISTRY:
                logger.warning("Unknown tool call: %s", name)
                tool_outputs.append({"tool_call_id": call.id, "output": f"Unknown tool: {name}"})
                continue

            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                arguments = {"query": call.function.arguments}

            result = await dispatch_tool(name, arguments, context=context, db=db)
            if result["success"]:
                output = result["data"] if isinstance(result["data"], str) else json.dumps(result["data"])
            else:
                output = f"Error: {result['error']}"
            tool_outputs.append({"tool_call_id": call.id, "output": output})

        if tool_outputs:
            await self.client.beta.threads.runs.submit_tool_outputs(
                run.id, thread_id=thread_id, tool_outputs=tool_outputs,
            )
            answered.update(o["tool_call_id"] for o in tool_outputs)

    # ========================================================================
    # Commands
    # ========================================================================

    async def handle_command(
        self,
        db:           Session,
        case:         Case,
        command:      str,
        payload:      dict,
        user_id:      str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        if command not in BACKEND_COMMANDS:
            raise UnsupportedCommandError(command, backend="OpenAI")
        payload = validate_payload(command, payload)
        activity_service.update_progress(db, case.id, 10, "Initializing OpenAI Assistant...")
        assistant_id, thread_id = await self.ensure_session(db, case)

        if command == "user_prompt":
            prompt = payload["promptContent"].strip()
            activity_service.log(
                db, case.id, "User", "Client", "User Prompt", payload.get("displayPrompt") or prompt,
            )
            return await self._prompt_and_respond(
                db, case, assistant_id, thread_id, prompt, "Response", cancel_event,
            )

        if command == "re_run_analysis":
            return await self._prompt_and_respond(
                db, case, assistant_id, thread_id, OPENAI_RERUN_PROMPT, "Response", cancel_event,
            )

        if command == "process_additional_files":
            return await self._process_additional_files(
                db, case, assistant_id, thread_id, payload, user_id, cancel_event,
            )

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
            return await self._prompt_and_respond(
                db, case, assistant_id, thread_id,
                web_search_results_prompt(query, results),
                "Response (Web Search)", cancel_event,
            )

        raise UnsupportedCommandError(command, backend="OpenAI")

    async def _start_run(
        self,
        db:           Session,
        case:         Case,
        assistant_id: str,
        thread_id:    str,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        run = await self.client.beta.threads.runs.create(
            thread_id=thread_id, assistant_id=assistant_id,
        )
        activity_service.log(
            db, case.id, AGENT_NAME, "AI", "Analysis Started",
            f"Run created with ID: {run.id}. Awaiting completion.",
            ActivityStatus.processing.value,
        )
        case.status = CaseStatus.in_progress.value
        db.commit()
        activity_service.update_progress(db, case.id, 50, "OpenAI is processing the request...")

        try:
            return await self.poll_run(db, case.id, thread_id, run.id, cancel_event)
        except RunTimeoutError as e:
            activity_service.log(
                db, case.id, AGENT_NAME, "Error Handler", "Run Timed Out",
                e.message, ActivityStatus.error.value,
            )
            raise

    async def _prompt_and_respond(
        self,
        db:            Session,
        case:          Case,
        assistant_id:  str,
        thread_id:     str,
        prompt:        str,
        activity_type: str,
        cancel_event:  Optional[asyncio.Event],
    ) -> str:
        activity_service.update_progress(db, case.id, 25, "Sending prompt to OpenAI...")
        await self.client.beta.threads.messages.create(thread_id, role="user", content=prompt)

        run = await self._start_run(db, case, assistant_id, thread_id, cancel_event)
        if run.status != "completed":
            self._log_run_failure(db, case.id, run)
            raise RunFailedError(run.status, _last_error_message(run))

        reply = await self._latest_assistant_reply(thread_id)
        if reply is None:
            activity_service.log(
                db, case.id, AGENT_NAME, "AI", f"No {activity_type}",
                "OpenAI Assistant completed run but provided no visible response.",
            )
            self._mark_complete(db, case)
            return "OpenAI Assistant completed run but no response."

        case_data_service.apply_response(db, case.id, reply, AGENT_NAME)
        activity_service.log(db, case.id, AGENT_NAME, "AI", activity_type, reply)
        self._mark_complete(db, case)
        return "OpenAI Assistant responded."

    async def _process_additional_files(
        self,
        db:           Session,
        case:         Case,
        assistant_id: str,
        thread_id:    str,
        payload:      dict,
        user_id:      str,
        cancel_event: Optional[asyncio.Event],
    ) -> str:
        file_names = [n for n in payload["newFileNames"] if n]

        file_ids: list[str] = []
        for name in file_names:
            path = evidence_path(user_id, case.id, name)
            try:
                blob = storage_service.download(path)
            except StorageDownloadError as e:
                activity_service.log(
                    db, case.id, "File Processor", "Error Handler", "File Download Failed",
                    f"Failed to download {name} from storage: {e.message}",
                    ActivityStatus.error.value,
                )
                raise

            try:
                uploaded = await self.client.files.create(file=(name, blob), purpose="assistants")
            except Exception as e:
                activity_service.log(
                    db, case.id, "File Processor", "Error Handler", "OpenAI File Upload Failed",
                    f"Failed to upload {name} to OpenAI: {e}",
                    ActivityStatus.error.value,
                )
                raise OrchestratorError(f"Failed to upload file {name} to OpenAI.") from e

            file_ids.append(uploaded.id)
            self._record_openai_file_id(db, case.id, path, uploaded.id)
            activity_service.log(
                db, case.id, "File Processor", "OpenAI Integration", "File Uploaded to OpenAI",
                f"Successfully uploaded {name} to OpenAI (ID: {uploaded.id}).",
            )

        await self.client.beta.threads.messages.create(
            thread_id,
            role="user",
            content=new_files_prompt(file_names),
            attachments=[{"file_id": fid, "tools": [{"type": "file_search"}]} for fid in file_ids],
        )

        run = await self._start_run(db, case, assistant_id, thread_id, cancel_event)
        if run.status != "completed":
            activity_service.log(
                db, case.id, AGENT_NAME, "Error Handler", "New File Processing Failed",
                f"OpenAI Assistant run for new files failed or ended with status: {run.status}",
                ActivityStatus.error.value,
            )
            raise RunFailedError(run.status, _last_error_message(run))

        reply = await self._latest_assistant_reply(thread_id)
        if reply:
            case_data_service.apply_response(db, case.id, reply, AGENT_NAME)
        activity_service.log(
            db, case.id, AGENT_NAME, "AI", "New Files Processed",
            reply or "OpenAI Assistant has processed the newly uploaded files.",
        )
        self._mark_complete(db, case)
        return "OpenAI Assistant processed new files."

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _latest_assistant_reply(self, thread_id: str) -> Optional[str]:
        messages = await self.client.beta.threads.messages.list(thread_id, order="desc", limit=1)
        data = list(messages.data or [])
        if not data or data[0].role != "assistant":
            return None
        parts = [
            block.text.value
            for block in data[0].content
            if getattr(block, "type", None) == "text"
        ]
        text = "\n".join(parts).strip()
        return text or None

    @staticmethod
    def _log_run_failure(db: Session, case_id: str, run: Any) -> None:
        detail = _last_error_message(run)
        content = f"OpenAI Assistant run failed or ended with status: {run.status}"
        if detail:
            content = f"{content}. {detail}"
        activity_service.log(
            db, case_id, AGENT_NAME, "Error Handler", "Run Failed",
            content, ActivityStatus.error.value,
        )

    @staticmethod
    def _mark_complete(db: Session, case: Case) -> None:
        case.status = CaseStatus.analysis_complete.value
        db.commit()
        activity_service.update_progress(db, case.id, 100, "Analysis complete!")

    @staticmethod
    def _record_openai_file_id(db: Session, case_id: str, path: str, file_id: str) -> None:
        try:
            row = (
                db.query(CaseFileMetadata)
                .filter(CaseFileMetadata.case_id == case_id, CaseFileMetadata.file_path == path)
                .first()
            )
            if row:
                row.openai_file_id = file_id
                db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Failed to record OpenAI file id for %s: %s", path, e)


def _last_error_message(run: Any) -> Optional[str]:
    last_error = getattr(run, "last_error", None)
    if last_error is None:
        return None
    return getattr(last_error, "message", None) or str(last_error)


openai_handler = OpenAIHandler()
