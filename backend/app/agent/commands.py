"""
agent/commands.py

Payload checks shared by both backends. They run before a handler touches
the vendor or the database, so a bad request fails with a 400 and leaves
no assistant, thread, progress update or activity row behind.
"""
from __future__ import annotations

from typing import Optional

from app.utils.exceptions import RequestValidationFailed

USER_PROMPT              = "user_prompt"
RE_RUN_ANALYSIS          = "re_run_analysis"
PROCESS_ADDITIONAL_FILES = "process_additional_files"
WEB_SEARCH               = "web_search"

# Commands both model backends answer
BACKEND_COMMANDS = frozenset({USER_PROMPT, RE_RUN_ANALYSIS, PROCESS_ADDITIONAL_FILES, WEB_SEARCH})


def _has_text(payload: dict, key: str) -> bool:
    value = payload.get(key)
    return isinstance(value, str) and bool(value.strip())


def validate_payload(command: str, payload: Optional[dict]) -> dict:
    """Return the payload (``{}`` when absent) or raise RequestValidationFailed."""
    payload = payload or {}

    if command == USER_PROMPT:
        if not _has_text(payload, "promptContent"):
            raise RequestValidationFailed("payload.promptContent is required for user_prompt")

    elif command == PROCESS_ADDITIONAL_FILES:
        names = payload.get("newFileNames")
        if not isinstance(names, list) or not [n for n in names if n]:
            raise RequestValidationFailed("payload.newFileNames must be a non-empty list")

    elif command == WEB_SEARCH:
        if not _has_text(payload, "query"):
            raise RequestValidationFailed("payload.query is required for web_search")

    return payload
