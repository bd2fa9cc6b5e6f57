"""
agent/tools/web_search.py

``web_search`` function tool for the OpenAI assistant. Runs a Google
Custom Search and hands the JSON-encoded results back to the run. Each
call leaves an Initiated row and then a Completed or Failed row in the
case's activity trail.
"""
from __future__ import annotations

import json
from typing import Any

from app.agent.tools.registry import BaseTool, ToolContext
from app.db.models import ActivityStatus
from app.services.activity_service import activity_service
from app.services.web_search_service import search_web
from app.utils.exceptions import OrchestratorError

# Longest slice of the tool output echoed into the activity trail
ACTIVITY_PREVIEW_CHARS = 200


class WebSearchTool(BaseTool):
    name = "web_search"
    description = (
        "Performs a web search for current legal information, case law, "
        "statutes or news relevant to the case."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query.",
            },
        },
        "required": ["query"],
    }

    async def run(self, context: ToolContext, db: Any, **kwargs) -> dict:
        query = (kwargs.get("query") or "").strip()
        case_id = context.case_id

        activity_service.log(
            db, case_id, "OpenAI Assistant", "Tool Executor",
            "Web Search Initiated",
            f"Performing web search for: {json.dumps(kwargs)}",
            ActivityStatus.processing.value,
        )

        try:
            results = await search_web(query)
        except OrchestratorError as e:
            activity_service.log(
                db, case_id, "Web Search Agent", "Error Handler",
                "Web Search Failed",
                f"Web search failed: {e.message}",
                ActivityStatus.error.value,
            )
            return self.err(e.message)

        output = json.dumps(results)
        activity_service.log(
            db, case_id, "Web Search Agent", "Tool Executor",
            "Web Search Completed",
            f"Web search completed. Results: {output[:ACTIVITY_PREVIEW_CHARS]}...",
            ActivityStatus.completed.value,
        )
        return self.ok(output)
