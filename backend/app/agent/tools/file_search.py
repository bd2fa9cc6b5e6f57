"""
agent/tools/file_search.py

OpenAI's hosted retrieval over the files attached to the thread. OpenAI
runs it; if a run still hands a ``file_search`` call back to us we answer
with an empty output and note it in the activity trail.
"""
from __future__ import annotations

import json
from typing import Any

from app.agent.tools.registry import BaseTool, ToolContext
from app.db.models import ActivityStatus
from app.services.activity_service import activity_service


class FileSearchTool(BaseTool):
    name = "file_search"
    description = "Searches the evidence files attached to the case thread."
    input_schema = {"type": "object", "properties": {}}
    hosted = True

    async def run(self, context: ToolContext, db: Any, **kwargs) -> dict:
        activity_service.log(
            db, context.case_id, "OpenAI Assistant", "Tool Executor",
            "File Search Initiated",
            f"File search requested. Query: {json.dumps(kwargs)}",
            ActivityStatus.processing.value,
        )
        return self.ok("")
