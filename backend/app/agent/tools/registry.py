"""
agent/tools/registry.py
"""
from __future__ import annotations
import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """What a tool call knows about the request that triggered it."""
    case_id: str
    user_id: str | None = None


class BaseTool(ABC):
    name:         str
    description:  str
    input_schema: dict
    # Tools the assistant vendor runs itself are declared by type only
    hosted:       bool = False

    @abstractmethod
    async def run(self, context: ToolContext, db: Any, **kwargs) -> dict: ...

    @staticmethod
    def ok(data: Any) -> dict:
        return {"success": True, "data": data, "error": None}

    @staticmethod
    def err(message: str, data: Any = None) -> dict:
        return {"success": False, "data": data, "error": message}


# (module, class) pairs offered to every case assistant
ASSISTANT_TOOLS = (
    ("app.agent.tools.web_search",  "WebSearchTool"),
    ("app.agent.tools.file_search", "FileSearchTool"),
)


def _build_registry() -> dict[str, BaseTool]:
    registry: dict[str, BaseTool] = {}
    for module_path, class_name in ASSISTANT_TOOLS:
        try:
            tool = getattr(importlib.import_module(module_path), class_name)()
        except Exception as e:
            logger.warning("Tool %s.%s skipped: %s", module_path, class_name, e)
            continue
        registry[tool.name] = tool
    logger.info("Assistant tools ready: %s", sorted(registry))
    return registry


TOOL_REGISTRY: dict[str, BaseTool] = _build_registry()


def _function_parameters(schema: dict | None) -> dict:
    params = {"type": "object", "properties": {}}
    params.update(schema or {})
    if not isinstance(params.get("properties"), dict):
        params["properties"] = {}
    return params


def get_openai_tools() -> list[dict]:
    """Tool declarations for ``beta.assistants.create/update``."""
    tools: list[dict] = []
    for t in TOOL_REGISTRY.values():
        if t.hosted:
            tools.append({"type": t.name})
            continue
        tools.append({
            "type": "function",
            "function": {
                "name":        t.name,
                "description": t.description,
                "parameters":  _function_parameters(t.input_schema),
            },
        })
    return tools


async def dispatch_tool(
    tool_name: str,
    tool_inputs: dict | None = None,
    context: ToolContext | None = None,
    db: Any = None,
) -> dict:
    tool = TOOL_REGISTRY.get(tool_name)
    if not tool:
        return {"success": False, "data": None, "error": f"Unknown tool: {tool_name}"}
    try:
        return await tool.run(context=context, db=db, **(tool_inputs or {}))
    except Exception as e:
        logger.exception("Tool %s crashed: %s", tool_name, e)
        return {"success": False, "data": None, "error": str(e)}
