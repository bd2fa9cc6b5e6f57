"""
agent/prompts.py

Prompt text shared by the OpenAI and Gemini backends and the one-shot
evidence functions (categorizer, summarizer, timeline, graph analysis).

Usage:
    from app.agent.prompts import ASSISTANT_INSTRUCTIONS, new_files_prompt
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Iterable


# ============================================================================
# Case assistant persona
# ============================================================================

_STRUCTURED_OUTPUT_RULES = """
When your analysis changes the case theory or surfaces new insights, end your \
reply with a single JSON object inside a ```json markdown block:

```json
{
  "theory_update": {
    "fact_patterns": ["..."],
    "legal_arguments": ["..."],
    "potential_outcomes": ["..."],
    "status": "developing"
  },
  "insights": [
    {"title": "...", "description": "...", "insight_type": "key_fact"}
  ]
}
```

insight_type is one of key_fact, risk_assessment, outcome_trend or general. \
Omit the block entirely when nothing changed."""

ASSISTANT_INSTRUCTIONS = (
    "You are a specialized legal AI assistant for California family law. "
    "Your role is to analyze evidence, identify key facts, and help build a case theory. "
    "Base your analysis strictly on the provided files. "
    "Case Goals: {case_goals}. System Instructions: {system_instruction}"
    + _STRUCTURED_OUTPUT_RULES.replace("{", "{{").replace("}", "}}")
)

# Gemini has no assistant object; the persona rides along as system_instruction
GEMINI_SYSTEM_INSTRUCTION = ASSISTANT_INSTRUCTIONS


# ============================================================================
# Orchestrator commands
# ============================================================================

OPENAI_RERUN_PROMPT = (
    "Please perform a comprehensive analysis of all the evidence files associated with this case. "
    "Your primary objectives are to identify key themes, generate a high-level summary, "
    "create key insights, and update the case theory. "
    "Structure your response as a JSON object within a markdown block."
)

GEMINI_RERUN_PROMPT = (
    "Perform a comprehensive analysis of the case so far. Summarize the key facts, events, "
    "and overall case narrative, then update the case theory and insights."
)


def new_files_prompt(file_names: Iterable[str]) -> str:
    return (
        f"New files have been uploaded for analysis: {', '.join(file_names)}. "
        "Please incorporate them into your ongoing analysis."
    )


def gemini_files_note(file_names: Iterable[str]) -> str:
    return (
        f"New files ({', '.join(file_names)}) have been uploaded to storage for this case. "
        "Google Gemini currently does not support direct document analysis without a "
        "Retrieval Augmented Generation (RAG) setup. These files are available for future "
        "RAG integration but will not be analyzed by Gemini at this time."
    )


def _results_block(results: list[dict[str, Any]]) -> str:
    return json.dumps(results, indent=2) if results else "No results found."


def web_search_results_prompt(query: str, results: list[dict[str, Any]]) -> str:
    return (
        f'Web search results for "{query}":\n```json\n{_results_block(results)}\n```\n'
        "Please analyze these results and incorporate them into your case theory "
        "or provide relevant insights."
    )


def gemini_web_search_prompt(query: str, results: list[dict[str, Any]]) -> str:
    return (
        f'I performed a web search for "{query}". Here are the results:\n'
        f"```json\n{_results_block(results)}\n```\n"
        "Please analyze these results and incorporate them into your case theory "
        "or provide relevant insights."
    )


# ============================================================================
# Evidence functions
# ============================================================================

def categorizer_prompt(file_name: str, snippet: str) -> str:
    return f"""
Analyze the metadata and content snippet of the following legal document.
Original Filename: "{file_name}"
Content Snippet: "{snippet}"

Based on this information, provide a logical category and a new, descriptive filename.
The filename should follow the format: YYYY-MM-DD_Document-Type_Brief-Description.ext
- The date should be the most prominent date found in the document. If none, use today's date ({date.today().isoformat()}).
- Document-Type should be a concise category (e.g., Financial-Statement, Email, Court-Order, Property-Deed, Declaration).
- Brief-Description should be a few keywords summarizing the content.
- Keep the original file extension.
- IMPORTANT: The new filename must not contain any slashes ('/' or '\\').

Respond ONLY with a JSON object in the format:
{{
  "category": "Your Suggested Category",
  "suggestedName": "Your-Suggested-Filename.ext"
}}
"""


def summarizer_prompt(file_name: str, snippet: str) -> str:
    return f"""
Analyze the content of the following legal document snippet.
Original Filename: "{file_name}"
Content Snippet: "{snippet}"

Based on this information, please perform two tasks:
1. Generate a concise, one-to-two sentence summary of the document's purpose and key contents.
2. Extract a list of 3-5 relevant keywords or tags (as a JSON array of strings) that describe the main topics, people, or entities mentioned.

Respond ONLY with a JSON object in the format:
{{
  "summary": "Your one or two sentence summary here.",
  "tags": ["tag1", "tag2", "tag3"]
}}
"""


def binary_summarizer_prompt(file_name: str) -> str:
    return f"""
The file "{file_name}" could not be read as text (it is likely an image or a scan).
Based on its filename, provide a simple summary and tags.

Respond ONLY with a JSON object in the format:
{{
  "summary": "Binary file (e.g., image, scan) with original name: {file_name}",
  "tags": ["binary file", "image/scan"]
}}
"""


def timeline_prompt(evidence_context: str, focus: str | None = None) -> str:
    focus_line = f"\nFocus the timeline on: {focus}\n" if focus else ""
    return f"""
You are a specialized AI agent tasked with creating a chronological timeline of events from a set of case evidence summaries.
Analyze the following evidence context and extract key events. For each event, provide a date (if available), a concise title, a brief description, and the IDs of the files that support it.
The date should be in YYYY-MM-DD format if possible. If no specific date is found, use the file's context to estimate or state "Date Unknown".
{focus_line}
Respond ONLY with a JSON object with a single key "timeline_events", an array of objects with "event_date", "title", "description" and "relevant_file_ids" keys.

Example Response:
{{
  "timeline_events": [
    {{
      "event_date": "2023-01-15",
      "title": "Financial Misconduct Alleged",
      "description": "Email from Jane Doe to John Doe alleges unauthorized transfer of funds.",
      "relevant_file_ids": ["<file id>"]
    }}
  ]
}}

Here is the evidence context:
---
{evidence_context}
---
"""


GRAPH_PROMPT_DISPLAY = "Analyze the case knowledge graph."


def graph_analysis_prompt(graph_text: str) -> str:
    return f"""
The following is a text representation of a knowledge graph for a legal case. Each line represents a relationship between two entities.
Analyze these relationships to identify key insights, hidden patterns, and important entities.
Summarize your findings in a clear, concise manner. Focus on connections that might be important for a legal strategy.

Graph Data:
---
{graph_text}
---
"""
