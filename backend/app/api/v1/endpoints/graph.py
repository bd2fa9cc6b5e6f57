"""
Case knowledge graph endpoints (Neo4j).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.agent.orchestrator import dispatch_command
from app.agent.prompts import GRAPH_PROMPT_DISPLAY, graph_analysis_prompt
from app.api.v1.deps import get_optional_user_id
from app.core.config import settings
from app.db.database import get_db
from app.services.activity_service import activity_service
from app.services.graph_service import graph_service
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class GraphRequest(BaseModel):
    caseId: Optional[str] = None


def _require_case_id(body: GraphRequest) -> str:
    if not body.caseId:
        raise RequestValidationFailed("Case ID is required")
    return body.caseId


@router.post("/get-neo4j-graph")
async def get_graph(body: GraphRequest):
    """
    Returns: { "nodes": [{id, name, label}], "links": [{source, target, label}] }.
    """
    return await graph_service.get_graph(_require_case_id(body))


@router.post("/get-neo4j-graph-for-ai")
async def analyse_graph(
    body: GraphRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    """
    Send the case graph, as relationship lines, to the case's model.
    """
    case_id = _require_case_id(body)
    if not user_id:
        raise RequestValidationFailed("Case ID and User ID are required")

    graph_text = await graph_service.get_graph_text(case_id)
    if len(graph_text) > settings.GRAPH_TEXT_MAX_CHARS:
        activity_service.log(
            db, case_id, "Graph Agent", "System", "Graph Analysis Warning",
            "The knowledge graph is too large to analyze in a single pass. Analysis will be "
            "performed on a summarized version of the graph. For full detail, explore the graph visually.",
        )
        graph_text = graph_text[: settings.GRAPH_TEXT_MAX_CHARS]

    await dispatch_command(
        db, case_id, user_id, "user_prompt",
        {"promptContent": graph_analysis_prompt(graph_text), "displayPrompt": GRAPH_PROMPT_DISPLAY},
    )
    return {"message": "Graph analysis prompt sent to AI."}


@router.post("/export-to-neo4j")
async def export_graph(body: GraphRequest, db: Session = Depends(get_db)):
    """
    Rebuild the case subgraph from the current case data.
    """
    case_id = _require_case_id(body)
    counts = await graph_service.export_case(db, case_id)
    return {"message": "Case data exported to Neo4j successfully.", **counts}
