"""
Stand-alone web search (Google Programmable Search).
"""
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.services.web_search_service import search_web
from app.utils.exceptions import RequestValidationFailed

router = APIRouter()


class WebSearchRequest(BaseModel):
    query: Optional[str] = None


@router.post("/web-search")
async def web_search(body: WebSearchRequest):
    """
    Returns: { "results": [{title, link, snippet}] }.
    """
    if not body.query or not body.query.strip():
        raise RequestValidationFailed("Search query is required")
    return {"results": await search_web(body.query)}
