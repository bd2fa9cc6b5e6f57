"""
Main API router aggregator
"""
from fastapi import APIRouter

from app.api.v1.endpoints import (
    case_data,
    evidence,
    exports,
    graph,
    health,
    orchestrator,
    sse,
    timeline,
    web_search,
)

api_router = APIRouter()

# Include routers
api_router.include_router(orchestrator.router, tags=["AI Orchestrator"])
api_router.include_router(evidence.router, tags=["Evidence"])
api_router.include_router(timeline.router, tags=["Timeline"])
api_router.include_router(graph.router, tags=["Knowledge Graph"])
api_router.include_router(exports.router, tags=["Exports"])
api_router.include_router(web_search.router, tags=["Web Search"])
api_router.include_router(case_data.router, tags=["Case Data"])
api_router.include_router(sse.router, tags=["Real-time"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
