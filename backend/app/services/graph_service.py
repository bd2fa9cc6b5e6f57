"""
services/graph_service.py

Case knowledge graph in Neo4j.

The graph is rebuilt from the relational tables on export (Case, File,
Category, Tag and Insight nodes) and read back either as a
``{nodes, links}`` payload for the graph view or as relationship lines
for the model to analyse.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from neo4j import AsyncGraphDatabase
from neo4j.exceptions import Neo4jError, ServiceUnavailable
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import Case, CaseFileMetadata, CaseInsight
from app.utils.exceptions import CaseNotFoundError, ConfigurationError, GraphStoreError

logger = logging.getLogger(__name__)

NO_GRAPH_DATA = "No graph data found for this case in Neo4j. Please export the data first."

CASE_NEIGHBOURS_QUERY = "MATCH (c:Case {id: $caseId})-[r]-(n) RETURN c, r, n"

CASE_TWO_HOP_QUERY = """
MATCH (c:Case {id: $caseId})-[r]-(n)
OPTIONAL MATCH (n)-[r2]-(m)
WHERE m <> c
RETURN c, r, n, r2, m
LIMIT 200
"""

# ============================================================================
# Record shaping
# ============================================================================


def _label(node: Any) -> str:
    labels = sorted(getattr(node, "labels", None) or [])
    return labels[0] if labels else "Node"


def _display_name(node: Any) -> str:
    for key in ("name", "title", "suggestedName"):
        value = node.get(key)
        if value:
            return str(value)
    return _label(node)


def _node_key(node: Any) -> str:
    return str(getattr(node, "element_id", None) or node.get("id"))


def build_graph_payload(records: Iterable[Mapping[str, Any]]) -> dict:
    """
    ``{nodes: [{id, name, label}], links: [{source, target, label}]}`` with
    nodes unique by element id and links unique by source-target-type.
    """
    nodes: dict[str, dict] = {}
    links: dict[str, dict] = {}

    for record in records:
        for node in (record["c"], record["n"]):
            if node is None:
                continue
            key = _node_key(node)
            if key not in nodes:
                nodes[key] = {
                    "id": node.get("id") or key,
                    "name": _display_name(node),
                    "label": _label(node),
                }

        rel = record["r"]
        if rel is None:
            continue
        source = nodes.get(_node_key(rel.start_node))
        target = nodes.get(_node_key(rel.end_node))
        if not source or not target:
            continue
        link_key = f"{source['id']}-{target['id']}-{rel.type}"
        if link_key not in links:
            links[link_key] = {"source": source["id"], "target": target["id"], "label": rel.type}

    return {"nodes": list(nodes.values()), "links": list(links.values())}


def build_graph_text(records: Iterable[Mapping[str, Any]]) -> str:
    """One ``(Label: name)-[:TYPE]->(Label: name)`` line per distinct relationship."""
    lines: dict[str, None] = {}

    def line(a: Any, rel: Any, b: Any) -> str:
        return f"({_label(a)}: {_display_name(a)})-[:{rel.type}]->({_label(b)}: {_display_name(b)})"

    for record in records:
        c, r, n = record["c"], record["r"], record["n"]
        lines.setdefault(line(c, r, n))
        r2, m = record.get("r2"), record.get("m")
        if r2 is not None and m is not None:
            lines.setdefault(line(n, r2, m))
    return "\n".join(lines)


# ============================================================================
# Service
# ============================================================================


class GraphService:

    def _driver(self):
        if not (settings.NEO4J_URI and settings.NEO4J_USERNAME and settings.NEO4J_PASSWORD):
            raise ConfigurationError("Neo4j connection URI or credentials are not configured.")
        return AsyncGraphDatabase.driver(
            settings.NEO4J_URI, auth=(settings.NEO4J_USERNAME, settings.NEO4J_PASSWORD)
        )

    async def _read(self, query: str, case_id: str) -> list:
        try:
            async with self._driver() as driver:
                async with driver.session(database=settings.NEO4J_DATABASE) as session:
                    result = await session.run(query, caseId=case_id)
                    records = [record async for record in result]
        except (Neo4jError, ServiceUnavailable) as e:
            logger.error("Neo4j query failed for case %s: %s", case_id, e)
            raise GraphStoreError(f"Neo4j query failed: {e}") from e

        if not records:
            raise GraphStoreError(NO_GRAPH_DATA)
        return records

    async def get_graph(self, case_id: str) -> dict:
        records = await self._read(CASE_NEIGHBOURS_QUERY, case_id)
        return build_graph_payload(records)

    async def get_graph_text(self, case_id: str) -> str:
        records = await self._read(CASE_TWO_HOP_QUERY, case_id)
        return build_graph_text(records)

    async def export_case(self, db: Session, case_id: str) -> dict:
        """
        Replace the case's subgraph with the current relational state in a
        single write transaction.
        """
        case = db.query(Case).filter(Case.id == case_id).first()
        if not case:
            raise CaseNotFoundError(case_id)

        files = [
            {
                "id": f.id,
                "file_name": f.file_name,
                "suggested_name": f.suggested_name,
                "file_category": f.file_category,
                "tags": list(f.tags or []),
            }
            for f in db.query(CaseFileMetadata).filter(CaseFileMetadata.case_id == case_id).all()
        ]
        insights = [
            {
                "id": i.id,
                "title": i.title,
                "description": i.description,
                "insight_type": i.insight_type,
            }
            for i in db.query(CaseInsight).filter(CaseInsight.case_id == case_id).all()
        ]
        case_props = {"id": case.id, "name": case.name, "type": case.type, "status": case.status}

        async def _write(tx):
            await tx.run(
                """
                MATCH (c:Case {id: $caseId})
                OPTIONAL MATCH (c)-[:HAS_EVIDENCE]->(f:File)
                OPTIONAL MATCH (c)-[:HAS_INSIGHT]->(i:Insight)
                DETACH DELETE f, i
                """,
                caseId=case_id,
            )
            await tx.run(
                "MATCH (c:Case {id: $caseId}) OPTIONAL MATCH (c)-[r]-() DELETE r",
                caseId=case_id,
            )
            await tx.run(
                "MERGE (c:Case {id: $id}) SET c.name = $name, c.type = $type, c.status = $status",
                **case_props,
            )
            if files:
                await tx.run(
                    """
                    UNWIND $files AS file
                    MERGE (f:File {id: file.id})
                    SET f.name = file.file_name, f.suggestedName = file.suggested_name
                    WITH f, file
                    MATCH (c:Case {id: $caseId})
                    MERGE (c)-[:HAS_EVIDENCE]->(f)
                    """,
                    files=files, caseId=case_id,
                )
                await tx.run(
                    """
                    UNWIND $files AS file
                    WITH file WHERE file.file_category IS NOT NULL
                    MERGE (cat:Category {name: file.file_category})
                    WITH cat, file
                    MATCH (f:File {id: file.id})
                    MERGE (f)-[:IS_CATEGORIZED_AS]->(cat)
                    """,
                    files=files,
                )
                await tx.run(
                    """
                    UNWIND $files AS file
                    UNWIND file.tags AS tagName
                    MERGE (t:Tag {name: tagName})
                    WITH t, file
                    MATCH (f:File {id: file.id})
                    MERGE (f)-[:HAS_TAG]->(t)
                    """,
                    files=files,
                )
            if insights:
                await tx.run(
                    """
                    UNWIND $insights AS insight
                    MERGE (i:Insight {id: insight.id})
                    SET i.title = insight.title, i.description = insight.description,
                        i.type = insight.insight_type
                    WITH i, insight
                    MATCH (c:Case {id: $caseId})
                    MERGE (c)-[:HAS_INSIGHT]->(i)
                    """,
                    insights=insights, caseId=case_id,
                )

        try:
            async with self._driver() as driver:
                async with driver.session(database=settings.NEO4J_DATABASE) as session:
                    await session.execute_write(_write)
        except (Neo4jError, ServiceUnavailable) as e:
            logger.error("Neo4j export failed for case %s: %s", case_id, e)
            raise GraphStoreError(f"Failed to export to Neo4j: {e}") from e

        logger.info("Exported case %s to Neo4j: %d files, %d insights", case_id, len(files), len(insights))
        return {"files": len(files), "insights": len(insights)}


graph_service = GraphService()
