"""
Tests for shaping Neo4j records into the graph payload and text.
"""

from unittest.mock import patch

import pytest

from app.core.config import settings
from neo4j.exceptions import ServiceUnavailable

from app.db.models import CaseInsight
from app.services.graph_service import GraphService, build_graph_payload, build_graph_text
from app.utils.exceptions import CaseNotFoundError, ConfigurationError, GraphStoreError


class FakeNode:
    def __init__(self, element_id, label, **props):
        self.element_id = element_id
        self.labels = frozenset([label])
        self._props = props

    def get(self, key, default=None):
        return self._props.get(key, default)


class FakeRel:
    def __init__(self, start, end, rel_type):
        self.start_node = start
        self.end_node = end
        self.type = rel_type


CASE = FakeNode("4:c", "Case", id="case-1", name="Doe Custody")
FILE = FakeNode("4:f", "File", id="file-1", suggestedName="Bank_Statement.pdf")
CATEGORY = FakeNode("4:k", "Category", name="Financial")
INSIGHT = FakeNode("4:i", "Insight", id="ins-1", title="Hidden account")


class TestBuildGraphPayload:

    def test_nodes_and_links_are_deduplicated(self):
        records = [
            {"c": CASE, "r": FakeRel(CASE, FILE, "HAS_EVIDENCE"), "n": FILE},
            {"c": CASE, "r": FakeRel(CASE, FILE, "HAS_EVIDENCE"), "n": FILE},
            {"c": CASE, "r": FakeRel(CASE, INSIGHT, "HAS_INSIGHT"), "n": INSIGHT},
        ]

        payload = build_graph_payload(records)

        assert payload["nodes"] == [
            {"id": "case-1", "name": "Doe Custody", "label": "Case"},
            {"id": "file-1", "name": "Bank_Statement.pdf", "label": "File"},
            {"id": "ins-1", "name": "Hidden account", "label": "Insight"},
        ]
        assert payload["links"] == [
            {"source": "case-1", "target": "file-1", "label": "HAS_EVIDENCE"},
            {"source": "case-1", "target": "ins-1", "label": "HAS_INSIGHT"},
        ]

    def test_node_without_id_uses_element_id(self):
        records = [{"c": FILE, "r": FakeRel(FILE, CATEGORY, "IS_CATEGORIZED_AS"), "n": CATEGORY}]
        payload = build_graph_payload(records)
        assert {"id": "4:k", "name": "Financial", "label": "Category"} in payload["nodes"]
        assert payload["links"] == [{"source": "file-1", "target": "4:k", "label": "IS_CATEGORIZED_AS"}]


class TestBuildGraphText:

    def test_one_and_two_hop_lines(self):
        records = [
            {"c": CASE, "r": FakeRel(CASE, FILE, "HAS_EVIDENCE"), "n": FILE,
             "r2": FakeRel(FILE, CATEGORY, "IS_CATEGORIZED_AS"), "m": CATEGORY},
            {"c": CASE, "r": FakeRel(CASE, FILE, "HAS_EVIDENCE"), "n": FILE, "r2": None, "m": None},
        ]

        text = build_graph_text(records)

        assert text.splitlines() == [
            "(Case: Doe Custody)-[:HAS_EVIDENCE]->(File: Bank_Statement.pdf)",
            "(File: Bank_Statement.pdf)-[:IS_CATEGORIZED_AS]->(Category: Financial)",
        ]


class TestGraphServiceConfig:

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_configuration_error(self):
        with patch.object(settings, "NEO4J_URI", ""):
            with pytest.raises(ConfigurationError):
                await GraphService().get_graph("case-1")


class FakeTx:
    def __init__(self):
        self.runs = []

    async def run(self, query, **params):
        self.runs.append((query, params))


class FakeSession:
    def __init__(self, tx, error=None):
        self.tx = tx
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute_write(self, work):
        if self.error:
            raise self.error
        await work(self.tx)


class FakeDriver:
    def __init__(self, tx, error=None):
        self.tx = tx
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def session(self, database=None):
        return FakeSession(self.tx, self.error)


class TestExportCase:

    @pytest.mark.asyncio
    async def test_writes_case_files_and_insights_in_one_transaction(self, db, make_case, add_file):
        case = make_case(name="Doe Custody")
        add_file(case, "a.pdf", suggested_name="Bank.pdf", file_category="Financial", tags=["bank", "2023"])
        add_file(case, "b.jpg")
        db.add(CaseInsight(case_id=case.id, title="Hidden account", description="", insight_type="key_fact"))
        db.commit()
        tx = FakeTx()
        service = GraphService()

        with patch.object(service, "_driver", return_value=FakeDriver(tx)):
            counts = await service.export_case(db, case.id)

        assert counts == {"files": 2, "insights": 1}
        case_merge = [p for q, p in tx.runs if q.startswith("MERGE (c:Case")]
        assert case_merge == [{"id": case.id, "name": "Doe Custody", "type": case.type, "status": case.status}]
        file_params = next(p["files"] for q, p in tx.runs if "HAS_EVIDENCE]->(f)" in q and "files" in p)
        assert sorted(f["file_name"] for f in file_params) == ["a.pdf", "b.jpg"]
        assert {"bank", "2023"} == set(next(f["tags"] for f in file_params if f["file_name"] == "a.pdf"))
        insight_params = next(p["insights"] for q, p in tx.runs if "insights" in p)
        assert [i["title"] for i in insight_params] == ["Hidden account"]

    @pytest.mark.asyncio
    async def test_case_without_evidence_only_writes_the_case(self, db, make_case):
        case = make_case()
        tx = FakeTx()
        service = GraphService()

        with patch.object(service, "_driver", return_value=FakeDriver(tx)):
            counts = await service.export_case(db, case.id)

        assert counts == {"files": 0, "insights": 0}
        assert not any("UNWIND" in q for q, _ in tx.runs)

    @pytest.mark.asyncio
    async def test_unreachable_store_raises_graph_error(self, db, make_case):
        case = make_case()
        service = GraphService()
        driver = FakeDriver(FakeTx(), error=ServiceUnavailable("connection refused"))

        with patch.object(service, "_driver", return_value=driver):
            with pytest.raises(GraphStoreError) as exc_info:
                await service.export_case(db, case.id)

        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_case(self, db):
        with pytest.raises(CaseNotFoundError):
            await GraphService().export_case(db, "nope")
