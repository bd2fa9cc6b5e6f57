"""
Tests for the live activity feed: cursor paging and the SSE endpoint.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.v1.endpoints.sse import activity_events
from app.db.models import AgentActivity
from app.main import app
from app.services.activity_service import ActivityCursor

T0 = datetime(2024, 5, 1, 12, 0, 0)


def _add_activity(db, case, timestamp, activity_type="Response"):
    row = AgentActivity(
        case_id=case.id,
        agent_name="OpenAI Assistant",
        agent_role="AI",
        activity_type=activity_type,
        content=activity_type,
        status="completed",
        timestamp=timestamp,
    )
    db.add(row)
    db.commit()
    return row


def _disconnecting_request(polls):
    request = MagicMock()
    request.is_disconnected = AsyncMock(side_effect=[False] * polls + [True])
    return request


async def _collect(case_id, request):
    with patch("app.api.v1.endpoints.sse.asyncio.sleep", new=AsyncMock()):
        return [event async for event in activity_events(case_id, request)]


class TestActivityCursor:

    def test_rows_sharing_a_timestamp_span_pages(self, db, make_case):
        case = make_case()
        db.add_all([
            AgentActivity(case_id=case.id, agent_name="a", agent_role="r", activity_type=f"step {i}",
                          content="", status="completed", timestamp=T0)
            for i in range(201)
        ])
        db.commit()
        cursor = ActivityCursor(case.id, page_size=200)

        first = cursor.next_batch(db)
        second = cursor.next_batch(db)

        assert len(first) == 200
        assert len(second) == 1
        assert len({r.id for r in first + second}) == 201
        assert cursor.next_batch(db) == []

    def test_late_commit_with_older_stamp_is_still_sent(self, db, make_case):
        case = make_case()
        _add_activity(db, case, T0 + timedelta(seconds=10), "Analysis Started")
        cursor = ActivityCursor(case.id, lookback_seconds=30)
        assert [r.activity_type for r in cursor.next_batch(db)] == ["Analysis Started"]

        # stamped earlier, committed later by another request
        _add_activity(db, case, T0 + timedelta(seconds=4), "Web Search Initiated")

        assert [r.activity_type for r in cursor.next_batch(db)] == ["Web Search Initiated"]
        assert cursor.next_batch(db) == []

    def test_rows_come_oldest_first(self, db, make_case):
        case = make_case()
        _add_activity(db, case, T0 + timedelta(seconds=2), "second")
        _add_activity(db, case, T0, "first")

        rows = ActivityCursor(case.id).next_batch(db)

        assert [r.activity_type for r in rows] == ["first", "second"]

    def test_other_cases_are_ignored(self, db, make_case):
        case = make_case()
        other = make_case(name="Other")
        _add_activity(db, other, T0)

        assert ActivityCursor(case.id).next_batch(db) == []


class TestActivityEvents:

    @pytest.mark.asyncio
    async def test_each_row_is_sent_once_with_its_id(self, db, make_case):
        case = make_case()
        first = _add_activity(db, case, T0, "Case Created")
        second = _add_activity(db, case, T0 + timedelta(seconds=1), "Response")

        events = await _collect(case.id, _disconnecting_request(polls=2))

        activity = [e for e in events if e["event"] == "activity"]
        assert [e["id"] for e in activity] == [first.id, second.id]
        assert json.loads(activity[0]["data"])["activity_type"] == "Case Created"
        assert [e["event"] for e in events].count("ping") == 2

    @pytest.mark.asyncio
    async def test_stops_when_client_disconnects(self, db, make_case):
        case = make_case()
        _add_activity(db, case, T0)

        events = await _collect(case.id, _disconnecting_request(polls=0))

        assert events == []

    @pytest.mark.asyncio
    async def test_repeated_errors_end_the_stream(self, db, make_case):
        case = make_case()
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)

        with patch("app.api.v1.endpoints.sse.ActivityCursor.next_batch", side_effect=RuntimeError("db gone")):
            events = await _collect(case.id, request)

        assert [e["event"] for e in events] == ["error", "error", "error"]


class TestStreamEndpoint:

    def test_other_users_case_is_refused(self, db, make_case):
        case = make_case(user_id="someone-else")

        with TestClient(app) as client:
            response = client.get(
                f"/api/v1/cases/{case.id}/activities/stream",
                headers={"x-supabase-user-id": "user-1"},
            )

        assert response.status_code == 500
        assert response.json() == {"error": "Case not found"}

    def test_missing_user_is_400(self, db, make_case):
        case = make_case()

        with TestClient(app) as client:
            response = client.get(f"/api/v1/cases/{case.id}/activities/stream")

        assert response.status_code == 400
