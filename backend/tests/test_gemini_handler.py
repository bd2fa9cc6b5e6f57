"""
Tests for the Gemini backend: rate-limit retry, chat history and commands.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.agent.gemini_handler import GeminiHandler, call_gemini_with_retry
from app.db.models import AIModel, ActivityStatus, CaseInsight, CaseStatus, GeminiChatTurn
from app.utils.exceptions import ChatHistoryConflictError, GeminiRetryExhaustedError, RequestValidationFailed


class QuotaError(Exception):
    pass


class RateLimited(Exception):
    code = 429


def _turns(db, case_id):
    return (
        db.query(GeminiChatTurn)
        .filter(GeminiChatTurn.case_id == case_id)
        .order_by(GeminiChatTurn.seq)
        .all()
    )


# =============================================================================
# Retry
# =============================================================================


class TestCallGeminiWithRetry:

    @pytest.mark.asyncio
    async def test_three_quota_errors_sleep_five_then_ten_then_fail(self, db, make_case, activities):
        case = make_case(ai_model=AIModel.gemini.value)
        fn = AsyncMock(side_effect=QuotaError("Resource exhausted: quota exceeded"))

        with patch("app.agent.gemini_handler.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(GeminiRetryExhaustedError):
                await call_gemini_with_retry(db, case.id, fn, max_retries=3, initial_delay=5.0)

        assert fn.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 10.0]
        backoffs = activities(case.id, activity_type="Rate Limit Backoff")
        assert len(backoffs) == 2
        assert all(a.status == ActivityStatus.processing.value for a in backoffs)

    @pytest.mark.asyncio
    async def test_http_429_is_retried_until_success(self, db, make_case):
        case = make_case(ai_model=AIModel.gemini.value)
        fn = AsyncMock(side_effect=[RateLimited("Too Many Requests"), "ok"])

        with patch("app.agent.gemini_handler.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await call_gemini_with_retry(db, case.id, fn, max_retries=3, initial_delay=5.0)

        assert result == "ok"
        assert fn.await_count == 2
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self, db, make_case):
        case = make_case(ai_model=AIModel.gemini.value)
        fn = AsyncMock(side_effect=ValueError("bad request"))

        with patch("app.agent.gemini_handler.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ValueError):
                await call_gemini_with_retry(db, case.id, fn, max_retries=3, initial_delay=5.0)

        assert fn.await_count == 1
        sleep.assert_not_awaited()


# =============================================================================
# Commands
# =============================================================================


class TestGeminiCommands:

    @pytest.fixture
    def handler(self):
        return GeminiHandler(client=MagicMock())

    @pytest.mark.asyncio
    async def test_user_prompt_appends_two_turns(self, db, make_case, activities, handler):
        case = make_case(ai_model=AIModel.gemini.value)
        reply = 'Custody looks favourable.\n```json\n{"insights": [{"title": "Stable home", "insight_type": "key_fact"}]}\n```'

        with patch.object(handler, "generate", new=AsyncMock(return_value=reply)):
            message = await handler.handle_command(db, case, "user_prompt", {"promptContent": "Assess custody"})

        assert message == "Google Gemini responded."
        turns = _turns(db, case.id)
        assert [(t.seq, t.role) for t in turns] == [(0, "user"), (1, "model")]
        assert turns[0].parts == [{"text": "Assess custody"}]
        assert case.gemini_chat_history[1] == {"role": "model", "parts": [{"text": reply}]}

        assert len(activities(case.id, activity_type="Response")) == 1
        assert db.query(CaseInsight).filter(CaseInsight.case_id == case.id).count() == 1
        db.refresh(case)
        assert case.status == CaseStatus.analysis_complete.value
        assert case.analysis_progress == 100

    @pytest.mark.asyncio
    async def test_history_is_sent_on_next_prompt(self, db, make_case, handler):
        case = make_case(ai_model=AIModel.gemini.value)
        generate = AsyncMock(side_effect=["first answer", "second answer"])

        with patch.object(handler, "generate", new=generate):
            await handler.handle_command(db, case, "user_prompt", {"promptContent": "one"})
            await handler.handle_command(db, case, "user_prompt", {"promptContent": "two"})

        sent_history = generate.await_args_list[1].args[1]
        assert [t["role"] for t in sent_history] == ["user", "model"]
        assert len(_turns(db, case.id)) == 4

    @pytest.mark.asyncio
    async def test_failure_logs_error_and_keeps_history(self, db, make_case, activities, handler):
        case = make_case(ai_model=AIModel.gemini.value)

        with patch.object(handler, "generate", new=AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(Exception):
                await handler.handle_command(db, case, "user_prompt", {"promptContent": "hi"})

        assert _turns(db, case.id) == []
        errors = activities(case.id, status=ActivityStatus.error.value)
        assert [e.activity_type for e in errors] == ["Gemini Interaction Failed"]

    @pytest.mark.asyncio
    async def test_process_additional_files_adds_one_model_turn(self, db, make_case, activities, handler):
        case = make_case(ai_model=AIModel.gemini.value)

        message = await handler.handle_command(
            db, case, "process_additional_files", {"newFileNames": ["texts.pdf"]},
        )

        assert message == "Gemini noted new files, RAG setup required for analysis."
        turns = _turns(db, case.id)
        assert len(turns) == 1
        assert turns[0].role == "model"
        assert len(activities(case.id, activity_type="File Processing Note")) == 1

    @pytest.mark.asyncio
    async def test_web_search_feeds_results_into_chat(self, db, make_case, activities, handler):
        case = make_case(ai_model=AIModel.gemini.value)
        results = [{"title": "Statute", "link": "https://example.org", "snippet": "s"}]

        with patch("app.agent.gemini_handler.search_web", new=AsyncMock(return_value=results)), \
             patch.object(handler, "generate", new=AsyncMock(return_value="Summary of results")):
            await handler.handle_command(db, case, "web_search", {"query": "custody relocation"})

        assert len(_turns(db, case.id)) == 2
        assert len(activities(case.id, activity_type="Response (Web Search)")) == 1


    @pytest.mark.asyncio
    async def test_empty_query_is_rejected_without_side_effects(self, db, make_case, activities, handler):
        case = make_case(ai_model=AIModel.gemini.value)

        with patch("app.agent.gemini_handler.search_web", new=AsyncMock()) as search:
            with pytest.raises(RequestValidationFailed):
                await handler.handle_command(db, case, "web_search", {"query": ""})

        search.assert_not_awaited()
        assert _turns(db, case.id) == []
        assert activities(case.id) == []

class TestChatHistoryConcurrency:

    def test_losing_writer_gets_conflict(self, db, make_case):
        case = make_case(ai_model=AIModel.gemini.value)
        GeminiHandler.append_turns(db, case, 0, [("user", "a"), ("model", "b")])

        # A second writer that read the history before the first append
        with pytest.raises(ChatHistoryConflictError) as exc_info:
            GeminiHandler.append_turns(db, case, 0, [("user", "c"), ("model", "d")])

        assert exc_info.value.status_code == 409
        assert [t.parts[0]["text"] for t in _turns(db, case.id)] == ["a", "b"]

    def test_appends_continue_from_last_seq(self, db, make_case):
        case = make_case(ai_model=AIModel.gemini.value)
        GeminiHandler.append_turns(db, case, 0, [("user", "a"), ("model", "b")])
        assert GeminiHandler._next_seq(case) == 2
