"""
Tests for reading and applying the ```json case-update block.
"""

import pytest

from app.db.models import ActivityStatus, CaseInsight, CaseTheory, InsightType
from app.services.case_data_service import case_data_service
from app.services.structured_output import (
    extract_json_from_markdown,
    parse_structured_update,
)
from app.utils.exceptions import StructuredOutputError

KEY_FACT_REPLY = """Here is my analysis of the bank statements.

```json
{
  "insights": [
    {"title": "Hidden account", "description": "Transfers to an undisclosed account.", "insight_type": "key_fact"}
  ]
}
```
"""


# =============================================================================
# Parsing
# =============================================================================


class TestExtractJsonFromMarkdown:

    def test_returns_none_without_block(self):
        assert extract_json_from_markdown("Plain answer, no data.") is None

    def test_returns_none_for_empty_text(self):
        assert extract_json_from_markdown("") is None
        assert extract_json_from_markdown(None) is None

    def test_parses_first_block(self):
        text = 'a\n```json\n{"a": 1}\n```\nb\n```json\n{"b": 2}\n```'
        assert extract_json_from_markdown(text) == {"a": 1}

    def test_invalid_json_raises_value_error(self):
        with pytest.raises(ValueError):
            extract_json_from_markdown("```json\n{not json}\n```")


class TestParseStructuredUpdate:

    def test_no_block_is_none(self):
        assert parse_structured_update("Nothing structured here.") is None

    def test_malformed_block_raises(self):
        with pytest.raises(StructuredOutputError):
            parse_structured_update("```json\n{\"insights\": [\n```")

    def test_non_object_block_raises(self):
        with pytest.raises(StructuredOutputError):
            parse_structured_update("```json\n[1, 2, 3]\n```")

    def test_schema_violation_raises(self):
        text = '```json\n{"insights": [{"description": "missing title"}]}\n```'
        with pytest.raises(StructuredOutputError):
            parse_structured_update(text)

    def test_unknown_insight_type_becomes_general(self):
        text = '```json\n{"insights": [{"title": "T", "insight_type": "hunch"}]}\n```'
        update = parse_structured_update(text)
        assert update.insights[0].insight_type == InsightType.general.value

    def test_timeline_type_is_not_accepted_from_chat(self):
        text = '```json\n{"insights": [{"title": "T", "insight_type": "auto_generated_event"}]}\n```'
        update = parse_structured_update(text)
        assert update.insights[0].insight_type == InsightType.general.value

    def test_null_insights_is_empty_list(self):
        text = '```json\n{"theory_update": {"fact_patterns": ["x"]}, "insights": null}\n```'
        update = parse_structured_update(text)
        assert update.insights == []
        assert update.theory_update.fact_patterns == ["x"]
        assert not update.is_empty


# =============================================================================
# Applying
# =============================================================================


class TestApplyResponse:

    def test_single_key_fact_creates_exactly_one_row(self, db, make_case):
        case = make_case()
        case_data_service.apply_response(db, case.id, KEY_FACT_REPLY, "OpenAI Assistant")

        rows = db.query(CaseInsight).filter(CaseInsight.case_id == case.id).all()
        assert len(rows) == 1
        assert rows[0].title == "Hidden account"
        assert rows[0].insight_type == "key_fact"
        assert rows[0].description == "Transfers to an undisclosed account."

    def test_theory_update_creates_missing_row(self, db, make_case):
        case = make_case()
        text = """```json
{"theory_update": {"fact_patterns": ["f1"], "legal_arguments": ["a1", "a2"],
                   "potential_outcomes": [], "status": "developing"}}
```"""
        case_data_service.apply_response(db, case.id, text, "Google Gemini")

        theory = db.query(CaseTheory).filter(CaseTheory.case_id == case.id).one()
        assert theory.fact_patterns == ["f1"]
        assert theory.legal_arguments == ["a1", "a2"]
        assert theory.status == "developing"

    def test_theory_update_overwrites_wholesale(self, db, make_case):
        case = make_case()
        db.add(CaseTheory(case_id=case.id, fact_patterns=["old"], legal_arguments=["old"]))
        db.commit()

        text = '```json\n{"theory_update": {"fact_patterns": ["new"]}}\n```'
        case_data_service.apply_response(db, case.id, text, "OpenAI Assistant")

        theory = db.query(CaseTheory).filter(CaseTheory.case_id == case.id).one()
        db.refresh(theory)
        assert theory.fact_patterns == ["new"]
        assert theory.legal_arguments == []

    def test_malformed_block_logs_error_activity(self, db, make_case, activities):
        case = make_case()
        result = case_data_service.apply_response(
            db, case.id, "```json\n{broken\n```", "OpenAI Assistant",
        )

        assert result is None
        errors = activities(case.id, status=ActivityStatus.error.value)
        assert len(errors) == 1
        assert errors[0].activity_type == "Structured Output Rejected"
        assert db.query(CaseInsight).count() == 0

    def test_plain_reply_writes_nothing(self, db, make_case, activities):
        case = make_case()
        assert case_data_service.apply_response(db, case.id, "Just prose.", "OpenAI Assistant") is None
        assert db.query(CaseInsight).count() == 0
        assert activities(case.id) == []
