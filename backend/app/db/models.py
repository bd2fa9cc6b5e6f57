"""
SQLAlchemy ORM Models (mirror of the Supabase public schema)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy import Index

from app.db.database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Enums
# ============================================================================

class CaseStatus(str, enum.Enum):
    """Case lifecycle"""
    initial_setup = "Initial Setup"
    in_progress = "In Progress"
    analysis_complete = "Analysis Complete"

class AIModel(str, enum.Enum):
    """Per-case LLM backend"""
    openai = "openai"
    gemini = "gemini"

class ActivityStatus(str, enum.Enum):
    """Agent activity status"""
    processing = "processing"
    completed = "completed"
    error = "error"

class InsightType(str, enum.Enum):
    """Case insight kinds"""
    key_fact = "key_fact"
    risk_assessment = "risk_assessment"
    outcome_trend = "outcome_trend"
    general = "general"
    auto_generated_event = "auto_generated_event"


# ============================================================================
# Cases
# ============================================================================

class Case(Base):
    """Family-law case under evidence review"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    name = Column(Text, nullable=False)
    type = Column(String(100), nullable=True)
    status = Column(String(32), nullable=False, default=CaseStatus.initial_setup.value)

    # Directives
    case_goals = Column(Text, nullable=True)
    system_instruction = Column(Text, nullable=True)
    user_specified_arguments = Column(Text, nullable=True)

    # AI session state
    ai_model = Column(String(16), nullable=False, default=AIModel.openai.value)
    openai_thread_id = Column(String(64), nullable=True)
    openai_assistant_id = Column(String(64), nullable=True)

    # Progress shown by the UI while the orchestrator works
    analysis_progress = Column(Integer, nullable=False, default=0)
    analysis_status_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    last_updated = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    activities = relationship("AgentActivity", back_populates="case", cascade="all, delete-orphan")
    theory = relationship("CaseTheory", back_populates="case", uselist=False, cascade="all, delete-orphan")
    insights = relationship("CaseInsight", back_populates="case", cascade="all, delete-orphan")
    files = relationship("CaseFileMetadata", back_populates="case", cascade="all, delete-orphan")
    timelines = relationship("CaseTimeline", back_populates="case", cascade="all, delete-orphan")
    gemini_turns = relationship(
        "GeminiChatTurn",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="GeminiChatTurn.seq",
    )

    @property
    def gemini_chat_history(self) -> list[dict]:
        """Ordered ``{role, parts}`` turns, as the Gemini SDK expects them."""
        return [{"role": t.role, "parts": t.parts} for t in self.gemini_turns]


class AgentActivity(Base):
    """Append-only audit trail of every agent step"""
    __tablename__ = "agent_activities"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)

    agent_name = Column(String(100), nullable=False)
    agent_role = Column(String(100), nullable=False)
    activity_type = Column(String(100), nullable=False)
    content = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=ActivityStatus.completed.value)

    timestamp = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="activities")

    __table_args__ = (
        Index("idx_agent_activities_case_ts", "case_id", "timestamp"),
    )


class CaseTheory(Base):
    """Working legal theory, overwritten wholesale by the model"""
    __tablename__ = "case_theories"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, unique=True)

    fact_patterns = Column(JSONType, nullable=False, default=list)
    legal_arguments = Column(JSONType, nullable=False, default=list)
    potential_outcomes = Column(JSONType, nullable=False, default=list)
    status = Column(String(50), nullable=False, default="initial")

    last_updated = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="theory")


class CaseInsight(Base):
    """Append-only insight rows (chat extraction or timeline generation)"""
    __tablename__ = "case_insights"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    insight_type = Column(String(32), nullable=False, default=InsightType.general.value)
    relevant_file_ids = Column(JSONType, nullable=True)
    timeline_id = Column(String(36), ForeignKey("case_timelines.id", ondelete="SET NULL"), nullable=True)

    timestamp = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="insights")
    timeline = relationship("CaseTimeline", back_populates="events")

    __table_args__ = (
        Index("idx_case_insights_case_type", "case_id", "insight_type"),
    )


class CaseFileMetadata(Base):
    """One row per uploaded evidence file"""
    __tablename__ = "case_files_metadata"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)

    file_name = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    suggested_name = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    tags = Column(JSONType, nullable=True)
    file_category = Column(String(100), nullable=True)
    file_hash = Column(String(64), nullable=True)
    openai_file_id = Column(String(64), nullable=True)

    uploaded_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="files")


class CaseTimeline(Base):
    """Named timeline that groups auto-generated events"""
    __tablename__ = "case_timelines"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)

    name = Column(Text, nullable=False)
    focus = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="timelines")
    events = relationship("CaseInsight", back_populates="timeline")


class GeminiChatTurn(Base):
    """
    One turn of a case's Gemini conversation.

    ``seq`` is dense per case; the unique key turns a lost race between two
    writers into an IntegrityError instead of a silently dropped turn.
    """
    __tablename__ = "gemini_chat_turns"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    seq = Column(Integer, nullable=False)

    role = Column(String(16), nullable=False)  # user | model
    parts = Column(JSONType, nullable=False)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    case = relationship("Case", back_populates="gemini_turns")

    __table_args__ = (
        UniqueConstraint("case_id", "seq", name="uq_gemini_chat_turns_case_seq"),
    )
