"""SQLAlchemy models for the orchestrator database."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

TASK_STATUSES = ("pending", "processing", "completed", "failed")
CONVERSATION_ROLES = ("user", "assistant", "system")
AI_PROVIDERS = ("claude", "gpt", "gemini")
CONSENSUS_METHODS = ("majority", "weighted", "best_of")
HEALTH_STATUSES = ("healthy", "warning", "critical")
CHANGE_ACTIONS = ("create", "update", "delete")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


def _uuid_pk() -> Mapped[str]:
    return mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=func.gen_random_uuid(),
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now())


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class Conversation(Base):
    """Chat history per Slack/HTTP session."""

    __tablename__ = "conversations"

    id: Mapped[str] = _uuid_pk()
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, default=dict, server_default="{}"
    )
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(_in("role", CONVERSATION_ROLES), name="conversations_role_check"),
        Index("idx_conversations_session", "session_id"),
    )


class Task(Base):
    """Queued unit of work (e.g. a consensus request)."""

    __tablename__ = "tasks"

    id: Mapped[str] = _uuid_pk()
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", server_default="pending")
    input: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = _created_at()
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ai_responses: Mapped[list[AIResponseRecord]] = relationship(
        back_populates="task", cascade="all, delete-orphan", passive_deletes=True
    )
    consensus_results: Mapped[list[ConsensusResult]] = relationship(
        back_populates="task", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint(_in("status", TASK_STATUSES), name="tasks_status_check"),
        Index("idx_tasks_status", "status"),
    )


class AIResponseRecord(Base):
    """One provider's answer for a task."""

    __tablename__ = "ai_responses"

    id: Mapped[str] = _uuid_pk()
    task_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_in: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    tokens_out: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(10, 6), default=Decimal("0"), server_default="0"
    )
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    task: Mapped[Task | None] = relationship(back_populates="ai_responses")

    __table_args__ = (
        CheckConstraint(_in("provider", AI_PROVIDERS), name="ai_responses_provider_check"),
        Index("idx_ai_responses_task", "task_id"),
    )


class ConsensusResult(Base):
    """Winning response chosen among a task's AI responses."""

    __tablename__ = "consensus_results"

    id: Mapped[str] = _uuid_pk()
    task_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    winner: Mapped[str | None] = mapped_column(String(20), nullable=True)
    final_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    scores: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    task: Mapped[Task | None] = relationship(back_populates="consensus_results")

    __table_args__ = (
        CheckConstraint(_in("method", CONSENSUS_METHODS), name="consensus_results_method_check"),
    )


class Memory(Base):
    """Persistent key-value store (also backs the AI response cache)."""

    __tablename__ = "memory"

    id: Mapped[str] = _uuid_pk()
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    value: Mapped[Any] = mapped_column(JSONB, nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="general", server_default="general")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_memory_key", "key"),
        Index("idx_memory_category", "category"),
    )


class UsageLog(Base):
    """Token and cost accounting per provider call."""

    __tablename__ = "usage_logs"

    id: Mapped[str] = _uuid_pk()
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    tokens_in: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    tokens_out: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(10, 6), default=Decimal("0"), server_default="0"
    )
    endpoint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_usage_logs_provider", "provider"),
    )


class HealthCheck(Base):
    """System health snapshots."""

    __tablename__ = "health_checks"

    id: Mapped[str] = _uuid_pk()
    check_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, server_default="{}")
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(_in("status", HEALTH_STATUSES), name="health_checks_status_check"),
    )


class ChangeHistory(Base):
    """Every repository write made by the bot, kept for rollback."""

    __tablename__ = "change_history"

    id: Mapped[str] = _uuid_pk()
    repo: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    old_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    commit_sha: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(_in("action", CHANGE_ACTIONS), name="change_history_action_check"),
        Index("idx_change_history_repo", "repo"),
        Index("idx_change_history_path", "repo", "path"),
    )


# Descending indexes need the mapped column, so they are declared after the classes.
Index("idx_conversations_created", Conversation.created_at.desc())
Index("idx_tasks_created", Task.created_at.desc())
Index("idx_usage_logs_created", UsageLog.created_at.desc())
Index("idx_change_history_created", ChangeHistory.created_at.desc())
