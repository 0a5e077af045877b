"""Async database connection and repository operations."""

import hashlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import cast, delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import Date

from .config import settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .models import (
    AIResponseRecord,
    Base,
    ChangeHistory,
    ConsensusResult,
    Conversation,
    HealthCheck,
    Memory,
    Task,
    UsageLog,
)

logger = logging.getLogger(__name__)

AI_CACHE_CATEGORY = "ai_cache"

# Create async engine and session factory
engine = create_async_engine(settings.database_url, echo=settings.debug_sql, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables and indexes that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(
                    schema_not_initialized_message(exc)
                ) from exc
            raise


# =============================================================================
# Conversation Operations
# =============================================================================


async def save_message(
    session: AsyncSession,
    session_id: str,
    role: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> Conversation:
    """Append a message to a chat session."""
    message = Conversation(
        session_id=session_id,
        role=role,
        content=content,
        metadata_=metadata or {},
    )
    session.add(message)
    await session.flush()
    return message


async def get_conversation(
    session: AsyncSession, session_id: str, limit: int = 50
) -> list[Conversation]:
    """Get the first ``limit`` messages of a session, oldest first."""
    result = await session.execute(
        select(Conversation)
        .where(Conversation.session_id == session_id)
        .order_by(Conversation.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_recent_context(
    session: AsyncSession, session_id: str, limit: int = 10
) -> list[dict[str, str]]:
    """Return the last ``limit`` messages as role/content pairs, oldest first."""
    result = await session.execute(
        select(Conversation.role, Conversation.content)
        .where(Conversation.session_id == session_id)
        .order_by(Conversation.created_at.desc())
        .limit(limit)
    )
    rows = list(result.all())
    rows.reverse()
    return [{"role": role, "content": content} for role, content in rows]


# =============================================================================
# Task Operations
# =============================================================================


async def create_task(
    session: AsyncSession,
    type: str,
    input: dict[str, Any],
    priority: int = 0,
) -> Task:
    """Queue a new pending task."""
    task = Task(type=type, input=input, priority=priority, status="pending")
    session.add(task)
    await session.flush()
    return task


async def get_task(session: AsyncSession, task_id: str) -> Task | None:
    """Get a task by its ID."""
    result = await session.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def update_task(
    session: AsyncSession,
    task_id: str,
    *,
    status: str | None = None,
    output: dict[str, Any] | None = None,
    error: str | None = None,
) -> Task | None:
    """Update a task; ``None`` arguments leave the column unchanged."""
    task = await get_task(session, task_id)
    if task is None:
        return None

    if status is not None:
        task.status = status
        if status == "processing":
            task.started_at = datetime.now(UTC)
        elif status in ("completed", "failed"):
            task.completed_at = datetime.now(UTC)
    if output is not None:
        task.output = output
    if error is not None:
        task.error = error

    await session.flush()
    return task


async def get_pending_tasks(
    session: AsyncSession, limit: int = 10, task_type: str | None = None
) -> list[Task]:
    """Pending tasks, highest priority first, then oldest first."""
    stmt = (
        select(Task)
        .where(Task.status == "pending")
        .order_by(Task.priority.desc(), Task.created_at.asc())
        .limit(limit)
    )
    if task_type:
        stmt = stmt.where(Task.type == task_type)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_tasks(
    session: AsyncSession, status: str | None = None, limit: int = 20
) -> list[Task]:
    """Most recent tasks, optionally filtered by status."""
    stmt = select(Task).order_by(Task.created_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Task.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# =============================================================================
# AI Response / Consensus Operations
# =============================================================================


async def save_ai_response(
    session: AsyncSession,
    task_id: str | None,
    provider: str,
    response: str | None,
    *,
    tokens_in: int = 0,
    tokens_out: int = 0,
    cost_usd: Decimal | float = Decimal("0"),
    latency_ms: int | None = None,
    success: bool = True,
    error: str | None = None,
) -> AIResponseRecord:
    """Record one provider's answer."""
    record = AIResponseRecord(
        task_id=task_id,
        provider=provider,
        response=response,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        cost_usd=Decimal(str(cost_usd)),
        latency_ms=latency_ms,
        success=success,
        error=error,
    )
    session.add(record)
    await session.flush()
    return record


async def get_ai_responses(session: AsyncSession, task_id: str) -> list[AIResponseRecord]:
    result = await session.execute(
        select(AIResponseRecord)
        .where(AIResponseRecord.task_id == task_id)
        .order_by(AIResponseRecord.created_at)
    )
    return list(result.scalars().all())


async def save_consensus(
    session: AsyncSession,
    task_id: str | None,
    method: str,
    winner: str | None,
    final_response: str | None,
    scores: dict[str, Any] | None,
    reasoning: str | None,
) -> ConsensusResult:
    """Record the chosen response for a task."""
    result = ConsensusResult(
        task_id=task_id,
        method=method,
        winner=winner,
        final_response=final_response,
        scores=scores,
        reasoning=reasoning,
    )
    session.add(result)
    await session.flush()
    return result


async def get_consensus_for_task(session: AsyncSession, task_id: str) -> ConsensusResult | None:
    result = await session.execute(
        select(ConsensusResult)
        .where(ConsensusResult.task_id == task_id)
        .order_by(ConsensusResult.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Memory Operations
# =============================================================================


async def set_memory(
    session: AsyncSession,
    key: str,
    value: Any,
    category: str = "general",
    expires_at: datetime | None = None,
) -> None:
    """Insert or replace a memory entry by key."""
    stmt = pg_insert(Memory).values(
        key=key, value=value, category=category, expires_at=expires_at
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Memory.key],
        set_={
            "value": stmt.excluded.value,
            "category": stmt.excluded.category,
            "expires_at": stmt.excluded.expires_at,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)


async def get_memory(session: AsyncSession, key: str) -> Any | None:
    """Return the stored value, or None when missing or expired."""
    result = await session.execute(
        select(Memory.value).where(
            Memory.key == key,
            (Memory.expires_at.is_(None)) | (Memory.expires_at > func.now()),
        )
    )
    return result.scalar_one_or_none()


async def get_memory_by_category(session: AsyncSession, category: str) -> dict[str, Any]:
    result = await session.execute(
        select(Memory.key, Memory.value).where(
            Memory.category == category,
            (Memory.expires_at.is_(None)) | (Memory.expires_at > func.now()),
        )
    )
    return {key: value for key, value in result.all()}


async def delete_memory(session: AsyncSession, key: str) -> None:
    await session.execute(delete(Memory).where(Memory.key == key))


# =============================================================================
# Usage Operations
# =============================================================================


async def log_usage(
    session: AsyncSession,
    provider: str,
    tokens_in: int,
    tokens_out: int,
    cost_usd: Decimal | float,
    endpoint: str | None = None,
) -> UsageLog:
    """Record token and cost usage for one provider call."""
    log = UsageLog(
        provider=provider,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        cost_usd=Decimal(str(cost_usd)),
        endpoint=endpoint,
    )
    session.add(log)
    await session.flush()
    return log


def clamp_days(days: Any, default: int = 30) -> int:
    """Coerce a day count into 1..365."""
    try:
        value = int(days)
    except (TypeError, ValueError):
        value = default
    if value == 0:
        value = default
    return min(max(1, value), 365)


async def get_usage_summary(session: AsyncSession, days: int = 30) -> list[dict[str, Any]]:
    """Per-provider, per-day usage for the last ``days`` days (1..365)."""
    safe_days = clamp_days(days)
    since = datetime.now(UTC) - timedelta(days=safe_days)
    day = cast(UsageLog.created_at, Date)
    result = await session.execute(
        select(
            UsageLog.provider,
            func.count().label("calls"),
            func.coalesce(func.sum(UsageLog.tokens_in), 0),
            func.coalesce(func.sum(UsageLog.tokens_out), 0),
            func.coalesce(func.sum(UsageLog.cost_usd), 0),
            day.label("date"),
        )
        .where(UsageLog.created_at > since)
        .group_by(UsageLog.provider, day)
        .order_by(day.desc(), UsageLog.provider)
    )
    return [
        {
            "provider": provider,
            "calls": int(calls),
            "total_tokens_in": int(tokens_in or 0),
            "total_tokens_out": int(tokens_out or 0),
            "total_cost": cost,
            "date": date,
        }
        for provider, calls, tokens_in, tokens_out, cost, date in result.all()
    ]


async def get_today_usage(session: AsyncSession) -> list[dict[str, Any]]:
    result = await session.execute(
        select(
            UsageLog.provider,
            func.count(),
            func.coalesce(func.sum(UsageLog.tokens_in), 0),
            func.coalesce(func.sum(UsageLog.tokens_out), 0),
            func.coalesce(func.sum(UsageLog.cost_usd), 0),
        )
        .where(cast(UsageLog.created_at, Date) == func.current_date())
        .group_by(UsageLog.provider)
    )
    return [
        {
            "provider": provider,
            "calls": int(calls),
            "tokens_in": int(tokens_in or 0),
            "tokens_out": int(tokens_out or 0),
            "cost": cost,
        }
        for provider, calls, tokens_in, tokens_out, cost in result.all()
    ]


# =============================================================================
# Change History Operations
# =============================================================================


async def log_change_history(
    session: AsyncSession,
    repo: str,
    path: str,
    action: str,
    *,
    old_content: str | None = None,
    new_content: str | None = None,
    message: str | None = None,
    user_id: str | None = None,
    commit_sha: str | None = None,
) -> ChangeHistory:
    """Record a repository write so it can be rolled back later."""
    change = ChangeHistory(
        repo=repo,
        path=path,
        action=action,
        old_content=old_content,
        new_content=new_content,
        message=message,
        user_id=user_id,
        commit_sha=commit_sha,
    )
    session.add(change)
    await session.flush()
    return change


async def get_change_history(
    session: AsyncSession, repo: str, limit: int = 20
) -> list[ChangeHistory]:
    result = await session.execute(
        select(ChangeHistory)
        .where(ChangeHistory.repo == repo)
        .order_by(ChangeHistory.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_change_by_id(session: AsyncSession, change_id: str) -> ChangeHistory | None:
    result = await session.execute(select(ChangeHistory).where(ChangeHistory.id == change_id))
    return result.scalar_one_or_none()


async def get_file_changes(
    session: AsyncSession, repo: str, path: str, limit: int = 10
) -> list[ChangeHistory]:
    result = await session.execute(
        select(ChangeHistory)
        .where(ChangeHistory.repo == repo, ChangeHistory.path == path)
        .order_by(ChangeHistory.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# =============================================================================
# Health Check Operations
# =============================================================================


async def log_health_check(
    session: AsyncSession,
    check_type: str,
    status: str,
    message: str | None = None,
    data: dict[str, Any] | None = None,
) -> HealthCheck:
    check = HealthCheck(check_type=check_type, status=status, message=message, data=data or {})
    session.add(check)
    await session.flush()
    return check


async def get_recent_health_checks(session: AsyncSession, limit: int = 20) -> list[HealthCheck]:
    result = await session.execute(
        select(HealthCheck).order_by(HealthCheck.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


# =============================================================================
# AI Response Cache (memory rows in the ai_cache category)
# =============================================================================


def ai_cache_key(provider: str, content: str) -> str:
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
    return f"{AI_CACHE_CATEGORY}:{provider}:{digest}"


async def get_cached_response(
    session: AsyncSession, provider: str, content: str
) -> dict[str, Any] | None:
    """Return a cached response marked ``cached=True``, or None on miss or error."""
    try:
        async with session.begin_nested():
            cached = await get_memory(session, ai_cache_key(provider, content))
    except SQLAlchemyError as exc:
        logger.warning("AI cache lookup failed for %s: %s", provider, exc)
        return None
    if not isinstance(cached, dict):
        return None
    logger.info("AI cache hit for %s", provider)
    return {**cached, "cached": True}


async def set_cached_response(
    session: AsyncSession,
    provider: str,
    content: str,
    response: dict[str, Any],
    ttl_minutes: int = 60,
) -> None:
    expires_at = datetime.now(UTC) + timedelta(minutes=ttl_minutes)
    try:
        async with session.begin_nested():
            await set_memory(
                session, ai_cache_key(provider, content), response, AI_CACHE_CATEGORY, expires_at
            )
    except SQLAlchemyError as exc:
        logger.warning("Failed to store AI cache entry for %s: %s", provider, exc)


async def clear_ai_cache(session: AsyncSession) -> None:
    try:
        async with session.begin_nested():
            await session.execute(delete(Memory).where(Memory.category == AI_CACHE_CATEGORY))
    except SQLAlchemyError as exc:
        logger.warning("Failed to clear AI cache: %s", exc)
