"""
SQLAlchemy (async) backend for the portrait store.

Record layout:
  user_portrait  - single row (id = 1): summary, JSON lists/map, six stat counters
  pending_tasks  - full-replace on every save
  task_history   - append-only log of resolved tasks
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import JSON, DateTime, Integer, String, Text, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..errors import PersistenceError
from ..schemas.portrait import EMPTY_SUMMARY, TaskStats, UserPortrait
from ..schemas.tasks import ActionTask, TaskHistoryEntry
from .base import PortraitStore

logger = logging.getLogger(__name__)

PORTRAIT_ROW_ID = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return utcnow()
    # SQLite drops tzinfo; everything is written in UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class PortraitRecord(Base):
    __tablename__ = "user_portrait"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=PORTRAIT_ROW_ID)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    focus_areas: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    helpful_strategies: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    preference_weights: Mapped[Dict[str, float]] = mapped_column(JSON, nullable=False, default=dict)
    tasks_total_suggested: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usefulness_high: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usefulness_medium: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usefulness_low: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class _TaskColumns:
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    usefulness: Mapped[str] = mapped_column(String(16), nullable=False)


class PendingTaskRecord(_TaskColumns, Base):
    __tablename__ = "pending_tasks"


class TaskHistoryRecord(Base):
    __tablename__ = "task_history"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    usefulness: Mapped[str] = mapped_column(String(16), nullable=False)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


def _portrait_from_record(record: PortraitRecord) -> UserPortrait:
    return UserPortrait(
        summary=record.summary or EMPTY_SUMMARY,
        focus_areas=list(record.focus_areas or []),
        helpful_strategies=list(record.helpful_strategies or []),
        preference_weights={str(k): float(v) for k, v in (record.preference_weights or {}).items()},
        task_stats=TaskStats(
            total_suggested=record.tasks_total_suggested,
            completed=record.tasks_completed,
            skipped=record.tasks_skipped,
            usefulness_high=record.usefulness_high,
            usefulness_medium=record.usefulness_medium,
            usefulness_low=record.usefulness_low,
        ),
        last_updated=_aware(record.last_updated),
    )


def _portrait_columns(portrait: UserPortrait) -> Dict[str, Any]:
    stats = portrait.task_stats
    return {
        "summary": portrait.summary,
        "focus_areas": list(portrait.focus_areas),
        "helpful_strategies": list(portrait.helpful_strategies),
        "preference_weights": dict(portrait.preference_weights),
        "tasks_total_suggested": stats.total_suggested,
        "tasks_completed": stats.completed,
        "tasks_skipped": stats.skipped,
        "usefulness_high": stats.usefulness_high,
        "usefulness_medium": stats.usefulness_medium,
        "usefulness_low": stats.usefulness_low,
        "last_updated": portrait.last_updated,
    }


def _task_columns(task: ActionTask) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "details": task.details,
        "created_at": task.created_at,
        "status": task.status,
        "usefulness": task.usefulness,
    }


def _task_from_record(record: Any) -> Optional[ActionTask]:
    try:
        return ActionTask(
            id=uuid.UUID(record.id),
            title=record.title,
            details=record.details,
            created_at=_aware(record.created_at),
            status=record.status,
            usefulness=record.usefulness,
        )
    except ValueError as error:
        logger.warning("Skipping unreadable task row %s: %s", record.id, error)
        return None


class SqlPortraitStore(PortraitStore):
    def __init__(self, database_url: str, echo: bool = False, engine: Optional[AsyncEngine] = None) -> None:
        self._engine = engine or create_async_engine(database_url, echo=echo)
        self._session_factory = async_sessionmaker(bind=self._engine, class_=AsyncSession, expire_on_commit=False)
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._initialized = True
            logger.info("Portrait store tables created/verified")

    async def close(self) -> None:
        await self._engine.dispose()
        self._initialized = False
        logger.info("Portrait store engine disposed")

    async def _write(self, action: str, operation) -> None:
        try:
            await self.init()
            async with self._session_factory() as session:
                async with session.begin():
                    await operation(session)
        except SQLAlchemyError as error:
            logger.error("Failed to %s: %s", action, error)
            raise PersistenceError(f"Failed to {action}") from error

    # Portrait

    async def load_portrait(self) -> UserPortrait:
        try:
            await self.init()
            async with self._session_factory() as session:
                record = await session.get(PortraitRecord, PORTRAIT_ROW_ID)
                return _portrait_from_record(record) if record else UserPortrait.empty()
        except Exception as error:
            logger.warning("Failed to load portrait, using empty portrait: %s", error)
            return UserPortrait.empty()

    async def save_portrait(self, portrait: UserPortrait) -> None:
        async def _operation(session: AsyncSession) -> None:
            record = await session.get(PortraitRecord, PORTRAIT_ROW_ID)
            if record is None:
                session.add(PortraitRecord(id=PORTRAIT_ROW_ID, **_portrait_columns(portrait)))
                return
            for column, value in _portrait_columns(portrait).items():
                setattr(record, column, value)

        await self._write("save portrait", _operation)

    async def clear_portrait(self) -> None:
        async def _operation(session: AsyncSession) -> None:
            await session.execute(delete(PortraitRecord))

        await self._write("clear portrait", _operation)

    # Pending tasks

    async def load_pending_tasks(self) -> List[ActionTask]:
        try:
            await self.init()
            async with self._session_factory() as session:
                result = await session.execute(select(PendingTaskRecord).order_by(PendingTaskRecord.created_at.asc()))
                return [task for task in (_task_from_record(row) for row in result.scalars().all()) if task is not None]
        except Exception as error:
            logger.warning("Failed to load pending tasks: %s", error)
            return []

    async def save_pending_tasks(self, tasks: Sequence[ActionTask]) -> None:
        async def _operation(session: AsyncSession) -> None:
            await session.execute(delete(PendingTaskRecord))
            session.add_all(PendingTaskRecord(**_task_columns(task)) for task in tasks)

        await self._write("save pending tasks", _operation)

    async def clear_pending_tasks(self) -> None:
        async def _operation(session: AsyncSession) -> None:
            await session.execute(delete(PendingTaskRecord))

        await self._write("clear pending tasks", _operation)

    # History

    async def append_task_history(self, tasks: Sequence[ActionTask]) -> None:
        if not tasks:
            return

        async def _operation(session: AsyncSession) -> None:
            session.add_all(TaskHistoryRecord(**_task_columns(task)) for task in tasks)

        await self._write("append task history", _operation)

    async def load_task_history(self) -> List[TaskHistoryEntry]:
        try:
            await self.init()
            async with self._session_factory() as session:
                result = await session.execute(select(TaskHistoryRecord).order_by(TaskHistoryRecord.row_id.asc()))
                entries: List[TaskHistoryEntry] = []
                for row in result.scalars().all():
                    task = _task_from_record(row)
                    if task is not None:
                        entries.append(TaskHistoryEntry(**task.model_dump(), resolved_at=_aware(row.resolved_at)))
                return entries
        except Exception as error:
            logger.warning("Failed to load task history: %s", error)
            return []
