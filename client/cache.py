"""
Durable local store for the student client.

Holds the decoded exam package and every answer edit so that a reload or a
lost connection never loses work. Answers are removed only after the server
has confirmed the submit.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, JSON, select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from core.logger import logger

CacheBase = declarative_base()

ATTEMPT_ACTIVE = "active"
ATTEMPT_SUBMITTING = "submitting"
ATTEMPT_SUBMITTED = "submitted"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CachedPackage(CacheBase):
    __tablename__ = "packages"

    session_id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, index=True, nullable=False)
    package = Column(JSON, nullable=False)
    saved_at = Column(DateTime, nullable=False, default=_now)


class CachedAnswer(CacheBase):
    __tablename__ = "answers"

    assignment_id = Column(Integer, primary_key=True)
    question_id = Column(Integer, primary_key=True)
    answer_text = Column(Text, nullable=True)
    saved_at = Column(DateTime, nullable=False, default=_now)


class AttemptStatus(CacheBase):
    __tablename__ = "attempt_status"

    assignment_id = Column(Integer, primary_key=True)
    status = Column(String(20), nullable=False)
    auto_submitted = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=_now)


class AnswerCache:
    def __init__(self, url: str = "sqlite+aiosqlite:///./examshield_client.db"):
        self.engine = create_async_engine(url, future=True)
        self.sessionmaker = async_sessionmaker(bind=self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(CacheBase.metadata.create_all)

    async def close(self):
        await self.engine.dispose()

    # --- Package ---

    async def save_package(self, session_id: int, package: dict):
        async with self.sessionmaker() as db:
            await db.merge(CachedPackage(
                session_id=session_id,
                assignment_id=package["assignmentId"],
                package=package,
                saved_at=_now(),
            ))
            await db.commit()
        logger.debug("Package cached", session_id=session_id, assignment_id=package["assignmentId"])

    async def get_package(self, session_id: int) -> Optional[dict]:
        async with self.sessionmaker() as db:
            row = await db.get(CachedPackage, session_id)
            return row.package if row else None

    # --- Answers ---

    async def save_answer(self, assignment_id: int, question_id: int, answer_text: Optional[str]):
        async with self.sessionmaker() as db:
            await db.merge(CachedAnswer(
                assignment_id=assignment_id,
                question_id=question_id,
                answer_text=answer_text,
                saved_at=_now(),
            ))
            await db.commit()

    async def get_answers_for(self, assignment_id: int) -> List[dict]:
        async with self.sessionmaker() as db:
            result = await db.execute(
                select(CachedAnswer)
                .filter(CachedAnswer.assignment_id == assignment_id)
                .order_by(CachedAnswer.question_id)
            )
            return [{
                "questionId": a.question_id,
                "answerText": a.answer_text,
                "answeredAt": a.saved_at.isoformat(),
            } for a in result.scalars().all()]

    async def clear_answers_for(self, assignment_id: int):
        async with self.sessionmaker() as db:
            await db.execute(delete(CachedAnswer).where(CachedAnswer.assignment_id == assignment_id))
            await db.commit()
        logger.debug("Answer cache cleared", assignment_id=assignment_id)

    # --- Attempt status ---

    async def set_attempt_status(self, assignment_id: int, status: str, auto_submitted: bool = False):
        async with self.sessionmaker() as db:
            await db.merge(AttemptStatus(
                assignment_id=assignment_id,
                status=status,
                auto_submitted=int(auto_submitted),
                updated_at=_now(),
            ))
            await db.commit()

    async def get_attempt_status(self, assignment_id: int) -> Optional[dict]:
        async with self.sessionmaker() as db:
            row = await db.get(AttemptStatus, assignment_id)
            if not row:
                return None
            return {"status": row.status, "auto_submitted": bool(row.auto_submitted)}
