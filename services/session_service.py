from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.orm import selectinload
from models.exam import Exam
from models.exam_session import Assignment, ExamSession, MODE_ONLINE, MODE_OFFLINE, STATUS_PENDING
from models.user import User, ROLE_STUDENT
from core.exceptions import NotFoundError, ValidationError
from core.logger import logger

class ExamSessionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def schedule_session(
        self,
        exam_id: int,
        name: str,
        start_time: datetime,
        end_time: datetime,
        mode: str = MODE_OFFLINE,
        student_ids: Optional[List[int]] = None,
    ) -> ExamSession:
        """Create a session and one pending assignment per student.

        With no student list every student is assigned.
        """
        if end_time <= start_time:
            raise ValidationError("Session end time must be after its start time")
        if mode not in (MODE_ONLINE, MODE_OFFLINE):
            raise ValidationError(f"Unknown session mode '{mode}'")

        exam = (await self.db.execute(select(Exam).filter(Exam.id == exam_id))).scalar_one_or_none()
        if not exam:
            raise NotFoundError("Exam not found")

        query = select(User.id).filter(User.role == ROLE_STUDENT)
        if student_ids:
            query = query.filter(User.id.in_(student_ids))
        found = list((await self.db.execute(query)).scalars().all())
        if student_ids:
            missing = sorted(set(student_ids) - set(found))
            if missing:
                raise ValidationError(f"Unknown students: {missing}")

        exam_session = ExamSession(
            exam_id=exam_id,
            name=name,
            start_time=start_time,
            end_time=end_time,
            mode=mode,
            assignments=[Assignment(student_id=sid, status=STATUS_PENDING) for sid in dict.fromkeys(found)],
        )
        self.db.add(exam_session)
        await self.db.commit()
        logger.info("Exam session scheduled", session_id=exam_session.id, exam_id=exam_id, assigned=len(found))
        return await self.get_session(exam_session.id)

    async def get_session(self, session_id: int) -> ExamSession:
        result = await self.db.execute(
            select(ExamSession)
            .options(selectinload(ExamSession.assignments))
            .filter(ExamSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        exam_session = result.scalar_one_or_none()
        if not exam_session:
            raise NotFoundError("Session not found")
        return exam_session

    async def set_active(self, session_id: int, is_active: bool) -> ExamSession:
        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == session_id)
            .values(is_active=is_active)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Session not found")
        await self.db.commit()
        logger.info("Exam session toggled", session_id=session_id, is_active=is_active)
        return await self.get_session(session_id)

    async def delete_session(self, session_id: int):
        """Delete a session together with its assignments and their archived attempts."""
        result = await self.db.execute(
            select(ExamSession)
            .options(selectinload(ExamSession.assignments).selectinload(Assignment.previous_attempts))
            .filter(ExamSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        exam_session = result.scalar_one_or_none()
        if not exam_session:
            raise NotFoundError("Session not found")
        await self.db.delete(exam_session)
        await self.db.commit()
        logger.info("Exam session deleted", session_id=session_id)
