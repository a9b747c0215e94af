"""
Read-only projections over assignments for the monitoring dashboard.

Dashboards poll these on a fixed interval; nothing here writes or caches.
"""
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from core.exceptions import NotFoundError
from models.exam import Exam
from models.exam_session import (
    Assignment, ExamSession, STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_SUBMITTED
)

DISPLAY_STATUS = {
    STATUS_IN_PROGRESS: "online",
    STATUS_SUBMITTED: "completed",
    STATUS_PENDING: "offline",
}


def last_activity(assignment: Assignment):
    stamps = [t for t in (assignment.login_time, assignment.start_time, assignment.submit_time) if t]
    return max(stamps) if stamps else None


def result_label(assignment: Assignment, passing_marks: int) -> str:
    if assignment.status != STATUS_SUBMITTED:
        return "Not Attempted"
    return "Pass" if assignment.score >= passing_marks else "Fail"


class MonitoringService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_session(self, session_id: int) -> ExamSession:
        result = await self.db.execute(
            select(ExamSession)
            .options(
                selectinload(ExamSession.exam).selectinload(Exam.questions),
                selectinload(ExamSession.assignments).selectinload(Assignment.student),
            )
            .filter(ExamSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        exam_session = result.scalar_one_or_none()
        if not exam_session:
            raise NotFoundError("Session not found")
        return exam_session

    async def live_status(self, session_id: int) -> List[dict]:
        exam_session = await self._load_session(session_id)
        total_questions = len(exam_session.exam.questions) if exam_session.exam else 0
        return [{
            "assignment_id": a.id,
            "student_id": a.student_id,
            "student_code": a.student.student_id if a.student else None,
            "name": a.student.name if a.student else None,
            "status": a.status,
            "display_status": DISPLAY_STATUS.get(a.status, "offline"),
            "answered_count": len(a.answers or []),
            "total_questions": total_questions,
            "last_activity": last_activity(a),
            "login_time": a.login_time,
            "start_time": a.start_time,
            "submit_time": a.submit_time,
        } for a in exam_session.assignments]

    async def session_results(self, session_id: int) -> List[dict]:
        exam_session = await self._load_session(session_id)
        exam = exam_session.exam
        passing_marks = exam.passing_marks or 0
        results = [{
            "assignment_id": a.id,
            "student_id": a.student_id,
            "student_code": a.student.student_id if a.student else None,
            "name": a.student.name if a.student else None,
            "email": a.student.email if a.student else None,
            "status": a.status,
            "score": a.score,
            "submit_time": a.submit_time,
            "auto_submitted": a.auto_submitted,
            "total_marks": exam.total_marks,
            "passing_marks": passing_marks,
            "result": result_label(a, passing_marks),
        } for a in exam_session.assignments]
        return sorted(results, key=lambda r: r["score"] or 0, reverse=True)

    async def student_history(self, student_id: int) -> List[dict]:
        result = await self.db.execute(
            select(Assignment)
            .options(
                selectinload(Assignment.session).selectinload(ExamSession.exam),
                selectinload(Assignment.previous_attempts),
            )
            .filter(Assignment.student_id == student_id)
            .order_by(Assignment.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [{
            "session_id": a.session_id,
            "session_name": a.session.name,
            "exam_title": a.session.exam.title if a.session.exam else None,
            "status": a.status,
            "score": a.score,
            "submit_time": a.submit_time,
            "end_time": a.session.end_time,
            "previous_attempts": [p.to_dict() for p in a.previous_attempts],
        } for a in result.scalars().all()]
