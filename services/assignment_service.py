"""
Assignment state machine.

    pending --start--> in_progress --submit--> submitted
    pending --submit (start never reached the server)--> submitted
    submitted --download (retake)--> pending

Every transition is checked against the current session token and status
before writing, and the write itself is a conditional UPDATE on the same
conditions, so a request that loses a race changes nothing and gets the same
error a late request would.
"""
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from redis.exceptions import LockNotOwnedError, RedisError

from core.config import settings
from core.exceptions import AuthorizationError, NotFoundError
from core.logger import logger
from models.base import utcnow
from models.exam import Exam
from models.exam_session import (
    Assignment, ExamSession, STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_SUBMITTED
)
from services.package_codec import PackageCodec, KEY_MODE_SHARED
from services.retake_service import RetakeService
from services.scoring import SubmittedAnswer, score_submission
from services.token_service import SessionTokenService

LOCK_KEY = "examshield:lock:assignment:{}"
LOCK_POLL_SECONDS = 0.05


class RedisOutage:
    """Remembers a failed redis call so later requests skip the lock instead of timing out again."""

    def __init__(self):
        self.until = 0.0

    @property
    def active(self) -> bool:
        return time.monotonic() < self.until

    def trip(self):
        self.until = time.monotonic() + settings.REDIS_RETRY_AFTER_SECONDS

    def reset(self):
        self.until = 0.0


redis_outage = RedisOutage()


@asynccontextmanager
async def assignment_lock(redis, assignment_id: int):
    """Serialize requests for one assignment across server instances.

    Without redis the conditional updates alone keep transitions exclusive.
    """
    if redis is None or redis_outage.active:
        yield
        return

    lock = redis.lock(
        LOCK_KEY.format(assignment_id),
        timeout=settings.ASSIGNMENT_LOCK_TTL_SECONDS,
        sleep=LOCK_POLL_SECONDS,
        blocking_timeout=settings.ASSIGNMENT_LOCK_WAIT_SECONDS,
    )
    try:
        acquired = await lock.acquire()
    except RedisError as e:
        redis_outage.trip()
        logger.warning(
            "Redis unavailable, continuing without assignment lock",
            assignment_id=assignment_id,
            retry_after=settings.REDIS_RETRY_AFTER_SECONDS,
            error=str(e),
        )
        yield
        return

    if not acquired:
        logger.warning("Assignment lock wait timed out", assignment_id=assignment_id)
        raise AuthorizationError("Another request for this exam attempt is still being processed")

    try:
        yield
    finally:
        try:
            await lock.release()
        except LockNotOwnedError:
            # TTL ran out mid-request; the key now belongs to whoever took it next
            logger.warning("Assignment lock expired before release", assignment_id=assignment_id)
        except RedisError as e:
            logger.warning("Failed to release assignment lock", assignment_id=assignment_id, error=str(e))


@dataclass
class DownloadResult:
    encrypted_exam: str
    session_id: int
    assignment_id: int
    package_key: Optional[str]


class AssignmentService:
    def __init__(self, db: AsyncSession, redis=None, clock: Callable = utcnow):
        self.db = db
        self.redis = redis
        self.clock = clock
        self.tokens = SessionTokenService(db)

    # --- Lookups ---

    async def get_session(self, session_id: int, with_questions: bool = False) -> ExamSession:
        query = select(ExamSession).filter(ExamSession.id == session_id).execution_options(populate_existing=True)
        if with_questions:
            query = query.options(selectinload(ExamSession.exam).selectinload(Exam.questions))
        result = await self.db.execute(query)
        exam_session = result.scalar_one_or_none()
        if not exam_session:
            raise NotFoundError("Session not found")
        return exam_session

    async def find_assignment(self, session_id: int, student_id: int) -> Optional[Assignment]:
        result = await self.db.execute(
            select(Assignment).filter(Assignment.session_id == session_id, Assignment.student_id == student_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_assignment(self, session_id: int, student_id: int) -> Assignment:
        assignment = await self.find_assignment(session_id, student_id)
        if not assignment:
            logger.warning("Student not assigned to session", session_id=session_id, student_id=student_id)
            raise AuthorizationError("You are not assigned to this exam session")
        return assignment

    async def _check_token_and_status(self, assignment: Assignment, token: str, action: str):
        if not await self.tokens.validate(assignment.id, token):
            logger.warning("Rejected: invalid session token", action=action, assignment_id=assignment.id)
            raise AuthorizationError("Invalid session token")
        if assignment.status == STATUS_SUBMITTED:
            logger.warning("Rejected: already submitted", action=action, assignment_id=assignment.id)
            raise AuthorizationError("Exam already submitted")

    async def _reject_lost_update(self, assignment: Assignment, token: str, action: str):
        """A conditional update matched no row: roll back and explain why from the current row."""
        await self.db.rollback()
        await self.db.refresh(assignment)
        await self._check_token_and_status(assignment, token, action)
        raise AuthorizationError("Exam attempt changed concurrently, please retry")

    # --- Transitions ---

    async def download(self, session_id: int, student_id: int) -> DownloadResult:
        exam_session = await self.get_session(session_id, with_questions=True)
        assignment = await self.get_assignment(session_id, student_id)

        if not exam_session.is_active:
            logger.warning("Download refused: session inactive", session_id=session_id, student_id=student_id)
            raise AuthorizationError("Exam session is not active yet")

        async with assignment_lock(self.redis, assignment.id):
            await self.db.refresh(assignment)
            try:
                if assignment.status == STATUS_SUBMITTED:
                    await RetakeService(self.db).archive_and_reset(assignment)
                token = await self.tokens.issue(assignment.id)
                await self.db.execute(
                    update(Assignment)
                    .where(Assignment.id == assignment.id)
                    .values(login_time=self.clock())
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            await self.db.refresh(assignment)

        exam = exam_session.exam
        codec = PackageCodec.for_download()
        encrypted = codec.encode(exam, exam.questions, assignment.id, token)
        logger.info(
            "Exam downloaded",
            session_id=session_id,
            assignment_id=assignment.id,
            status=assignment.status,
            questions=len(exam.questions),
        )
        return DownloadResult(
            encrypted_exam=encrypted,
            session_id=session_id,
            assignment_id=assignment.id,
            package_key=None if settings.PACKAGE_KEY_MODE == KEY_MODE_SHARED else codec.key_text,
        )

    async def start(self, session_id: int, student_id: int, token: str) -> Assignment:
        await self.get_session(session_id)
        assignment = await self.get_assignment(session_id, student_id)

        async with assignment_lock(self.redis, assignment.id):
            await self.db.refresh(assignment)
            await self._check_token_and_status(assignment, token, "start")

            if assignment.status == STATUS_IN_PROGRESS:
                # Retried start keeps the original start time
                return assignment

            result = await self.db.execute(
                update(Assignment)
                .where(
                    Assignment.id == assignment.id,
                    Assignment.session_token == token,
                    Assignment.status == STATUS_PENDING,
                )
                .values(status=STATUS_IN_PROGRESS, start_time=self.clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                await self.db.refresh(assignment)
                await self._check_token_and_status(assignment, token, "start")
                if assignment.status == STATUS_IN_PROGRESS:
                    # A concurrent start with this token won; same outcome as a retried start
                    return assignment
                raise AuthorizationError("Exam attempt changed concurrently, please retry")
            await self.db.commit()
            await self.db.refresh(assignment)

        logger.info("Exam started", session_id=session_id, assignment_id=assignment.id)
        return assignment

    async def submit(
        self,
        session_id: int,
        student_id: int,
        token: str,
        answers: Iterable[SubmittedAnswer],
        auto_submitted: bool = False,
    ) -> Assignment:
        exam_session = await self.get_session(session_id, with_questions=True)
        assignment = await self.get_assignment(session_id, student_id)

        async with assignment_lock(self.redis, assignment.id):
            await self.db.refresh(assignment)
            await self._check_token_and_status(assignment, token, "submit")

            now = self.clock()
            if settings.SUBMIT_GRACE_SECONDS is not None:
                closes_at = exam_session.end_time + timedelta(seconds=settings.SUBMIT_GRACE_SECONDS)
                if now > closes_at:
                    logger.warning("Rejected: submission window closed", assignment_id=assignment.id)
                    raise AuthorizationError("Submission window has closed")

            sheet = score_submission(exam_session.exam.questions, answers, now)

            result = await self.db.execute(
                update(Assignment)
                .where(
                    Assignment.id == assignment.id,
                    Assignment.session_token == token,
                    Assignment.status != STATUS_SUBMITTED,
                )
                .values(
                    status=STATUS_SUBMITTED,
                    submit_time=now,
                    score=sheet.score,
                    auto_submitted=bool(auto_submitted),
                    answers=sheet.answers,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._reject_lost_update(assignment, token, "submit")
            await self.db.commit()
            await self.db.refresh(assignment)

        logger.info(
            "Exam submitted",
            session_id=session_id,
            assignment_id=assignment.id,
            score=assignment.score,
            auto_submitted=assignment.auto_submitted,
            answered=len(sheet.answers),
        )
        return assignment

    async def force_stop(self, session_id: int, student_id: int) -> Assignment:
        """Administrator stop: an in-progress attempt becomes submitted as auto-submitted."""
        await self.get_session(session_id)
        assignment = await self.find_assignment(session_id, student_id)
        if not assignment:
            raise NotFoundError("Assignment not found")

        async with assignment_lock(self.redis, assignment.id):
            result = await self.db.execute(
                update(Assignment)
                .where(Assignment.id == assignment.id, Assignment.status == STATUS_IN_PROGRESS)
                .values(status=STATUS_SUBMITTED, submit_time=self.clock(), auto_submitted=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            await self.db.refresh(assignment)

        if result.rowcount:
            logger.info("Exam force-stopped", session_id=session_id, assignment_id=assignment.id)
        return assignment

    # --- Reads ---

    async def get_result(self, session_id: int, student_id: int) -> dict:
        exam_session = await self.get_session(session_id, with_questions=True)
        assignment = await self.find_assignment(session_id, student_id)
        if not assignment or assignment.status != STATUS_SUBMITTED:
            raise NotFoundError("Result not found or exam not submitted yet")

        exam = exam_session.exam
        passing_marks = exam.passing_marks or 0
        exam_has_ended = self.clock() > exam_session.end_time

        detailed = None
        if exam_has_ended:
            questions = {q.id: q for q in exam.questions}
            detailed = []
            for ans in assignment.answers or []:
                question = questions.get(ans["question_id"])
                detailed.append({
                    "question_id": ans["question_id"],
                    "question_text": question.text if question else None,
                    "question_type": question.question_type if question else None,
                    "options": question.options if question else None,
                    "your_answer": ans.get("answer_text"),
                    "correct_answer": question.correct_answer if question else None,
                    "is_correct": ans.get("is_correct"),
                    "marks_awarded": ans.get("marks_awarded", 0),
                    "total_marks": question.marks if question else None,
                })

        return {
            "score": assignment.score,
            "total_marks": exam.total_marks,
            "passing_marks": passing_marks,
            "result": "Pass" if assignment.score >= passing_marks else "Fail",
            "exam_has_ended": exam_has_ended,
            "exam_title": exam.title,
            "submit_time": assignment.submit_time,
            "auto_submitted": assignment.auto_submitted,
            "answers": detailed,
        }

    async def list_assigned(self, student_id: int) -> List[dict]:
        result = await self.db.execute(
            select(Assignment, ExamSession, Exam)
            .join(ExamSession, Assignment.session_id == ExamSession.id)
            .join(Exam, ExamSession.exam_id == Exam.id)
            .filter(Assignment.student_id == student_id)
            .order_by(ExamSession.start_time.desc())
        )
        return [{
            "session_id": s.id,
            "session_name": s.name,
            "start_time": s.start_time,
            "end_time": s.end_time,
            "mode": s.mode,
            "is_active": s.is_active,
            "exam_id": e.id,
            "exam_title": e.title,
            "duration_minutes": e.duration_minutes,
            "total_marks": e.total_marks,
            "assignment_id": a.id,
            "status": a.status,
            "score": a.score,
            "submit_time": a.submit_time,
        } for a, s, e in result.all()]
