from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from models.base import utcnow
from models.exam_session import (
    Assignment, PreviousAttempt, STATUS_PENDING, STATUS_SUBMITTED
)
from core.config import settings
from core.exceptions import AuthorizationError
from core.logger import logger

class RetakeService:
    """Folds a submitted attempt into history and reopens the assignment.

    Works inside the caller's transaction: nothing here commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_attempts(self, assignment_id: int) -> int:
        result = await self.db.execute(
            select(func.count(PreviousAttempt.id)).filter(PreviousAttempt.assignment_id == assignment_id)
        )
        return result.scalar() or 0

    async def archive_and_reset(self, assignment: Assignment) -> PreviousAttempt:
        archived = await self.count_attempts(assignment.id)
        if settings.MAX_RETAKES is not None and archived >= settings.MAX_RETAKES:
            logger.warning("Retake refused: limit reached", assignment_id=assignment.id, archived=archived)
            raise AuthorizationError("Retake limit reached for this exam")

        # Reset only if the row is still the submitted attempt we read
        result = await self.db.execute(
            update(Assignment)
            .where(
                Assignment.id == assignment.id,
                Assignment.status == STATUS_SUBMITTED,
                Assignment.session_token == assignment.session_token,
            )
            .values(
                status=STATUS_PENDING,
                score=0,
                answers=[],
                auto_submitted=False,
                start_time=None,
                submit_time=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AuthorizationError("Exam attempt changed while downloading, please retry")

        snapshot = PreviousAttempt(
            assignment_id=assignment.id,
            attempt_number=archived + 1,
            status=assignment.status,
            login_time=assignment.login_time,
            start_time=assignment.start_time,
            submit_time=assignment.submit_time,
            score=assignment.score,
            auto_submitted=assignment.auto_submitted,
            answers=list(assignment.answers or []),
            archived_at=utcnow(),
        )
        self.db.add(snapshot)
        await self.db.flush()
        logger.info(
            "Attempt archived for retake",
            assignment_id=assignment.id,
            attempt_number=snapshot.attempt_number,
            score=snapshot.score,
        )
        return snapshot
