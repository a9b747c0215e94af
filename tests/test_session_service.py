from datetime import timedelta

import pytest
from sqlalchemy import func, select

from core.exceptions import NotFoundError, ValidationError
from models.base import utcnow
from models.exam_session import Assignment, PreviousAttempt, STATUS_PENDING
from models.user import User, ROLE_STUDENT
from services.assignment_service import AssignmentService
from services.exam_service import ExamService
from services.session_service import ExamSessionService


async def test_create_exam_computes_totals(db, exam):
    assert exam.total_marks == 5
    assert exam.passing_marks == 2
    assert [q.order_index for q in exam.questions] == [1, 2, 3]
    assert exam.questions[2].options == []


async def test_create_exam_default_passing_mark(db):
    exam = await ExamService(db).create_exam(
        "Quiz", 10, [{"text": "1+1?", "options": ["2", "3"], "correct_answer": "2", "marks": 5}]
    )
    assert exam.total_marks == 5
    assert exam.passing_marks == 2


async def test_create_exam_rejects_mcq_without_key(db):
    with pytest.raises(ValidationError, match="correct answer"):
        await ExamService(db).create_exam("Quiz", 10, [{"text": "1+1?", "options": ["2", "3"]}])


async def test_create_exam_rejects_unknown_type(db):
    with pytest.raises(ValidationError, match="unknown type"):
        await ExamService(db).create_exam("Quiz", 10, [{"text": "?", "type": "essay"}])


async def test_schedule_assigns_listed_students(db, exam, students):
    now = utcnow()
    exam_session = await ExamSessionService(db).schedule_session(
        exam.id, "Retest", now, now + timedelta(hours=1), student_ids=[students[1].id]
    )
    assert exam_session.is_active is False
    assert [a.student_id for a in exam_session.assignments] == [students[1].id]
    assert exam_session.assignments[0].status == STATUS_PENDING


async def test_schedule_without_list_assigns_every_student(db, exam, students, admin):
    now = utcnow()
    exam_session = await ExamSessionService(db).schedule_session(exam.id, "Final", now, now + timedelta(hours=1))
    assert sorted(a.student_id for a in exam_session.assignments) == sorted(s.id for s in students)


async def test_schedule_validation(db, exam, students):
    service = ExamSessionService(db)
    now = utcnow()
    with pytest.raises(ValidationError, match="end time"):
        await service.schedule_session(exam.id, "Bad", now, now)
    with pytest.raises(ValidationError, match="mode"):
        await service.schedule_session(exam.id, "Bad", now, now + timedelta(hours=1), mode="hybrid")
    with pytest.raises(ValidationError, match="Unknown students"):
        await service.schedule_session(exam.id, "Bad", now, now + timedelta(hours=1), student_ids=[9999])
    with pytest.raises(NotFoundError):
        await service.schedule_session(9999, "Bad", now, now + timedelta(hours=1))


async def test_set_active_unknown_session(db):
    with pytest.raises(NotFoundError):
        await ExamSessionService(db).set_active(9999, True)


async def test_delete_session_removes_attempt_history(db, exam_session, students):
    service = AssignmentService(db)
    await service.download(exam_session.id, students[0].id)
    assignment = await service.get_assignment(exam_session.id, students[0].id)
    await service.submit(exam_session.id, students[0].id, assignment.session_token, [])
    await service.download(exam_session.id, students[0].id)
    assert (await db.execute(select(func.count(PreviousAttempt.id)))).scalar() == 1

    await ExamSessionService(db).delete_session(exam_session.id)

    assert (await db.execute(select(func.count(Assignment.id)))).scalar() == 0
    assert (await db.execute(select(func.count(PreviousAttempt.id)))).scalar() == 0
    assert (await db.execute(select(func.count(User.id)).filter(User.role == ROLE_STUDENT))).scalar() == 2
    with pytest.raises(NotFoundError):
        await ExamSessionService(db).get_session(exam_session.id)


async def test_delete_unknown_session(db):
    with pytest.raises(NotFoundError):
        await ExamSessionService(db).delete_session(9999)
