from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_SUBMITTED = "submitted"

MODE_ONLINE = "online"
MODE_OFFLINE = "offline"

class ExamSession(Base, TimestampMixin):
    __tablename__ = "exam_sessions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    mode = Column(String(20), default=MODE_OFFLINE, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)

    exam = relationship("Exam")
    assignments = relationship(
        "Assignment",
        back_populates="session",
        cascade="all, delete-orphan",
    )


class Assignment(Base, TimestampMixin):
    """One student's current attempt at one scheduled session."""
    __tablename__ = "assignments"
    __table_args__ = (UniqueConstraint("session_id", "student_id", name="uq_assignment_session_student"),)

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("exam_sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    status = Column(String(20), default=STATUS_PENDING, nullable=False)
    login_time = Column(DateTime, nullable=True)
    start_time = Column(DateTime, nullable=True)
    submit_time = Column(DateTime, nullable=True)
    score = Column(Integer, default=0, nullable=False)
    auto_submitted = Column(Boolean, default=False, nullable=False)
    session_token = Column(String(128), unique=True, nullable=True)

    # [{question_id, answer_text, is_correct, marks_awarded, answered_at}]
    answers = Column(JSON, nullable=False, default=list)

    session = relationship("ExamSession", back_populates="assignments")
    student = relationship("User")
    previous_attempts = relationship(
        "PreviousAttempt",
        back_populates="assignment",
        order_by="PreviousAttempt.attempt_number",
        cascade="all, delete-orphan",
    )


class PreviousAttempt(Base):
    """Frozen copy of an Assignment taken when a retake reopens it. Rows are never updated."""
    __tablename__ = "previous_attempts"

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), index=True, nullable=False)
    attempt_number = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False)
    login_time = Column(DateTime, nullable=True)
    start_time = Column(DateTime, nullable=True)
    submit_time = Column(DateTime, nullable=True)
    score = Column(Integer, nullable=False)
    auto_submitted = Column(Boolean, nullable=False)
    answers = Column(JSON, nullable=False, default=list)
    archived_at = Column(DateTime, nullable=False)

    assignment = relationship("Assignment", back_populates="previous_attempts")

    def to_dict(self):
        return {
            "attempt_number": self.attempt_number,
            "status": self.status,
            "login_time": self.login_time,
            "start_time": self.start_time,
            "submit_time": self.submit_time,
            "score": self.score,
            "auto_submitted": self.auto_submitted,
            "answers": self.answers,
            "archived_at": self.archived_at,
        }
