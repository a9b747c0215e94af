from sqlalchemy import Column, Integer, String, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin

QUESTION_MCQ = "mcq"
QUESTION_DESCRIPTIVE = "descriptive"
QUESTION_TYPES = (QUESTION_MCQ, QUESTION_DESCRIPTIVE)

class Exam(Base, TimestampMixin):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    total_marks = Column(Integer, nullable=False)
    passing_marks = Column(Integer, nullable=False)

    questions = relationship(
        "Question",
        back_populates="exam",
        order_by="Question.order_index",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), index=True, nullable=False)
    text = Column(Text, nullable=False)
    question_type = Column(String(20), default=QUESTION_MCQ, nullable=False)
    options = Column(JSON, nullable=False, default=list)  # mcq only
    correct_answer = Column(Text, nullable=True)  # never leaves the server before the session ends
    marks = Column(Integer, nullable=False, default=1)
    order_index = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="questions")
