from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from models.exam import Exam, Question, QUESTION_TYPES, QUESTION_MCQ
from core.exceptions import ValidationError
from core.logger import logger

class ExamService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_exam(
        self,
        title: str,
        duration_minutes: int,
        questions: List[dict],
        total_marks: Optional[int] = None,
        passing_marks: Optional[int] = None,
        description: str = None,
    ) -> Exam:
        """Create an exam with its ordered questions.

        Each question dict carries text, type, options, correct_answer and
        marks. Missing totals are computed from the questions, with a 40%
        passing mark.
        """
        rows = []
        for index, q in enumerate(questions, 1):
            q_type = q.get("type", QUESTION_MCQ)
            if q_type not in QUESTION_TYPES:
                raise ValidationError(f"Question {index}: unknown type '{q_type}'")
            if q_type == QUESTION_MCQ and not q.get("correct_answer"):
                raise ValidationError(f"Question {index}: mcq requires a correct answer")
            rows.append(Question(
                text=q["text"],
                question_type=q_type,
                options=list(q.get("options") or []) if q_type == QUESTION_MCQ else [],
                correct_answer=q.get("correct_answer"),
                marks=int(q.get("marks", 1)),
                order_index=q.get("order_index", index),
            ))

        computed_total = sum(r.marks for r in rows)
        exam = Exam(
            title=title,
            description=description,
            duration_minutes=duration_minutes,
            total_marks=total_marks if total_marks is not None else computed_total,
            passing_marks=passing_marks if passing_marks is not None else int(computed_total * 0.4),
            questions=rows,
        )
        self.db.add(exam)
        await self.db.commit()
        logger.info("Exam created", exam_id=exam.id, title=title, questions=len(rows))
        return await self.get_exam(exam.id)

    async def get_exam(self, exam_id: int) -> Optional[Exam]:
        result = await self.db.execute(
            select(Exam).options(selectinload(Exam.questions)).filter(Exam.id == exam_id)
        )
        return result.scalar_one_or_none()
