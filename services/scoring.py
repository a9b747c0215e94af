from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from models.exam import QUESTION_MCQ


@dataclass
class SubmittedAnswer:
    question_id: int
    answer_text: Optional[str]
    answered_at: Optional[datetime] = None


@dataclass
class ScoreSheet:
    score: int = 0
    answers: List[dict] = field(default_factory=list)


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def grade_answer(question, answer_text: Optional[str]):
    """Return (is_correct, marks_awarded) for one answer.

    Descriptive answers are recorded but not graded: is_correct is None.
    """
    if question.question_type == QUESTION_MCQ:
        is_correct = question.correct_answer is not None and normalize(answer_text) == normalize(question.correct_answer)
        return is_correct, question.marks if is_correct else 0
    return None, 0


def score_submission(questions: Iterable, answers: Iterable[SubmittedAnswer], now: datetime) -> ScoreSheet:
    """Grade a whole submission at once.

    Answers for unknown questions are dropped. When a question is answered
    more than once the last answer counts. Unanswered questions add nothing.
    """
    by_id: Dict[int, object] = {q.id: q for q in questions}
    latest: Dict[int, SubmittedAnswer] = {}
    for answer in answers:
        if answer.question_id in by_id:
            latest.pop(answer.question_id, None)
            latest[answer.question_id] = answer

    sheet = ScoreSheet()
    for question_id, answer in latest.items():
        is_correct, marks = grade_answer(by_id[question_id], answer.answer_text)
        sheet.score += marks
        sheet.answers.append({
            "question_id": question_id,
            "answer_text": answer.answer_text,
            "is_correct": is_correct,
            "marks_awarded": marks,
            "answered_at": (answer.answered_at or now).isoformat(),
        })
    return sheet
