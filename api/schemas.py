from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Student protocol ===

class DownloadResponse(CamelModel):
    encrypted_exam: str = Field(..., description="Fernet token holding the answer-key-free exam package")
    session_id: int = Field(..., description="Exam session ID")
    package_key: Optional[str] = Field(None, description="Per-download decryption key (ephemeral key mode only)")


class StartRequest(CamelModel):
    session_token: str = Field(..., min_length=1, description="Token from the downloaded package")


class StartResponse(CamelModel):
    assignment_id: int
    start_time: datetime


class AnswerIn(CamelModel):
    question_id: int = Field(..., description="Question ID from the package")
    answer_text: Optional[str] = Field(None, max_length=20000)
    answered_at: Optional[datetime] = Field(None, description="Local time the answer was last edited")


class SubmitRequest(CamelModel):
    session_token: str = Field(..., min_length=1)
    answers: List[AnswerIn] = Field(default_factory=list)
    auto_submitted: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "sessionToken": "9f2c...",
                "answers": [{"questionId": 1, "answerText": "Paris"}],
                "autoSubmitted": False,
            }
        },
    )


class SubmitResponse(CamelModel):
    score: int
    auto_submitted: bool


class AnswerDetail(CamelModel):
    question_id: int
    question_text: Optional[str]
    question_type: Optional[str]
    options: Optional[List[Any]]
    your_answer: Optional[str]
    correct_answer: Optional[str]
    is_correct: Optional[bool]
    marks_awarded: int
    total_marks: Optional[int]


class ResultResponse(CamelModel):
    score: int
    total_marks: int
    passing_marks: int
    result: str = Field(..., description="Pass or Fail")
    exam_has_ended: bool
    exam_title: str
    submit_time: Optional[datetime]
    auto_submitted: bool
    answers: Optional[List[AnswerDetail]] = Field(None, description="Null until the session end time has passed")


class AssignedExam(CamelModel):
    session_id: int
    session_name: str
    start_time: datetime
    end_time: datetime
    mode: str
    is_active: bool
    exam_id: int
    exam_title: str
    duration_minutes: int
    total_marks: int
    assignment_id: int
    status: str
    score: int
    submit_time: Optional[datetime]


# === Admin ===

class SessionCreate(CamelModel):
    exam_id: int
    session_name: str = Field(..., min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    mode: str = Field("offline", description="online or offline")
    student_ids: Optional[List[int]] = Field(None, description="Assign everyone when omitted")


class SessionActiveUpdate(CamelModel):
    is_active: bool


class SessionOut(CamelModel):
    id: int
    exam_id: int
    name: str
    start_time: datetime
    end_time: datetime
    mode: str
    is_active: bool
    assigned_count: int


class LiveStatusItem(CamelModel):
    assignment_id: int
    student_id: int
    student_code: Optional[str]
    name: Optional[str]
    status: str
    display_status: str
    answered_count: int
    total_questions: int
    last_activity: Optional[datetime]
    login_time: Optional[datetime]
    start_time: Optional[datetime]
    submit_time: Optional[datetime]


class LiveStatusResponse(CamelModel):
    poll_interval_seconds: int
    students: List[LiveStatusItem]


class SessionResultItem(CamelModel):
    assignment_id: int
    student_id: int
    student_code: Optional[str]
    name: Optional[str]
    email: Optional[str]
    status: str
    score: int
    submit_time: Optional[datetime]
    auto_submitted: bool
    total_marks: int
    passing_marks: int
    result: str


class PreviousAttemptOut(CamelModel):
    attempt_number: int
    status: str
    login_time: Optional[datetime]
    start_time: Optional[datetime]
    submit_time: Optional[datetime]
    score: int
    auto_submitted: bool
    answers: List[Any]
    archived_at: datetime


class HistoryItem(CamelModel):
    session_id: int
    session_name: str
    exam_title: Optional[str]
    status: str
    score: int
    submit_time: Optional[datetime]
    end_time: datetime
    previous_attempts: List[PreviousAttemptOut]


class AssignmentStatusOut(CamelModel):
    assignment_id: int
    status: str
    auto_submitted: bool
    submit_time: Optional[datetime]
