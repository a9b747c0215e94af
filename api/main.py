from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from api.auth import CurrentUser, require_admin, require_student
from api.schemas import (
    AssignedExam, AssignmentStatusOut, DownloadResponse, HistoryItem, LiveStatusResponse,
    ResultResponse, SessionActiveUpdate, SessionCreate, SessionOut, SessionResultItem,
    StartRequest, StartResponse, SubmitRequest, SubmitResponse,
)
from core.config import settings
from core.exceptions import ExamShieldError
from core.logger import logger, setup_logging
from db.session import close_redis, engine, get_db, get_redis
from services.assignment_service import AssignmentService
from services.monitoring_service import MonitoringService
from services.scoring import SubmittedAnswer
from services.session_service import ExamSessionService

# API Documentation
API_DESCRIPTION = """
## ExamShield API

Delivers timed exams to students who may lose connectivity mid-exam.

### Protocol

1. `GET /exam/{sessionId}/download` returns the encrypted package (no answer key)
   and mints a new session token. Downloading a submitted exam archives the
   attempt and reopens it.
2. `POST /exam/{sessionId}/start` marks the attempt in progress.
3. `POST /exam/{sessionId}/submit` scores the answers exactly once.
4. `GET /exam/{sessionId}/result` shows the score; per-question detail appears
   only after the session end time.

### Authentication

`Authorization: Bearer <token>` on every endpoint. Student endpoints require
the `student` role, `/admin` endpoints the `admin` role.
"""

TAGS_METADATA = [
    {
        "name": "exam",
        "description": "Student exam protocol: download, start, submit, result.",
    },
    {
        "name": "admin",
        "description": "Session scheduling and live monitoring.",
    },
]

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("API starting", env=settings.ENV, key_mode=settings.PACKAGE_KEY_MODE)
    yield
    await close_redis()
    await engine.dispose()
    logger.info("API stopped")


app = FastAPI(
    title="ExamShield API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_cache_headers(request: Request, call_next):
    response = await call_next(request)

    # Exam packages and results must never be served from a shared cache
    if request.url.path.startswith("/exam/"):
        response.headers.setdefault("Cache-Control", "no-store")
        response.headers.setdefault("Pragma", "no-cache")

    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExamShieldError)
async def exam_error_handler(request: Request, exc: ExamShieldError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("Malformed request", path=request.url.path)
    return JSONResponse(
        status_code=400,
        content={"detail": "Malformed request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Unexpected server error"})


# === Student protocol ===

@app.get(
    "/exam/assigned",
    response_model=List[AssignedExam],
    tags=["exam"],
    summary="List assigned exams",
)
async def list_assigned(user: CurrentUser = Depends(require_student), db: AsyncSession = Depends(get_db)):
    service = AssignmentService(db)
    return await service.list_assigned(user.id)


@app.get(
    "/exam/{session_id}/download",
    response_model=DownloadResponse,
    tags=["exam"],
    summary="Download the encrypted exam package",
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Not assigned, session inactive or retake limit reached"},
        404: {"description": "Session not found"},
    },
)
async def download_exam(
    session_id: int,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    redis = Depends(get_redis),
):
    service = AssignmentService(db, redis=redis)
    result = await service.download(session_id, user.id)
    return DownloadResponse(
        encrypted_exam=result.encrypted_exam,
        session_id=result.session_id,
        package_key=result.package_key,
    )


@app.post(
    "/exam/{session_id}/start",
    response_model=StartResponse,
    tags=["exam"],
    summary="Start the exam attempt",
    responses={
        403: {"description": "Invalid session token or already submitted"},
        404: {"description": "Session not found"},
    },
)
async def start_exam(
    session_id: int,
    body: StartRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    redis = Depends(get_redis),
):
    service = AssignmentService(db, redis=redis)
    assignment = await service.start(session_id, user.id, body.session_token)
    return StartResponse(assignment_id=assignment.id, start_time=assignment.start_time)


@app.post(
    "/exam/{session_id}/submit",
    response_model=SubmitResponse,
    tags=["exam"],
    summary="Submit answers for scoring",
    responses={
        403: {"description": "Invalid session token, already submitted or window closed"},
        404: {"description": "Session not found"},
    },
)
async def submit_exam(
    session_id: int,
    body: SubmitRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    redis = Depends(get_redis),
):
    service = AssignmentService(db, redis=redis)
    answers = [
        SubmittedAnswer(question_id=a.question_id, answer_text=a.answer_text, answered_at=a.answered_at)
        for a in body.answers
    ]
    assignment = await service.submit(session_id, user.id, body.session_token, answers, body.auto_submitted)
    return SubmitResponse(score=assignment.score, auto_submitted=assignment.auto_submitted)


@app.get(
    "/exam/{session_id}/result",
    response_model=ResultResponse,
    tags=["exam"],
    summary="Get the exam result",
    responses={404: {"description": "Session not found or exam not submitted yet"}},
)
async def get_result(
    session_id: int,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    service = AssignmentService(db)
    return await service.get_result(session_id, user.id)


# === Admin ===

def _session_out(exam_session) -> SessionOut:
    return SessionOut(
        id=exam_session.id,
        exam_id=exam_session.exam_id,
        name=exam_session.name,
        start_time=exam_session.start_time,
        end_time=exam_session.end_time,
        mode=exam_session.mode,
        is_active=exam_session.is_active,
        assigned_count=len(exam_session.assignments),
    )


@app.post("/admin/sessions", response_model=SessionOut, status_code=201, tags=["admin"], summary="Schedule a session")
async def create_session(
    body: SessionCreate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = ExamSessionService(db)
    exam_session = await service.schedule_session(
        exam_id=body.exam_id,
        name=body.session_name,
        start_time=body.start_time,
        end_time=body.end_time,
        mode=body.mode,
        student_ids=body.student_ids,
    )
    return _session_out(exam_session)


@app.put("/admin/sessions/{session_id}/active", response_model=SessionOut, tags=["admin"], summary="Activate or deactivate")
async def toggle_session(
    session_id: int,
    body: SessionActiveUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = ExamSessionService(db)
    return _session_out(await service.set_active(session_id, body.is_active))


@app.delete("/admin/sessions/{session_id}", status_code=204, tags=["admin"], summary="Delete a session")
async def delete_session(
    session_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ExamSessionService(db).delete_session(session_id)
    return Response(status_code=204)


@app.get("/admin/sessions/{session_id}/live-status", response_model=LiveStatusResponse, tags=["admin"])
async def live_status(
    session_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    students = await MonitoringService(db).live_status(session_id)
    return {"poll_interval_seconds": settings.MONITOR_POLL_INTERVAL_SECONDS, "students": students}


@app.get("/admin/sessions/{session_id}/results", response_model=List[SessionResultItem], tags=["admin"])
async def session_results(
    session_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await MonitoringService(db).session_results(session_id)


@app.post(
    "/admin/sessions/{session_id}/students/{student_id}/stop",
    response_model=AssignmentStatusOut,
    tags=["admin"],
    summary="Force-stop a student's in-progress attempt",
)
async def stop_student(
    session_id: int,
    student_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis = Depends(get_redis),
):
    assignment = await AssignmentService(db, redis=redis).force_stop(session_id, student_id)
    return AssignmentStatusOut(
        assignment_id=assignment.id,
        status=assignment.status,
        auto_submitted=assignment.auto_submitted,
        submit_time=assignment.submit_time,
    )


@app.get("/admin/students/{student_id}/history", response_model=List[HistoryItem], tags=["admin"])
async def student_history(
    student_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await MonitoringService(db).student_history(student_id)
