"""
Pytest configuration and fixtures for ExamShield tests.
"""
import asyncio
import sys
import os
import uuid
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time
os.environ.setdefault("ENV", "development")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PACKAGE_KDF_ITERATIONS", "1000")

from redis.exceptions import LockNotOwnedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.auth import create_access_token
from api.main import app
from db.session import build_engine, get_db, get_redis, init_models
from models.base import utcnow
from models.user import User, ROLE_ADMIN, ROLE_STUDENT
from services.assignment_service import redis_outage
from services.exam_service import ExamService
from services.session_service import ExamSessionService


class FakeLock:
    """Token-checked lock with the acquire/release contract of redis.asyncio.lock.Lock."""

    def __init__(self, redis, name, timeout=None, sleep=0.1, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.sleep = sleep
        self.blocking_timeout = blocking_timeout
        self.token = None

    async def acquire(self):
        self.redis.lock_attempts += 1
        token = uuid.uuid4().hex
        deadline = asyncio.get_running_loop().time() + (self.blocking_timeout or 0)
        while self.name in self.redis.store:
            if asyncio.get_running_loop().time() >= deadline:
                return False
            await asyncio.sleep(self.sleep)
        self.redis.store[self.name] = token
        self.token = token
        return True

    async def release(self):
        if self.redis.store.get(self.name) != self.token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.redis.store[self.name]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the assignment lock."""

    def __init__(self):
        self.store = {}
        self.lock_attempts = 0
        self.lock_calls = []

    def lock(self, name, timeout=None, sleep=0.1, blocking_timeout=None):
        self.lock_calls.append({"name": name, "timeout": timeout, "blocking_timeout": blocking_timeout})
        return FakeLock(self, name, timeout=timeout, sleep=sleep, blocking_timeout=blocking_timeout)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'examshield_test.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture(autouse=True)
def clear_redis_outage():
    redis_outage.reset()
    yield
    redis_outage.reset()


@pytest_asyncio.fixture
async def students(db):
    users = [
        User(student_id="CS-001", name="Aziza Karimova", email="aziza@example.edu", role=ROLE_STUDENT),
        User(student_id="CS-002", name="Bekzod Tursunov", email="bekzod@example.edu", role=ROLE_STUDENT),
    ]
    db.add_all(users)
    await db.commit()
    return users


@pytest_asyncio.fixture
async def admin(db):
    user = User(name="Exam Office", email="office@example.edu", role=ROLE_ADMIN)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
def sample_questions():
    """Two graded questions worth 3 marks and one descriptive question."""
    return [
        {"text": "Capital of France?", "type": "mcq", "options": ["Paris", "Lyon", "Nice"], "correct_answer": "Paris", "marks": 2},
        {"text": "What is 2+2?", "type": "mcq", "options": ["3", "4", "5"], "correct_answer": "4", "marks": 1},
        {"text": "Explain photosynthesis.", "type": "descriptive", "marks": 2},
    ]


@pytest_asyncio.fixture
async def exam(db, sample_questions):
    return await ExamService(db).create_exam(
        title="General Knowledge",
        duration_minutes=30,
        questions=sample_questions,
        passing_marks=2,
    )


async def schedule(db, exam, students, starts_in=timedelta(hours=-1), ends_in=timedelta(hours=1), active=True):
    service = ExamSessionService(db)
    now = utcnow()
    exam_session = await service.schedule_session(
        exam_id=exam.id,
        name="Midterm",
        start_time=now + starts_in,
        end_time=now + ends_in,
        student_ids=[s.id for s in students],
    )
    if active:
        exam_session = await service.set_active(exam_session.id, True)
    return exam_session


@pytest_asyncio.fixture
async def exam_session(db, exam, students):
    """Active session running now, both students assigned."""
    return await schedule(db, exam, students)


@pytest_asyncio.fixture
async def ended_session(db, exam, students):
    """Active session whose end time has already passed."""
    return await schedule(db, exam, students, starts_in=timedelta(hours=-2), ends_in=timedelta(hours=-1))


def auth_headers(user_id: int, role: str = ROLE_STUDENT) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest_asyncio.fixture
async def client(session_factory, fake_redis):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def asgi_transport(client):
    """Transport for building extra clients against the same overridden app."""
    return httpx.ASGITransport(app=app)
