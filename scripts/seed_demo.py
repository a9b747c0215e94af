import asyncio
import sys
import os
from datetime import timedelta

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import AsyncSessionLocal, init_models
from models.base import utcnow
from models.user import User, ROLE_ADMIN, ROLE_STUDENT
from services.exam_service import ExamService
from services.session_service import ExamSessionService
from api.auth import create_access_token
from core.logger import setup_logging, logger

QUESTIONS = [
    {"text": "Which planet is the largest?", "options": ["Earth", "Mars", "Jupiter", "Saturn"], "correct_answer": "Jupiter", "marks": 2},
    {"text": "What is H2O?", "options": ["Water", "Salt", "Sugar"], "correct_answer": "Water", "marks": 1},
    {"text": "What is 7 x 6?", "options": ["42", "36", "48"], "correct_answer": "42", "marks": 1},
    {"text": "Describe the water cycle in two sentences.", "type": "descriptive", "marks": 3},
]


async def seed(students: int):
    print(f"⚠️  This will add {students} demo students, an admin, one exam and an ACTIVE session to the database.")
    confirm = input("Type 'CONFIRM' to proceed: ")

    if confirm != "CONFIRM":
        print("Operation cancelled.")
        return

    # Local sqlite runs have no migrations applied
    await init_models()

    async with AsyncSessionLocal() as session:
        try:
            stamp = utcnow().strftime("%H%M%S")
            admin = User(name="Demo Admin", role=ROLE_ADMIN)
            users = [
                User(student_id=f"DEMO-{stamp}-{i:03d}", name=f"Demo Student {i}", role=ROLE_STUDENT)
                for i in range(1, students + 1)
            ]
            session.add(admin)
            session.add_all(users)
            await session.commit()

            exam_obj = await ExamService(session).create_exam("Demo Exam", 20, QUESTIONS)
            now = utcnow()
            sessions = ExamSessionService(session)
            exam_session_obj = await sessions.schedule_session(
                exam_obj.id, "Demo Session", now - timedelta(minutes=5), now + timedelta(hours=2),
                student_ids=[u.id for u in users],
            )
            await sessions.set_active(exam_session_obj.id, True)

            print(f"✅ Session {exam_session_obj.id} is active.")
            print(f"   Student user ids: {users[0].id}..{users[-1].id}")
            print(f"   Admin token: {create_access_token(admin.id, ROLE_ADMIN)}")
            print(f"   First student token: {create_access_token(users[0].id)}")
        except Exception as e:
            await session.rollback()
            logger.error("Seeding failed", error=str(e))
            print(f"❌ Error: {e}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed(int(sys.argv[1]) if len(sys.argv) > 1 else 50))
