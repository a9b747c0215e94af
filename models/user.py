from sqlalchemy import Column, Integer, String
from models.base import Base, TimestampMixin

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String(64), unique=True, index=True, nullable=True)  # roll number, students only
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(20), default=ROLE_STUDENT, nullable=False)
