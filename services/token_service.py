import hmac
import secrets
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from models.exam_session import Assignment
from core.logger import logger

TOKEN_BYTES = 32


def generate_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def tokens_match(stored: Optional[str], presented: Optional[str]) -> bool:
    """Equality check whose timing does not depend on where the strings differ."""
    if not stored or not presented:
        return False
    return hmac.compare_digest(stored.encode(), presented.encode())


class SessionTokenService:
    """Issues the per-attempt credential and checks it against the stored one."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, assignment_id: int) -> str:
        """Store a fresh token on the assignment. The previous one stops working at once.

        The caller owns the transaction and commits it.
        """
        token = generate_session_token()
        await self.db.execute(
            update(Assignment)
            .where(Assignment.id == assignment_id)
            .values(session_token=token)
            .execution_options(synchronize_session=False)
        )
        logger.debug("Session token issued", assignment_id=assignment_id)
        return token

    async def validate(self, assignment_id: int, token: str) -> bool:
        result = await self.db.execute(
            select(Assignment.session_token).where(Assignment.id == assignment_id)
        )
        return tokens_match(result.scalar_one_or_none(), token)
