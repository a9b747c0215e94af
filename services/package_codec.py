"""
Offline package codec.

The package is everything a client needs to sit the exam without a live
connection: exam metadata, the attempt credentials and the questions with the
answer key stripped. It travels as a Fernet token (AES-128-CBC + HMAC-SHA256).
"""
import base64
import json
from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.config import settings
from core.exceptions import ValidationError, InternalError

KEY_MODE_EPHEMERAL = "ephemeral"
KEY_MODE_SHARED = "shared"

# Only these question fields may leave the server inside a package
PACKAGE_QUESTION_FIELDS = ("id", "text", "type", "options", "marks", "order")


class PackageDecodeError(ValidationError):
    default_message = "Exam package could not be decrypted"


def derive_key_from_passphrase(passphrase: str, salt: bytes, iterations: int) -> bytes:
    """Derive a Fernet key from a passphrase using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


def sanitize_question(question) -> Dict[str, Any]:
    return {
        "id": question.id,
        "text": question.text,
        "type": question.question_type,
        "options": list(question.options or []),
        "marks": question.marks,
        "order": question.order_index,
    }


def build_payload(exam, questions: Iterable, assignment_id: int, session_token: str) -> Dict[str, Any]:
    return {
        "assignmentId": assignment_id,
        "sessionToken": session_token,
        "exam": {
            "id": exam.id,
            "title": exam.title,
            "description": exam.description,
            "durationMinutes": exam.duration_minutes,
            "totalMarks": exam.total_marks,
            "passingMarks": exam.passing_marks,
        },
        "questions": [sanitize_question(q) for q in questions],
    }


class PackageCodec:
    def __init__(self, key: bytes):
        self.key = key
        self._fernet = Fernet(key)

    @classmethod
    def ephemeral(cls) -> "PackageCodec":
        """Codec with a key that exists only for one download."""
        return cls(Fernet.generate_key())

    @classmethod
    def shared(cls, passphrase: Optional[str] = None) -> "PackageCodec":
        passphrase = passphrase if passphrase is not None else settings.PACKAGE_ENCRYPTION_KEY
        if not passphrase:
            raise InternalError("PACKAGE_ENCRYPTION_KEY is not configured")
        key = derive_key_from_passphrase(
            passphrase,
            settings.PACKAGE_KEY_SALT.encode("utf-8"),
            settings.PACKAGE_KDF_ITERATIONS,
        )
        return cls(key)

    @classmethod
    def for_download(cls) -> "PackageCodec":
        if settings.PACKAGE_KEY_MODE == KEY_MODE_SHARED:
            return cls.shared()
        return cls.ephemeral()

    @property
    def key_text(self) -> str:
        return self.key.decode("ascii")

    def encode(self, exam, questions: Iterable, assignment_id: int, session_token: str) -> str:
        payload = build_payload(exam, questions, assignment_id, session_token)
        return self.encode_payload(payload)

    def encode_payload(self, payload: Dict[str, Any]) -> str:
        data = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        return self._fernet.encrypt(data).decode("ascii")

    def decode(self, ciphertext: str) -> Dict[str, Any]:
        try:
            data = self._fernet.decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, ValueError) as e:
            raise PackageDecodeError() from e
        return json.loads(data)
