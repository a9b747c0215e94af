"""
Client-side exam runner.

Drives one attempt end to end: fetch or reuse the package, start the attempt,
count down, persist each answer edit, and submit exactly once whether the
trigger is the student, the timer, or the violation limit. While the server
is unreachable the submit is held and retried; the local answers are only
cleared after the server confirms.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx

from client.api_client import ExamApiClient, ExamApiError
from client.cache import AnswerCache, ATTEMPT_ACTIVE, ATTEMPT_SUBMITTING, ATTEMPT_SUBMITTED
from client.task_manager import task_manager
from core.config import settings
from core.logger import logger
from services.package_codec import PackageCodec


class ExamClosedError(Exception):
    """The attempt no longer accepts answers because submit has begun."""


class ExamRunner:
    def __init__(
        self,
        api: ExamApiClient,
        cache: AnswerCache,
        session_id: int,
        package_key: Optional[str] = None,
        violation_limit: int = None,
        retry_interval: float = 5.0,
        tick_seconds: float = 1.0,
        time_limit_seconds: Optional[float] = None,
    ):
        self.api = api
        self.cache = cache
        self.session_id = session_id
        self.package_key = package_key  # shared-key builds bundle it
        self.violation_limit = violation_limit or settings.AUTO_SUBMIT_VIOLATION_LIMIT
        self.retry_interval = retry_interval
        self.tick_seconds = tick_seconds
        self.time_limit_seconds = time_limit_seconds

        self.package: Optional[dict] = None
        self.time_left: float = 0
        self.violations = 0
        self.result: Optional[dict] = None
        self._submit_task: Optional[asyncio.Task] = None

    @property
    def assignment_id(self) -> int:
        return self.package["assignmentId"]

    @property
    def session_token(self) -> str:
        return self.package["sessionToken"]

    @property
    def is_submitting(self) -> bool:
        return self._submit_task is not None

    # --- Lifecycle ---

    async def load(self, refresh: bool = False) -> dict:
        """Use the cached package, or download and decrypt a fresh one.

        refresh=True always downloads, which is how a retake begins.
        """
        package = None if refresh else await self.cache.get_package(self.session_id)
        if package is None:
            resp = await self.api.download(self.session_id)
            key = resp.get("packageKey") or self.package_key
            if not key:
                raise ValueError("No key available to decrypt the exam package")
            package = PackageCodec(key.encode("ascii")).decode(resp["encryptedExam"])
            await self.cache.save_package(self.session_id, package)
            await self.cache.set_attempt_status(package["assignmentId"], ATTEMPT_ACTIVE)
            logger.info("Exam package downloaded", session_id=self.session_id, assignment_id=package["assignmentId"])
        self.package = package
        return package

    async def begin(self, refresh: bool = False) -> dict:
        """Load the package, resume or start the attempt, and run the countdown."""
        await self.load(refresh=refresh)

        status = await self.cache.get_attempt_status(self.assignment_id)
        if status and status["status"] == ATTEMPT_SUBMITTING:
            logger.info("Resuming interrupted submit", assignment_id=self.assignment_id)
            self._launch_submit(status["auto_submitted"])
            return self.package
        if status and status["status"] == ATTEMPT_SUBMITTED:
            raise ExamClosedError("This attempt has already been submitted")

        duration = self.time_limit_seconds
        if duration is None:
            duration = self.package["exam"]["durationMinutes"] * 60
        self.time_left = duration

        try:
            started = await self.api.start(self.session_id, self.session_token)
            self.time_left = self._remaining(duration, started.get("startTime"))
        except httpx.TransportError as e:
            # Work continues offline; the server accepts submit without a recorded start
            logger.warning("Start not recorded, continuing offline", session_id=self.session_id, error=str(e))

        self._start_countdown()
        return self.package

    def _remaining(self, duration: float, start_time: Optional[str]) -> float:
        if self.time_limit_seconds is not None or not start_time:
            return duration
        started = datetime.fromisoformat(start_time)
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        return max(0.0, min(duration, duration - elapsed))

    def _start_countdown(self):
        task = asyncio.create_task(self._countdown())
        task_manager.register_task(self.assignment_id, task)

    async def _countdown(self):
        while self.time_left > 0:
            await asyncio.sleep(self.tick_seconds)
            self.time_left -= self.tick_seconds
        logger.info("Time is up, auto-submitting", assignment_id=self.assignment_id)
        try:
            await self.submit(auto=True)
        except ExamApiError:
            # Logged by _submit; the outcome stays readable through wait()
            return

    async def close(self):
        """Teardown: stop the timer and any submit retry. Cached answers stay for the next run."""
        if self.package:
            task_manager.cancel_task(self.assignment_id)
        if self._submit_task and not self._submit_task.done():
            self._submit_task.cancel()
            try:
                await self._submit_task
            except asyncio.CancelledError:
                pass

    # --- Student actions ---

    async def answer(self, question_id: int, answer_text: Optional[str]):
        if self.is_submitting:
            raise ExamClosedError("Answers can no longer be changed")
        await self.cache.save_answer(self.assignment_id, question_id, answer_text)

    async def record_violation(self) -> int:
        """Count a tab switch / visibility loss. Reaching the limit auto-submits once."""
        if self.is_submitting:
            return self.violations
        self.violations += 1
        logger.warning("Proctoring violation recorded", assignment_id=self.assignment_id, violations=self.violations)
        if self.violations >= self.violation_limit:
            await self.submit(auto=True)
        return self.violations

    async def submit(self, auto: bool = False) -> dict:
        """Submit once. Later calls wait for the same submission instead of sending another."""
        self._launch_submit(auto)
        return await asyncio.shield(self._submit_task)

    async def wait(self) -> Optional[dict]:
        """Wait for a submission started by any trigger and return the server's response."""
        if self._submit_task is None:
            return None
        return await asyncio.shield(self._submit_task)

    def _launch_submit(self, auto: bool):
        if self._submit_task is None:
            task_manager.cancel_task(self.assignment_id)
            self._submit_task = asyncio.create_task(self._submit(auto))

    async def _submit(self, auto: bool) -> dict:
        await self.cache.set_attempt_status(self.assignment_id, ATTEMPT_SUBMITTING, auto)
        answers = await self.cache.get_answers_for(self.assignment_id)

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self.api.submit(self.session_id, self.session_token, answers, auto)
                break
            except httpx.TransportError as e:
                logger.warning(
                    "Submit failed, answers held locally. Do not close this tab.",
                    assignment_id=self.assignment_id,
                    attempt=attempt,
                    error=str(e),
                )
                await asyncio.sleep(self.retry_interval)
            except ExamApiError as e:
                logger.error("Submit rejected", assignment_id=self.assignment_id, status=e.status_code, detail=e.detail)
                raise

        await self.cache.clear_answers_for(self.assignment_id)
        await self.cache.set_attempt_status(self.assignment_id, ATTEMPT_SUBMITTED, auto)
        self.result = result
        logger.info("Exam submitted", assignment_id=self.assignment_id, score=result.get("score"), auto_submitted=auto)
        return result
