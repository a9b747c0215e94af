import asyncio
from typing import Dict
from core.logger import logger

class TaskManager:
    """One countdown task per assignment, so a reloaded runner replaces the old timer."""
    _instance = None
    _tasks: Dict[int, asyncio.Task] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TaskManager, cls).__new__(cls)
        return cls._instance

    def register_task(self, assignment_id: int, task: asyncio.Task):
        """Register a new task for an assignment, cancelling any existing one."""
        self.cancel_task(assignment_id)
        self._tasks[assignment_id] = task
        logger.debug("Registered countdown task", assignment_id=assignment_id)

        # Add callback to remove from dict when done
        task.add_done_callback(lambda t: self._cleanup_task(assignment_id, t))

    def cancel_task(self, assignment_id: int):
        """Cancel the active task for an assignment, unless the caller is that task."""
        task = self._tasks.pop(assignment_id, None)
        if task is None:
            return
        if not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("Cancelled countdown task", assignment_id=assignment_id)

    def has_task(self, assignment_id: int) -> bool:
        task = self._tasks.get(assignment_id)
        return task is not None and not task.done()

    def _cleanup_task(self, assignment_id: int, task: asyncio.Task):
        """Remove task from dict if it's still the registered one."""
        if self._tasks.get(assignment_id) is task:
            del self._tasks[assignment_id]

task_manager = TaskManager()
