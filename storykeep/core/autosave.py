"""
Periodic autosave of local drafts.
A small cooperative scheduler of named tasks; each task runs when its interval has elapsed.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional

from .config import get_autosave_interval, is_autosave_enabled, validate_config
from .drafts import DraftStore, Record
from ..util.logging import logger


class AutoSaveScheduler:
    """Runs registered tasks on their intervals. Task failures are isolated and logged."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, tick_sec: float = 0.1,
                 enabled: Optional[bool] = None):
        self.clock = clock
        self.tick_sec = tick_sec
        self.enabled = is_autosave_enabled() if enabled is None else enabled
        self.tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    def register_task(self, name: str, interval_sec: float, func: Callable[[], None]):
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier; registering an existing name replaces it
            interval_sec: How often to run this task in seconds
            func: Function to call (should be fast and not block)
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec <= 0:
            raise ValueError(f"Interval must be > 0 seconds: {interval_sec}")

        self.tasks[name] = {
            "func": func,
            "interval": interval_sec,
            "last_run": None
        }
        logger.debug(f"Registered autosave task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str):
        """Remove a task. Unknown names are ignored."""
        if self.tasks.pop(name, None) is not None:
            logger.debug(f"Unregistered autosave task '{name}'")

    def list_tasks(self) -> List[str]:
        return list(self.tasks.keys())

    def should_run_task(self, name: str, task_info: Dict) -> bool:
        """Check if a task should run this cycle."""
        if task_info["last_run"] is None:
            return True

        elapsed = self.clock() - task_info["last_run"]
        return elapsed >= task_info["interval"]

    def run_task(self, name: str, task_info: Dict):
        """Execute a task and record timing. Failures are re-raised as RuntimeError."""
        start_time = self.clock()

        try:
            task_info["func"]()
        except Exception as e:
            end_time = self.clock()
            task_info["last_run"] = end_time
            logger.log_autosave_task(name, start_time, end_time, "failed", {"error": str(e)[:100]})
            raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e

        end_time = self.clock()
        task_info["last_run"] = end_time
        logger.log_autosave_task(name, start_time, end_time)

    def run_due_tasks(self) -> List[str]:
        """Run every task that is due. Returns the names of tasks that ran successfully."""
        ran = []
        for name, task_info in list(self.tasks.items()):
            if not self.should_run_task(name, task_info):
                continue
            try:
                self.run_task(name, task_info)
                ran.append(name)
            except RuntimeError:
                # Already logged by run_task; keep the other tasks going
                continue
        return ran

    async def run(self):
        """Run the scheduling loop until stop() is called."""
        if not self.enabled:
            logger.info("Autosave disabled (AUTOSAVE_ENABLED=false). Skipping start.")
            return

        if self.running:
            raise RuntimeError("Autosave scheduler already running")

        issues = validate_config()
        if issues:
            raise ValueError(f"Autosave configuration invalid: {issues}")

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Starting autosave loop with tasks: {self.list_tasks()}")

        try:
            while not self._stop_event.is_set():
                self.run_due_tasks()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_sec)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info("Autosave loop stopped")

    def stop(self):
        """Stop the scheduling loop."""
        if not self.running:
            logger.info("Autosave scheduler not running")
            return

        if self._stop_event is not None:
            self._stop_event.set()

    def get_status(self) -> Dict:
        """Return current scheduler status for monitoring."""
        if not self.enabled:
            return {"status": "disabled", "reason": "AUTOSAVE_ENABLED=false"}

        return {
            "status": "running" if self.running else "stopped",
            "tasks": {
                name: {
                    "interval_sec": info["interval"],
                    "last_run": info["last_run"],
                    "next_run": info["last_run"] + info["interval"] if info["last_run"] is not None else None
                }
                for name, info in self.tasks.items()
            }
        }


def register_draft_autosave(scheduler: AutoSaveScheduler, draft_store: DraftStore,
                            get_record: Optional[Callable[[], Optional[Record]]] = None,
                            interval_sec: Optional[float] = None) -> str:
    """
    Re-save a draft on every tick. get_record supplies the current edit; by default the
    draft store's in-memory draft is re-saved, which refreshes its lastSaved.
    Ticks with nothing to save are skipped.
    """
    name = f"autosave:{draft_store.key}"

    def tick():
        record = get_record() if get_record is not None else draft_store.local_draft
        if record is None:
            return
        if draft_store.save_local(record) is None:
            raise RuntimeError(f"Autosave of {draft_store.key} failed")

    scheduler.register_task(name, interval_sec or get_autosave_interval(), tick)
    return name
