"""
Worker thread pool draining the crawl frontier.
"""

import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from directory_crawler.utils.logging import get_logger
from .frontier import Frontier
from .models import RequestTask, TaskResult, WorkerState


logger = get_logger(__name__)


class WorkerThread(threading.Thread):
    """Takes one task at a time from the frontier and runs it to completion."""

    def __init__(
        self,
        worker_id: str,
        frontier: Frontier,
        task_processor: Callable[[RequestTask, str], TaskResult],
        shutdown_event: threading.Event,
        result_callback: Optional[Callable[[TaskResult], None]] = None,
        queue_timeout: float = 0.5
    ):
        """
        Initialize worker thread.

        Args:
            worker_id: Unique identifier for this worker
            frontier: Work queue to drain
            task_processor: Function processing a single task
            shutdown_event: Event signalling shutdown
            result_callback: Optional callback receiving every task result
            queue_timeout: Seconds to wait for a ready task before re-checking shutdown
        """
        super().__init__(name=f"CrawlerWorker-{worker_id}", daemon=True)

        self.worker_id = worker_id
        self.frontier = frontier
        self.task_processor = task_processor
        self.shutdown_event = shutdown_event
        self.result_callback = result_callback
        self.queue_timeout = queue_timeout

        self.state = WorkerState.STARTING
        self.tasks_completed = 0
        self.tasks_failed = 0
        self.last_activity = datetime.now()

    def run(self) -> None:
        """Main worker loop."""
        logger.debug(f"Worker {self.worker_id} starting")
        self.state = WorkerState.IDLE

        try:
            while not self.shutdown_event.is_set():
                task = self.frontier.get(timeout=self.queue_timeout)
                if task is None:
                    continue
                try:
                    self._process_task(task)
                finally:
                    self.frontier.task_done()
        finally:
            self.state = WorkerState.STOPPED
            logger.debug(f"Worker {self.worker_id} stopped")

    def _process_task(self, task: RequestTask) -> None:
        self.state = WorkerState.WORKING
        self.last_activity = datetime.now()
        start_time = datetime.now()

        try:
            result = self.task_processor(task, self.worker_id)
        except Exception as e:
            logger.error(f"Worker {self.worker_id} task {task.unique_key} crashed: {e}", exc_info=True)
            result = TaskResult(
                task=task,
                worker_id=self.worker_id,
                success=False,
                error_message=f"Task processing error: {e}"
            )

        result.execution_time = (datetime.now() - start_time).total_seconds()
        if result.success:
            self.tasks_completed += 1
        else:
            self.tasks_failed += 1

        if self.result_callback:
            self.result_callback(result)

        self.state = WorkerState.IDLE
        self.last_activity = datetime.now()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "state": self.state.value,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "alive": self.is_alive(),
        }


class WorkerPool:
    """Bounded set of worker threads sharing one frontier."""

    def __init__(self,
                 frontier: Frontier,
                 task_processor: Callable[[RequestTask, str], TaskResult],
                 max_workers: int,
                 result_callback: Optional[Callable[[TaskResult], None]] = None):
        self.frontier = frontier
        self.task_processor = task_processor
        self.max_workers = max_workers
        self.result_callback = result_callback
        self.shutdown_event = threading.Event()
        self.workers: List[WorkerThread] = []

    def start(self) -> None:
        if self.workers:
            return
        for index in range(self.max_workers):
            worker = WorkerThread(
                worker_id=f"worker-{index + 1}",
                frontier=self.frontier,
                task_processor=self.task_processor,
                shutdown_event=self.shutdown_event,
                result_callback=self.result_callback
            )
            worker.start()
            self.workers.append(worker)
        logger.info(f"Started {len(self.workers)} workers")

    def shutdown(self, timeout: float = 30.0) -> None:
        """Signal workers to stop after their current task and join them."""
        self.shutdown_event.set()
        for worker in self.workers:
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.warning(f"Worker {worker.worker_id} did not stop within {timeout}s")
        logger.info("Worker pool shut down")

    def get_pool_stats(self) -> Dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "alive_workers": len([w for w in self.workers if w.is_alive()]),
            "workers": [w.get_stats() for w in self.workers],
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
