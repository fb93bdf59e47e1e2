"""
Multi-threaded vector calculation manager for parallel embedding computation.

Embedding requests run on a thread pool while chunk bookkeeping and storage
writes stay on the calling thread. The number of requests actually in flight
is governed by an ``AdaptiveConcurrencyLimiter`` so the pool backs off when
the provider throttles or slows down.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple

from .adaptive_limiter import AdaptiveConcurrencyLimiter
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class ThrottlingStatus(Enum):
    """Throttling status indicators for display."""

    FULL_SPEED = "full_speed"
    SERVER_THROTTLED = "server_throttled"


@dataclass(frozen=True)
class VectorTask:
    """Task for vector calculation in worker thread."""

    task_id: str
    chunk_texts: Tuple[str, ...]
    metadata: Dict[str, Any]
    created_at: float


@dataclass(frozen=True)
class VectorResult:
    """Result from vector calculation."""

    task_id: str
    embeddings: Tuple[Tuple[float, ...], ...]
    metadata: Dict[str, Any]
    processing_time: float
    error: Optional[str] = None


@dataclass
class VectorCalculationStats:
    """Statistics for vector calculation performance."""

    total_tasks_submitted: int = 0
    total_tasks_completed: int = 0
    total_tasks_failed: int = 0
    total_processing_time: float = 0.0
    total_embeddings_processed: int = 0
    server_throttle_count: int = 0
    throttling_status: ThrottlingStatus = ThrottlingStatus.FULL_SPEED
    concurrency_limit: int = 0
    recent_throttles: List[float] = field(default_factory=list)


class VectorCalculationManager:
    """Manages parallel vector calculation using thread pool."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        limiter: AdaptiveConcurrencyLimiter,
        cancellation_event: Optional[threading.Event] = None,
    ):
        """
        Initialize vector calculation manager.

        Args:
            embedding_provider: Provider for generating embeddings
            limiter: Window that bounds concurrent provider calls
            cancellation_event: Run-wide event observed but never set here;
                once set, pending tasks are skipped
        """
        self.embedding_provider = embedding_provider
        self.limiter = limiter
        self.thread_count = limiter.max_limit

        self.executor: Optional[ThreadPoolExecutor] = None
        self.is_running = False
        self.cancellation_event = cancellation_event or threading.Event()
        self._stop_event = threading.Event()

        self.stats = VectorCalculationStats()
        self.stats_lock = threading.Lock()

        self.task_counter = 0
        self.task_counter_lock = threading.Lock()

        self.server_throttle_window_seconds = 60.0

    def start(self) -> None:
        """Start the thread pool."""
        if self.is_running:
            return

        self.executor = ThreadPoolExecutor(
            max_workers=self.thread_count, thread_name_prefix="VectorCalc"
        )
        self.is_running = True
        logger.debug(
            f"Started vector calculation thread pool with {self.thread_count} workers"
        )

    def request_cancellation(self) -> None:
        """Stop this manager's pending and new calculations.

        Only the manager's own stop flag is set; the run-wide event it
        observes belongs to the caller.
        """
        self._stop_event.set()
        logger.info("Vector calculation cancellation requested")

    def is_cancelled(self) -> bool:
        return self._stop_event.is_set() or self.cancellation_event.is_set()

    def submit_batch_task(
        self, chunk_texts: List[str], metadata: Dict[str, Any]
    ) -> "Future[VectorResult]":
        """
        Submit a batch of text chunks for vector calculation.

        Args:
            chunk_texts: List of text chunks to calculate embeddings for
            metadata: Associated metadata for the batch

        Returns:
            Future that will contain VectorResult when complete
        """
        if not self.is_running:
            self.start()

        with self.task_counter_lock:
            self.task_counter += 1
            task_id = f"task_{self.task_counter}"

        task = VectorTask(
            task_id=task_id,
            chunk_texts=tuple(chunk_texts),
            metadata=dict(metadata),
            created_at=time.time(),
        )

        if self.is_cancelled():
            cancelled: "Future[VectorResult]" = Future()
            cancelled.set_result(
                VectorResult(task_id, (), task.metadata, 0.0, error="Cancelled")
            )
            return cancelled

        if not self.executor:
            raise RuntimeError("Thread pool not started")
        future = self.executor.submit(self._calculate_vector, task)

        with self.stats_lock:
            self.stats.total_tasks_submitted += 1

        return future

    def _calculate_vector(self, task: VectorTask) -> VectorResult:
        """Calculate embeddings for one task (runs in worker thread)."""
        start_time = time.time()

        if self.is_cancelled():
            return VectorResult(task.task_id, (), task.metadata, 0.0, error="Cancelled")

        if not task.chunk_texts:
            return VectorResult(task.task_id, (), task.metadata, 0.0)

        try:
            with self.limiter.slot():
                embeddings_list = self.embedding_provider.get_embeddings_batch(
                    list(task.chunk_texts)
                )
        except Exception as e:
            processing_time = time.time() - start_time
            if self._is_server_throttling_error(e):
                self.record_server_throttle()

            with self.stats_lock:
                self.stats.total_tasks_failed += 1
                self.stats.total_tasks_completed += 1

            logger.error(f"Vector calculation failed for task {task.task_id}: {e}")
            return VectorResult(
                task.task_id, (), task.metadata, processing_time, error=str(e)
            )

        processing_time = time.time() - start_time
        embeddings = tuple(tuple(emb) for emb in embeddings_list)

        with self.stats_lock:
            self.stats.total_tasks_completed += 1
            self.stats.total_embeddings_processed += len(embeddings)
            self.stats.total_processing_time += processing_time

        return VectorResult(task.task_id, embeddings, task.metadata, processing_time)

    def get_stats(self) -> VectorCalculationStats:
        """Get a copy of current performance statistics."""
        with self.stats_lock:
            self._update_throttling_status()
            return VectorCalculationStats(
                total_tasks_submitted=self.stats.total_tasks_submitted,
                total_tasks_completed=self.stats.total_tasks_completed,
                total_tasks_failed=self.stats.total_tasks_failed,
                total_processing_time=self.stats.total_processing_time,
                total_embeddings_processed=self.stats.total_embeddings_processed,
                server_throttle_count=self.stats.server_throttle_count,
                throttling_status=self.stats.throttling_status,
                concurrency_limit=self.limiter.limit,
            )

    def record_server_throttle(self) -> None:
        """Record a server throttling event (429, API slowness, etc.)."""
        current_time = time.time()
        with self.stats_lock:
            self.stats.recent_throttles.append(current_time)
            self.stats.server_throttle_count += 1
            cutoff_time = current_time - self.server_throttle_window_seconds
            self.stats.recent_throttles = [
                t for t in self.stats.recent_throttles if t >= cutoff_time
            ]

    def _update_throttling_status(self) -> None:
        # 3+ server throttles in the last minute
        cutoff_time = time.time() - self.server_throttle_window_seconds
        self.stats.recent_throttles = [
            t for t in self.stats.recent_throttles if t >= cutoff_time
        ]
        if len(self.stats.recent_throttles) >= 3:
            self.stats.throttling_status = ThrottlingStatus.SERVER_THROTTLED
        else:
            self.stats.throttling_status = ThrottlingStatus.FULL_SPEED

    def _is_server_throttling_error(self, exception: Exception) -> bool:
        """Check if an exception indicates server-side throttling."""
        error_msg = str(exception).lower()
        throttling_indicators = [
            "429",
            "rate limit",
            "rate_limit",
            "too many requests",
            "quota exceeded",
            "throttl",
            "timeout",
            "server overload",
        ]
        return any(indicator in error_msg for indicator in throttling_indicators)

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the thread pool."""
        if not self.is_running or not self.executor:
            return

        self.is_running = False
        self.executor.shutdown(wait=wait, cancel_futures=True)
        self.executor = None
        logger.debug("Vector calculation thread pool shut down")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
