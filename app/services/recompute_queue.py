"""
StudyBuddy Matching — Background recompute queue for group aggregates.

Membership changes and quiz submissions never recompute group aggregates
inline.  They enqueue a ``group_id`` here and return immediately; a small
pool of asyncio worker tasks drains the queue, each job running a full
replacement recompute in its own database session.

Pool model:
  * ``core_workers`` tasks are started with the queue.
  * At most ``capacity`` jobs wait in the queue.  When it is full, an extra
    worker is spawned that runs the new job directly (up to
    ``max_workers``); beyond that the trigger is dropped.
  * Extra workers keep draining the queue and retire after
    ``keep_alive`` seconds without work.
  * A ``group_id`` already waiting in the queue is not enqueued twice.

Dropped triggers and failed jobs are logged and never raised to the caller:
recomputes are idempotent and the next relevant change triggers again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger("studybuddy.recompute_queue")

_PENDING_KEY = "studybuddy.pending_group_recomputes"

RecomputeJob = Callable[[int, AsyncSession], Awaitable[Any]]


class RecomputeQueue:
    """Bounded fire-and-forget queue of group aggregate recomputes."""

    def __init__(
        self,
        job: RecomputeJob,
        session_factory: async_sessionmaker[AsyncSession],
        core_workers: int = 2,
        max_workers: int = 5,
        capacity: int = 100,
        keep_alive: float = 60.0,
    ) -> None:
        """
        Parameters
        ----------
        job:
            Coroutine function ``(group_id, db_session)`` performing the
            recompute, normally ``GroupProfileService.recompute_group_profile``.
        session_factory:
            Factory for the per-job database session.  Each job commits on
            success and rolls back on failure.
        core_workers, max_workers, capacity, keep_alive:
            Pool sizing; see the module docstring.
        """
        if max_workers < core_workers:
            raise ValueError("max_workers must be >= core_workers")

        self._job = job
        self._session_factory = session_factory
        self.core_workers = core_workers
        self.max_workers = max_workers
        self.capacity = capacity
        self.keep_alive = keep_alive

        self._queue: asyncio.Queue[int] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._workers: list[asyncio.Task] = []
        self._spawned = 0
        self._queued: set[int] = set()
        # Jobs handed straight to a new extra worker, outside the queue.
        self._direct_jobs = 0
        self._direct_idle: asyncio.Event | None = None
        self._running = False
        # Per-queue key into Session.info for ids awaiting commit.
        self._pending_key = (_PENDING_KEY, id(self))

        self.completed = 0
        self.failed = 0
        self.dropped = 0

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Create the queue and the core worker tasks."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.capacity)
        self._direct_idle = asyncio.Event()
        self._direct_idle.set()
        self._running = True
        for _ in range(self.core_workers):
            self._spawn_worker()

        logger.info(
            "recompute_queue_started",
            core_workers=self.core_workers,
            max_workers=self.max_workers,
            capacity=self.capacity,
        )

    async def stop(self, drain_timeout: float = 60.0) -> None:
        """Wait for pending jobs (bounded by *drain_timeout*), then cancel
        the workers."""
        if not self._running or self._queue is None:
            return

        try:
            await asyncio.wait_for(self.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "recompute_queue_drain_timeout",
                remaining=self._queue.qsize() + self._direct_jobs,
                timeout=drain_timeout,
            )

        self._running = False
        workers = list(self._workers)
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queued.clear()

        logger.info(
            "recompute_queue_stopped",
            completed=self.completed,
            failed=self.failed,
            dropped=self.dropped,
        )

    async def join(self) -> None:
        """Block until every job accepted so far has been processed."""
        if self._queue is None or self._direct_idle is None:
            return
        await self._queue.join()
        await self._direct_idle.wait()

    # ── Scheduling ────────────────────────────────────────────────────────

    def schedule(self, group_id: int) -> bool:
        """Enqueue a recompute for *group_id* without waiting for it.

        Returns ``True`` if the job is queued (or already waiting), ``False``
        if it was dropped.
        """
        if not self._running or self._queue is None:
            logger.warning("recompute_queue_not_running", group_id=group_id)
            self.dropped += 1
            return False

        if group_id in self._queued:
            logger.debug("recompute_coalesced", group_id=group_id)
            return True

        try:
            self._queue.put_nowait(group_id)
        except asyncio.QueueFull:
            # Saturated: a new extra worker takes this job, or it is dropped.
            if len(self._workers) >= self.max_workers:
                self.dropped += 1
                logger.warning(
                    "recompute_dropped_queue_full",
                    group_id=group_id,
                    capacity=self.capacity,
                )
                return False
            self._spawn_worker(first_job=group_id)
            logger.info(
                "recompute_worker_added",
                group_id=group_id,
                workers=len(self._workers),
            )
            return True

        self._queued.add(group_id)
        logger.debug("recompute_scheduled", group_id=group_id, queued=self._queue.qsize())
        return True

    def schedule_many(self, group_ids: Iterable[int]) -> None:
        for group_id in sorted(set(group_ids)):
            self.schedule(group_id)

    def schedule_on_commit(self, db_session: AsyncSession, group_ids: Iterable[int]) -> None:
        """Enqueue recomputes once *db_session* commits.

        Workers use their own sessions, so scheduling before the triggering
        transaction commits would let them read the previous state.
        """
        group_ids = set(group_ids)
        if not group_ids:
            return

        sync_session = db_session.sync_session
        if not event.contains(sync_session, "after_commit", self._on_commit):
            event.listen(sync_session, "after_commit", self._on_commit)
            event.listen(sync_session, "after_rollback", self._on_rollback)
        sync_session.info.setdefault(self._pending_key, set()).update(group_ids)

    def _on_commit(self, sync_session) -> None:
        group_ids = sync_session.info.pop(self._pending_key, None)
        if group_ids:
            self.schedule_many(group_ids)

    def _on_rollback(self, sync_session) -> None:
        group_ids = sync_session.info.pop(self._pending_key, None)
        if group_ids:
            logger.debug("recompute_discarded_on_rollback", group_ids=sorted(group_ids))

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    def stats(self) -> dict:
        return {
            "running": self._running,
            "workers": len(self._workers),
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "capacity": self.capacity,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
        }

    # ── Workers ───────────────────────────────────────────────────────────

    def _spawn_worker(self, first_job: int | None = None) -> None:
        """Start a worker task.  Workers spawned with a *first_job* are
        extra workers: they run that job, then drain the queue until idle
        for ``keep_alive`` seconds."""
        if self._loop is None or self._queue is None or self._direct_idle is None:
            raise RuntimeError("RecomputeQueue.start() must be awaited first")

        index = self._spawned
        self._spawned += 1
        if first_job is not None:
            self._direct_jobs += 1
            self._direct_idle.clear()

        task = self._loop.create_task(
            self._worker(index, first_job), name=f"group-profile-calc-{index}"
        )
        self._workers.append(task)

    async def _worker(self, index: int, first_job: int | None = None) -> None:
        queue = self._queue
        if queue is None:
            raise RuntimeError("RecomputeQueue.start() must be awaited first")
        log = logger.bind(worker=index)
        extra = first_job is not None

        try:
            if first_job is not None:
                try:
                    await self._process(first_job, log)
                finally:
                    self._direct_jobs -= 1
                    if self._direct_jobs == 0 and self._direct_idle is not None:
                        self._direct_idle.set()

            while True:
                if extra:
                    try:
                        group_id = await asyncio.wait_for(queue.get(), timeout=self.keep_alive)
                    except asyncio.TimeoutError:
                        log.info("recompute_worker_retired")
                        return
                else:
                    group_id = await queue.get()

                self._queued.discard(group_id)
                try:
                    await self._process(group_id, log)
                finally:
                    queue.task_done()
        finally:
            task = asyncio.current_task()
            if task in self._workers:
                self._workers.remove(task)

    async def _process(self, group_id: int, log) -> None:
        try:
            await self._run_job(group_id)
            self.completed += 1
        except Exception:
            self.failed += 1
            log.exception("recompute_failed", group_id=group_id)

    async def _run_job(self, group_id: int) -> None:
        async with self._session_factory() as session:
            try:
                await self._job(group_id, session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise


# ──────────────────────────────────────────────────────────────────────────────
# Process-wide instance (started and stopped by the application lifespan)
# ──────────────────────────────────────────────────────────────────────────────

_recompute_queue: RecomputeQueue | None = None


def set_recompute_queue(queue: RecomputeQueue | None) -> None:
    global _recompute_queue
    _recompute_queue = queue


def get_recompute_queue() -> RecomputeQueue | None:
    """Return the shared queue, or ``None`` outside the application
    lifespan."""
    return _recompute_queue
