import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from .. import config
from ..services import progress
from ..services.progress import ProgressBroadcaster
from .filesystem import MediaDescriptor
from .keys import ThumbnailVariant

logger = logging.getLogger(__name__)


class JobPriority(Enum):
    """Dispatch lane of a generation job"""
    VIEWPORT = "viewport"
    BACKGROUND = "background"


class JobStatus(Enum):
    """Status of a generation job"""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class SchedulerStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(eq=False)
class GenerationJob:
    """Represents one pending thumbnail for one media file"""
    descriptor: MediaDescriptor
    priority: JobPriority = JobPriority.BACKGROUND
    status: JobStatus = JobStatus.QUEUED
    error: Optional[str] = None

    @property
    def relative_path(self) -> str:
        return self.descriptor.relative_path

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.FAILED)


@dataclass
class SchedulerState:
    """Counters for the current generation run"""
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    is_paused: bool = False
    current_file: Optional[str] = None
    is_generating: bool = False

    @property
    def succeeded_jobs(self) -> int:
        return self.completed_jobs - self.failed_jobs

    @property
    def percent(self) -> int:
        if self.total_jobs == 0:
            return 0
        return round(self.completed_jobs * 100 / self.total_jobs)

    def to_dict(self) -> dict[str, Any]:
        return {
            'total': self.total_jobs,
            'completed': self.completed_jobs,
            'failed': self.failed_jobs,
            'currentFile': self.current_file,
            'progress': self.percent,
            'isGenerating': self.is_generating,
            'isPaused': self.is_paused,
        }


def batch_size_for(total: int) -> int:
    """Jobs dispatched together, growing with the size of the run."""
    for limit, size in config.BATCH_TIERS:
        if total <= limit:
            return size
    return config.MAX_BATCH_SIZE


def batch_delay_for(total: int) -> float:
    if total > config.LARGE_GALLERY_THRESHOLD:
        return config.BATCH_DELAY_LARGE
    return config.BATCH_DELAY_DEFAULT


def progress_step_for(total: int) -> int:
    return max(config.PROGRESS_MIN_STEP, total // config.PROGRESS_DIVISOR)


class GenerationScheduler:
    """
    Turns media descriptors into thumbnails in prioritized batches.

    Two FIFO lanes: viewport jobs always dispatch before background jobs.
    A batch runs its jobs concurrently (codec work in worker threads) and the
    next batch is dispatched only after the whole batch has settled. Pausing
    only stops new batches from being dispatched.
    """

    def __init__(
        self,
        store,
        broadcaster: ProgressBroadcaster,
        on_thumbnail_ready: Optional[Callable[[MediaDescriptor], None]] = None
    ):
        """
        Args:
            store: ThumbnailStore (or anything with exists/generate/url_for)
            broadcaster: Where progress events are published
            on_thumbnail_ready: Called with the descriptor once its full thumbnail exists
        """
        self.store = store
        self.broadcaster = broadcaster
        self.on_thumbnail_ready = on_thumbnail_ready

        self.state = SchedulerState()
        # Relative paths in the order their jobs were dispatched
        self.dispatch_order: list[str] = []

        self._jobs: dict[str, GenerationJob] = {}
        self._viewport: deque[GenerationJob] = deque()
        self._background: deque[GenerationJob] = deque()
        self._resume = asyncio.Event()
        self._resume.set()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_idle(self) -> bool:
        return self._task is None or self._task.done()

    @property
    def status(self) -> SchedulerStatus:
        if self.is_idle:
            return SchedulerStatus.IDLE
        if self.state.is_paused:
            return SchedulerStatus.PAUSED
        return SchedulerStatus.RUNNING

    def job(self, relative_path: str) -> Optional[GenerationJob]:
        return self._jobs.get(relative_path)

    def queued_paths(self) -> list[str]:
        """Relative paths still waiting, in the order they will be dispatched."""
        return [job.relative_path for job in (*self._viewport, *self._background)]

    def enqueue(self, descriptors: Iterable[MediaDescriptor]) -> int:
        """
        Queue background jobs. Must be called from the event loop.

        Paths that already have a queued or running job are skipped.

        Returns:
            Number of jobs added
        """
        if self.is_idle:
            # Fresh run: counters describe only this run
            self._jobs.clear()
            self.dispatch_order = []
            self.state = SchedulerState(is_paused=self.state.is_paused)

        added = 0
        for descriptor in descriptors:
            existing = self._jobs.get(descriptor.relative_path)
            if existing is not None and not existing.is_terminal:
                continue

            job = GenerationJob(descriptor=descriptor)
            self._jobs[job.relative_path] = job
            self._background.append(job)
            self.state.total_jobs += 1
            added += 1

        if added and self.is_idle:
            self._task = asyncio.create_task(self._run())
        if added:
            logger.debug(f"Queued {added} thumbnail jobs ({self.state.total_jobs} in run)")
        return added

    def report_viewport(self, relative_paths: Iterable[str]) -> int:
        """
        Move queued jobs for the given paths to the front of the viewport lane,
        keeping the reported order. Running or finished jobs and unknown paths
        are ignored.

        Returns:
            Number of jobs promoted
        """
        promoted: list[GenerationJob] = []
        for relative_path in relative_paths:
            job = self._jobs.get(relative_path)
            if job is None or job.status is not JobStatus.QUEUED or job in promoted:
                continue
            promoted.append(job)

        for job in promoted:
            lane = self._viewport if job.priority is JobPriority.VIEWPORT else self._background
            lane.remove(job)
            job.priority = JobPriority.VIEWPORT

        self._viewport.extendleft(reversed(promoted))
        return len(promoted)

    def toggle_pause(self) -> bool:
        self.state.is_paused = not self.state.is_paused
        if self.state.is_paused:
            self._resume.clear()
        else:
            self._resume.set()

        logger.info(f"Thumbnail generation {'paused' if self.state.is_paused else 'resumed'}")
        self.broadcaster.publish(progress.paused(self.state.is_paused))
        return self.state.is_paused

    def reset(self) -> None:
        """Abandon all queued work and cancel the current run. Pause state is kept."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        self._viewport.clear()
        self._background.clear()
        self._jobs.clear()
        self.dispatch_order = []
        self.state = SchedulerState(is_paused=self.state.is_paused)

    async def stop(self) -> None:
        """Reset and wait for the cancelled run to unwind."""
        task = self._task
        self.reset()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no run is in progress."""
        while not self.is_idle:
            await asyncio.wait({self._task})

    def _take_batch(self) -> list[GenerationJob]:
        size = batch_size_for(self.state.total_jobs)
        batch = []
        while len(batch) < size and (self._viewport or self._background):
            lane = self._viewport if self._viewport else self._background
            batch.append(lane.popleft())
        return batch

    async def _run(self) -> None:
        """
        Main loop: dispatch batches until both lanes are empty.
        """
        state = self.state
        state.is_generating = True
        logger.info(f"Thumbnail generation started: {state.total_jobs} jobs")

        while self._viewport or self._background:
            await self._resume.wait()

            batch = self._take_batch()
            if not batch:
                break

            for job in batch:
                job.status = JobStatus.RUNNING
                self.dispatch_order.append(job.relative_path)
            state.current_file = batch[0].descriptor.name

            await asyncio.gather(*(self._process(job, state) for job in batch))

            if self._viewport or self._background:
                await asyncio.sleep(batch_delay_for(state.total_jobs))

        state.is_generating = False
        state.current_file = None
        logger.info(
            f"Thumbnail generation finished: {state.succeeded_jobs} succeeded, "
            f"{state.failed_jobs} failed, {state.total_jobs} total"
        )
        self.broadcaster.publish(progress.global_progress(state.to_dict()))

    async def _process(self, job: GenerationJob, state: SchedulerState) -> None:
        """
        Produce the thumbnails for one job and record the outcome.

        Args:
            job: Job to process
            state: Counters of the run that dispatched the job
        """
        descriptor = job.descriptor
        relative_path = job.relative_path

        if job.priority is JobPriority.VIEWPORT:
            try:
                if not self.store.exists(descriptor, ThumbnailVariant.TINY):
                    await asyncio.to_thread(self.store.generate, descriptor, ThumbnailVariant.TINY)
                self.broadcaster.publish(progress.tiny_preview_ready(
                    relative_path, self.store.url_for(relative_path, ThumbnailVariant.TINY)
                ))
            except Exception as e:
                logger.warning(f"Tiny preview failed for {relative_path}: {e}")

        try:
            if not self.store.exists(descriptor, ThumbnailVariant.FULL):
                await asyncio.to_thread(self.store.generate, descriptor, ThumbnailVariant.FULL)

        except Exception as e:
            logger.error(f"Thumbnail generation failed for {relative_path}: {e}")
            job.status = JobStatus.FAILED
            job.error = str(e)
            state.failed_jobs += 1
            state.completed_jobs += 1

        else:
            job.status = JobStatus.DONE
            state.completed_jobs += 1
            self.broadcaster.publish(progress.thumbnail_ready(
                relative_path, self.store.url_for(relative_path, ThumbnailVariant.FULL)
            ))
            if self.on_thumbnail_ready is not None:
                try:
                    self.on_thumbnail_ready(descriptor)
                except Exception as e:
                    logger.error(f"Thumbnail ready callback failed for {relative_path}: {e}")

        step = progress_step_for(state.total_jobs)
        if state is self.state and state.completed_jobs % step == 0 and state.completed_jobs < state.total_jobs:
            self.broadcaster.publish(progress.global_progress(state.to_dict()))
