"""Notification channel and worker — post-commit side effects.

Award, reject and invitation calls commit their state change, publish jobs
onto the channel, and return. The worker drains the channel through the
Runner at bounded concurrency. A job that fails lands in the dead-letter
list, where it can be inspected and retried; it never reaches the caller
that published it.

Job kinds:
  - InvitationJob      → InvitationDelivery.deliver
  - AwardNoticeJob     → DecisionNoticeDelivery.deliver_award
  - RejectionNoticeJob → DecisionNoticeDelivery.deliver_rejection
  - RatingJob          → RatingService.recompute

Called by: services/award.py, services/invitations.py, main.py (lifespan)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from ..config import settings
from .runner import RunStats, run_bounded


@dataclass(frozen=True)
class InvitationJob:
    mapping_id: str
    kind: str = "invitation"


@dataclass(frozen=True)
class AwardNoticeJob:
    request_id: str
    participant_id: str
    kind: str = "award_notice"


@dataclass(frozen=True)
class RejectionNoticeJob:
    request_id: str
    participant_id: str
    auto: bool = False
    kind: str = "rejection_notice"


@dataclass(frozen=True)
class RatingJob:
    participant_id: str
    kind: str = "rating"


@dataclass
class DeadLetter:
    job: object
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationChannel:
    """In-process job queue between committing services and the worker."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def publish(self, job) -> None:
        self._queue.put_nowait(job)

    def publish_many(self, jobs) -> None:
        for job in jobs:
            self._queue.put_nowait(job)

    def drain(self) -> list:
        jobs = []
        while True:
            try:
                jobs.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return jobs

    async def wait(self):
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()


class NotificationWorker:
    def __init__(self, channel: NotificationChannel, *, invitations, notices, ratings,
                 concurrency: int | None = None, dead_letter_limit: int | None = None):
        self.channel = channel
        self.invitations = invitations
        self.notices = notices
        self.ratings = ratings
        self.concurrency = concurrency or settings.fanout_concurrency
        self.dead_letter_limit = dead_letter_limit or settings.dead_letter_limit
        self.dead_letters: list[DeadLetter] = []

    async def handle(self, job) -> None:
        if isinstance(job, InvitationJob):
            await self.invitations.deliver(job.mapping_id)
        elif isinstance(job, AwardNoticeJob):
            await self.notices.deliver_award(job.request_id, job.participant_id)
        elif isinstance(job, RejectionNoticeJob):
            await self.notices.deliver_rejection(job.request_id, job.participant_id, auto=job.auto)
        elif isinstance(job, RatingJob):
            await self.ratings.recompute(job.participant_id)
        else:
            raise ValueError(f"Unknown notification job: {job!r}")

    async def _handle_or_dead_letter(self, job) -> None:
        try:
            await self.handle(job)
        except Exception as e:
            self._dead_letter(job, str(e) or e.__class__.__name__)
            raise

    def _dead_letter(self, job, error: str) -> None:
        self.dead_letters.append(DeadLetter(job=job, error=error))
        overflow = len(self.dead_letters) - self.dead_letter_limit
        if overflow > 0:
            dropped = self.dead_letters[:overflow]
            del self.dead_letters[:overflow]
            for letter in dropped:
                logger.error("Dead-letter list full; dropping {!r}: {}", letter.job, letter.error)

    async def process(self, jobs: list) -> RunStats:
        if not jobs:
            return RunStats()
        stats = await run_bounded(jobs, self.concurrency, self._handle_or_dead_letter)
        logger.info(
            "Notifications processed | completed={} failed={} total={}",
            stats.completed, stats.failed, stats.total,
        )
        return stats

    async def process_pending(self) -> RunStats:
        """Drain and process whatever is queued right now."""
        return await self.process(self.channel.drain())

    async def retry_dead_letters(self) -> RunStats:
        letters, self.dead_letters = self.dead_letters, []
        if letters:
            logger.info("Retrying {} dead-lettered notification jobs", len(letters))
        return await self.process([d.job for d in letters])

    async def run(self) -> None:
        """Consume the channel forever. Cancel the task to stop."""
        logger.info("Notification worker started (concurrency={})", self.concurrency)
        while True:
            first = await self.channel.wait()
            try:
                await self.process([first] + self.channel.drain())
            except Exception as e:
                logger.error("Notification batch error: {}", e)
