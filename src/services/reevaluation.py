"""Re-evaluation trigger: turns catalog and profile mutations into sweeps.

Trigger rules
-------------
- **Scheme created or re-activated**: sweep every profile against that
  scheme, batched, with a completion deadline (default 24 hours).
- **Scheme criteria changed** (version bump whose diff touches
  eligibility): targeted sweep over the profiles previously scored
  against the scheme, or, when that set is unknown, the profiles whose
  last evaluation missed it by at most two criteria (default deadline
  1 hour).  Cosmetic edits only re-index.
- **Scheme deactivated**: removed from the vector index and the retrieval
  snapshot, interpretation cache dropped, no sweep.
- **Profile created or updated**: single-profile sweep over the catalog.

Sweeps run on background worker tasks fed from a deadline-ordered
priority queue.  Each sweep processes profiles in bounded batches through
the orchestrator's ``sweep`` lane, and checks for cancellation only
between batches so no profile is left half-evaluated.  Every scheme a
profile newly qualifies for is published as a
:class:`~src.models.events.NewlyEligible` event.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from src.models.enums import ChangeType, SweepKind
from src.models.events import NewlyEligible, ProfileChangeEvent, SchemeChangeEvent
from src.services.changelog import detect_criteria_changes
from src.services.matching.interfaces import SchemeFilter

if TYPE_CHECKING:
    from src.pipeline.orchestrator import MatchOrchestrator
    from src.services.matching.interfaces import ProfileStore, SchemeStore
    from src.services.notifications import NewlyEligibleStream, Subscription
    from src.services.scheme_search import SchemeSearchService

logger = structlog.get_logger(__name__)

_STOP_GRACE_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Jobs and reports
# ---------------------------------------------------------------------------


@dataclass(order=True)
class SweepJob:
    """A queued sweep; queue order is (deadline, submission sequence)."""

    deadline: datetime
    seq: int
    kind: SweepKind = field(compare=False)
    scheme_id: str | None = field(compare=False, default=None)
    # None means "every profile in the store".
    profile_ids: list[str] | None = field(compare=False, default=None)
    sweep_id: str = field(compare=False, default_factory=lambda: uuid4().hex)
    cancelled: bool = field(compare=False, default=False)

    @property
    def dedupe_key(self) -> str:
        if self.kind is SweepKind.PROFILE and self.profile_ids:
            return f"{self.kind.value}:{self.profile_ids[0]}"
        return f"{self.kind.value}:{self.scheme_id}"


@dataclass(slots=True)
class SweepReport:
    sweep_id: str
    kind: SweepKind
    scheme_id: str | None
    profiles_total: int = 0
    profiles_evaluated: int = 0
    profiles_skipped: int = 0
    batches: int = 0
    events_emitted: int = 0
    cancelled: bool = False
    missed_deadline: bool = False
    duration_seconds: float = 0.0


# ---------------------------------------------------------------------------
# ReevaluationTrigger
# ---------------------------------------------------------------------------


class ReevaluationTrigger:
    """Reacts to store change streams and runs throttled background sweeps.

    Parameters
    ----------
    orchestrator:
        Used for every re-match (``lane="sweep"``).  Its history and
        retriever snapshot are kept in step with catalog changes.
    schemes, profiles:
        Stores providing the change streams and current records.
    stream:
        Destination for :class:`NewlyEligible` events.
    search:
        Vector index adapter to re-index / de-index changed schemes.
    batch_size:
        Profiles per batch; cancellation is honoured between batches.
    workers:
        Number of concurrent sweep worker tasks.
    profile_concurrency:
        Profiles evaluated concurrently within one batch.
    """

    def __init__(
        self,
        orchestrator: MatchOrchestrator,
        schemes: SchemeStore,
        profiles: ProfileStore,
        stream: NewlyEligibleStream,
        *,
        search: SchemeSearchService | None = None,
        batch_size: int = 100,
        workers: int = 2,
        profile_concurrency: int = 4,
        new_scheme_deadline: timedelta = timedelta(hours=24),
        targeted_deadline: timedelta = timedelta(hours=1),
        report_history: int = 200,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._orchestrator = orchestrator
        self._schemes = schemes
        self._profiles = profiles
        self._stream = stream
        self._search = search
        self._batch_size = batch_size
        self._worker_count = max(1, workers)
        self._profile_slots = asyncio.Semaphore(max(1, profile_concurrency))
        self._new_scheme_deadline = new_scheme_deadline
        self._targeted_deadline = targeted_deadline

        self._queue: asyncio.PriorityQueue[SweepJob] = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._pending: dict[str, SweepJob] = {}
        self._active: dict[str, SweepJob] = {}
        self._reports: deque[SweepReport] = deque(maxlen=report_history)
        self._listeners: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._workers: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._subscriptions: list[Subscription] = []  # type: ignore[type-arg]
        self._handling = 0
        self._stopping = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._stopping

    @property
    def reports(self) -> list[SweepReport]:
        return list(self._reports)

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "queued": self._queue.qsize(),
            "active": len(self._active),
            "completed": len(self._reports),
            "events_published": self._stream.published_count,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to both stores and start the sweep workers."""
        if self._workers:
            logger.warning("reevaluation.already_running")
            return
        self._stopping = False
        scheme_sub = self._schemes.subscribe()
        profile_sub = self._profiles.subscribe()
        self._subscriptions = [scheme_sub, profile_sub]
        self._listeners = [
            asyncio.create_task(self._consume_schemes(scheme_sub), name="reevaluation-schemes"),
            asyncio.create_task(self._consume_profiles(profile_sub), name="reevaluation-profiles"),
        ]
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"reevaluation-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("reevaluation.started", workers=self._worker_count, batch_size=self._batch_size)

    async def stop(self) -> None:
        """Stop cooperatively: running sweeps finish their current batch."""
        logger.info("reevaluation.stopping", queued=self._queue.qsize(), active=len(self._active))
        self._stopping = True
        for job in list(self._active.values()) + list(self._pending.values()):
            job.cancelled = True

        for sub in self._subscriptions:
            sub.close()
        for task in self._listeners:
            task.cancel()
        await asyncio.gather(*self._listeners, return_exceptions=True)

        # Give in-flight sweeps until the end of their current batch.
        deadline = time.monotonic() + _STOP_GRACE_SECONDS
        while self._active and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        if self._active:
            logger.warning("reevaluation.stop_timeout", active=sorted(self._active))

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._listeners = []
        self._workers = []
        self._subscriptions = []
        logger.info("reevaluation.stopped")

    async def drain(self) -> None:
        """Wait until every queued sweep has been processed."""
        await self._queue.join()

    async def wait_idle(self, timeout: float = 10.0) -> None:
        """Wait until all change events are handled and all sweeps are done."""

        def _settled() -> bool:
            return self._handling == 0 and all(sub.pending == 0 for sub in self._subscriptions)

        async def _wait() -> None:
            while True:
                await asyncio.sleep(0)
                if not _settled():
                    await asyncio.sleep(0.01)
                    continue
                await self._queue.join()
                if _settled():
                    return

        await asyncio.wait_for(_wait(), timeout=timeout)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_scheme_change(self, event: SchemeChangeEvent) -> SweepJob | None:
        """Apply a catalog mutation and schedule the sweep it calls for."""
        scheme = event.current
        log = logger.bind(scheme_id=event.scheme_id, version=event.version, change=event.change_type.value)

        self._orchestrator.retriever.apply_change(event)
        if self._search is not None:
            await self._search.index_scheme(scheme)

        if event.change_type in (ChangeType.DEACTIVATED, ChangeType.DELETED) or not scheme.is_active:
            await self._orchestrator.interpreter.invalidate(event.scheme_id)
            self._orchestrator.history.forget_scheme(event.scheme_id)
            self._cancel_pending_for_scheme(event.scheme_id)
            log.info("reevaluation.scheme_deactivated")
            return None

        previous = event.previous
        if previous is None or not previous.is_active:
            if previous is not None:
                await self._orchestrator.interpreter.invalidate(event.scheme_id)
            job = self._new_job(SweepKind.NEW_SCHEME, self._new_scheme_deadline, scheme_id=event.scheme_id)
            log.info("reevaluation.scheme_activated", sweep_id=job.sweep_id)
            return self.schedule(job)

        await self._orchestrator.interpreter.invalidate(event.scheme_id)
        today = self._orchestrator.today()
        if not previous.is_open(today) and scheme.is_open(today):
            job = self._new_job(SweepKind.NEW_SCHEME, self._new_scheme_deadline, scheme_id=event.scheme_id)
            log.info("reevaluation.scheme_reopened", sweep_id=job.sweep_id, deadline=str(scheme.deadline))
            return self.schedule(job)

        changes = detect_criteria_changes(previous, scheme)
        if not changes:
            log.info("reevaluation.cosmetic_change")
            return None

        history = self._orchestrator.history
        targets = history.profiles_scored_for(event.scheme_id)
        source = "scored"
        if targets is None:
            targets = history.near_miss_profiles(event.scheme_id)
            source = "near_miss"
        if not targets:
            log.info("reevaluation.no_targets", fields=[c.field for c in changes])
            return None

        job = self._new_job(
            SweepKind.TARGETED,
            self._targeted_deadline,
            scheme_id=event.scheme_id,
            profile_ids=sorted(targets),
        )
        log.info(
            "reevaluation.criteria_changed",
            fields=[c.field for c in changes],
            targets=len(targets),
            target_source=source,
            sweep_id=job.sweep_id,
        )
        return self.schedule(job)

    async def handle_profile_change(self, event: ProfileChangeEvent) -> SweepJob | None:
        if event.change_type is ChangeType.DELETED or event.current is None:
            self._orchestrator.history.forget_profile(event.profile_id)
            return None
        job = self._new_job(SweepKind.PROFILE, self._targeted_deadline, profile_ids=[event.profile_id])
        return self.schedule(job)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _new_job(
        self,
        kind: SweepKind,
        within: timedelta,
        *,
        scheme_id: str | None = None,
        profile_ids: list[str] | None = None,
    ) -> SweepJob:
        return SweepJob(
            deadline=datetime.now(UTC) + within,
            seq=next(self._seq),
            kind=kind,
            scheme_id=scheme_id,
            profile_ids=profile_ids,
        )

    def schedule(self, job: SweepJob) -> SweepJob:
        """Queue *job*; a not-yet-started job with the same key is superseded."""
        key = job.dedupe_key
        superseded = self._pending.get(key)
        if superseded is not None:
            superseded.cancelled = True
            if job.profile_ids is not None and superseded.profile_ids is not None:
                job.profile_ids = sorted(set(job.profile_ids) | set(superseded.profile_ids))
            elif superseded.profile_ids is None:
                job.profile_ids = None
            job.deadline = min(job.deadline, superseded.deadline)
            logger.debug("reevaluation.superseded", old=superseded.sweep_id, new=job.sweep_id)
        self._pending[key] = job
        self._queue.put_nowait(job)
        return job

    def cancel(self, sweep_id: str) -> bool:
        """Request cancellation; takes effect at the next batch boundary."""
        for job in itertools.chain(self._pending.values(), self._active.values()):
            if job.sweep_id == sweep_id:
                job.cancelled = True
                return True
        return False

    def _cancel_pending_for_scheme(self, scheme_id: str) -> None:
        for job in itertools.chain(self._pending.values(), self._active.values()):
            if job.scheme_id == scheme_id:
                job.cancelled = True

    # ------------------------------------------------------------------
    # Sweep execution
    # ------------------------------------------------------------------

    async def run_sweep(self, job: SweepJob) -> SweepReport:
        """Execute *job* now, in batches, publishing newly-eligible events."""
        start = time.perf_counter()
        report = SweepReport(sweep_id=job.sweep_id, kind=job.kind, scheme_id=job.scheme_id)
        log = logger.bind(sweep_id=job.sweep_id, kind=job.kind.value, scheme_id=job.scheme_id)

        profile_ids = job.profile_ids if job.profile_ids is not None else await self._profiles.profile_ids()
        report.profiles_total = len(profile_ids)
        filters = SchemeFilter(scheme_ids=frozenset({job.scheme_id})) if job.scheme_id else None
        log.info("reevaluation.sweep_start", profiles=report.profiles_total)

        self._active[job.sweep_id] = job
        try:
            for offset in range(0, len(profile_ids), self._batch_size):
                if job.cancelled or self._stopping:
                    report.cancelled = True
                    log.info("reevaluation.sweep_cancelled", evaluated=report.profiles_evaluated)
                    break
                batch = profile_ids[offset : offset + self._batch_size]
                outcomes = await asyncio.gather(
                    *(self._reevaluate_profile(pid, job, filters) for pid in batch)
                )
                report.batches += 1
                for events in outcomes:
                    if events is None:
                        report.profiles_skipped += 1
                        continue
                    report.profiles_evaluated += 1
                    for event in events:
                        self._stream.publish(event)
                        report.events_emitted += 1
        finally:
            self._active.pop(job.sweep_id, None)

        report.duration_seconds = round(time.perf_counter() - start, 3)
        report.missed_deadline = datetime.now(UTC) > job.deadline
        self._reports.append(report)
        log_method = log.warning if report.missed_deadline else log.info
        log_method(
            "reevaluation.sweep_complete",
            evaluated=report.profiles_evaluated,
            skipped=report.profiles_skipped,
            events=report.events_emitted,
            batches=report.batches,
            cancelled=report.cancelled,
            missed_deadline=report.missed_deadline,
            duration_s=report.duration_seconds,
        )
        return report

    async def _reevaluate_profile(
        self,
        profile_id: str,
        job: SweepJob,
        filters: SchemeFilter | None,
    ) -> list[NewlyEligible] | None:
        """Re-match one profile; ``None`` when it cannot be evaluated."""
        async with self._profile_slots:
            profile = await self._profiles.get_profile(profile_id)
            if profile is None or profile.missing_required_fields():
                return None

            before = self._orchestrator.history.eligible_schemes(profile_id)
            result = await self._orchestrator.match(profile, filters=filters, lane="sweep")

            events: list[NewlyEligible] = []
            for scheme_match in result.primary:
                if scheme_match.scheme_id in before:
                    continue
                if job.scheme_id is not None and scheme_match.scheme_id != job.scheme_id:
                    continue
                # Re-check: the scheme may have been deactivated mid-sweep.
                current = await self._schemes.get_scheme(scheme_match.scheme_id)
                if current is None or not current.is_active:
                    continue
                events.append(
                    NewlyEligible(
                        profile_id=profile_id,
                        scheme_id=scheme_match.scheme_id,
                        scheme_version=scheme_match.scheme_version,
                        match_details=scheme_match,
                        sweep_id=job.sweep_id,
                        reason=job.kind,
                    )
                )
            return events

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                if self._pending.get(job.dedupe_key) is job:
                    del self._pending[job.dedupe_key]
                if job.cancelled:
                    continue
                await self.run_sweep(job)
            except Exception:
                logger.error("reevaluation.sweep_failed", worker=index, sweep_id=job.sweep_id, exc_info=True)
            finally:
                self._queue.task_done()

    async def _consume_schemes(self, subscription: Subscription) -> None:  # type: ignore[type-arg]
        async for event in subscription:
            self._handling += 1
            try:
                await self.handle_scheme_change(event)
            except Exception:
                logger.error("reevaluation.scheme_event_failed", scheme_id=event.scheme_id, exc_info=True)
            finally:
                self._handling -= 1

    async def _consume_profiles(self, subscription: Subscription) -> None:  # type: ignore[type-arg]
        async for event in subscription:
            self._handling += 1
            try:
                await self.handle_profile_change(event)
            except Exception:
                logger.error("reevaluation.profile_event_failed", profile_id=event.profile_id, exc_info=True)
            finally:
                self._handling -= 1
