"""Tests for the re-evaluation trigger and its background sweeps."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from src.models.enums import CasteCategory, ChangeType, Gender, SweepKind
from src.models.scheme import EligibilityCriteria, SchemeCategory, SchemeDocument
from src.models.user_profile import Location, UserProfile
from src.pipeline.orchestrator import MatchOrchestrator
from src.services.cache import CacheManager
from src.services.matching.interpreter import CriteriaInterpreter
from src.services.matching.keyword_reasoner import KeywordCriteriaReasoner
from src.services.matching.retriever import CandidateRetriever
from src.services.notifications import NewlyEligibleStream
from src.services.reevaluation import ReevaluationTrigger, SweepJob
from src.services.stores import InMemoryProfileStore, InMemorySchemeStore

TODAY = date(2026, 10, 19)


def _scheme(scheme_id: str, **criteria) -> SchemeDocument:
    return SchemeDocument(
        scheme_id=scheme_id,
        name=scheme_id.replace("-", " ").title(),
        category=SchemeCategory.SOCIAL_SECURITY,
        is_ongoing=True,
        eligibility=EligibilityCriteria(**criteria),
    )


def _profile(profile_id: str, age: int, **overrides) -> UserProfile:
    defaults = {
        "profile_id": profile_id,
        "age": age,
        "gender": Gender.FEMALE,
        "location": Location(state="Maharashtra"),
        "caste_category": CasteCategory.OBC,
        "annual_income": 30000,
    }
    defaults.update(overrides)
    return UserProfile(**defaults)


class CancellingProfileStore(InMemoryProfileStore):
    """Records reads and cancels ``job`` as soon as the first profile is fetched."""

    def __init__(self, profiles: list[UserProfile]) -> None:
        super().__init__(profiles)
        self.job: SweepJob | None = None
        self.reads: list[str] = []

    async def get_profile(self, profile_id: str) -> UserProfile | None:
        self.reads.append(profile_id)
        if self.job is not None:
            self.job.cancelled = True
        return await super().get_profile(profile_id)


class Harness:
    """Stores, orchestrator, stream and trigger wired together."""

    def __init__(
        self,
        schemes: list[SchemeDocument],
        profiles: list[UserProfile],
        *,
        profile_store: InMemoryProfileStore | None = None,
        **trigger_kwargs,
    ) -> None:
        self.schemes = InMemorySchemeStore(schemes)
        self.profiles = profile_store if profile_store is not None else InMemoryProfileStore(profiles)
        self.stream = NewlyEligibleStream()
        retriever = CandidateRetriever(self.schemes, None)
        interpreter = CriteriaInterpreter(KeywordCriteriaReasoner(), CacheManager(namespace="test:"))
        self.orchestrator = MatchOrchestrator(retriever, interpreter, clock=lambda: TODAY)
        self.trigger = ReevaluationTrigger(
            self.orchestrator, self.schemes, self.profiles, self.stream, **trigger_kwargs
        )

    async def match_everyone(self) -> None:
        for pid in await self.profiles.profile_ids():
            await self.orchestrator.match(await self.profiles.get_profile(pid))


@pytest.fixture
def harness() -> Harness:
    return Harness(
        [_scheme("senior-pension", min_age=60)],
        [_profile("asha", 66), _profile("meena", 45), _profile("rekha", 59)],
    )


# ---------------------------------------------------------------------------
# Scheme changes
# ---------------------------------------------------------------------------


class TestSchemeChanges:
    async def test_new_scheme_sweeps_every_profile(self, harness: Harness) -> None:
        event = await harness.schemes.upsert(_scheme("women-support", gender=Gender.FEMALE, max_age=50))

        job = await harness.trigger.handle_scheme_change(event)
        assert job is not None
        assert job.kind is SweepKind.NEW_SCHEME and job.profile_ids is None

        report = await harness.trigger.run_sweep(job)

        assert report.profiles_total == 3
        assert report.events_emitted == 1
        (emitted,) = harness.stream.recent()
        assert (emitted.profile_id, emitted.scheme_id) == ("meena", "women-support")
        assert emitted.reason is SweepKind.NEW_SCHEME
        assert emitted.sweep_id == job.sweep_id
        assert emitted.match_details.fully_eligible

    async def test_criteria_change_targets_previously_scored(self, harness: Harness) -> None:
        await harness.match_everyone()
        event = await harness.schemes.update("senior-pension", eligibility=EligibilityCriteria(min_age=58))

        job = await harness.trigger.handle_scheme_change(event)
        assert job is not None
        assert job.kind is SweepKind.TARGETED
        assert job.profile_ids == ["asha", "meena", "rekha"]

        report = await harness.trigger.run_sweep(job)

        assert report.profiles_evaluated == 3
        events = harness.stream.recent()
        assert [(e.profile_id, e.scheme_version) for e in events] == [("rekha", 2)]
        assert events[0].reason is SweepKind.TARGETED

    async def test_targets_fall_back_to_near_misses(self) -> None:
        harness = Harness(
            [_scheme("senior-pension", min_age=60)],
            [_profile("asha", 66), _profile("rekha", 59)],
        )
        harness.orchestrator.history._max_profiles = 1  # force overflow
        await harness.match_everyone()
        assert harness.orchestrator.history.profiles_scored_for("senior-pension") is None

        event = await harness.schemes.update("senior-pension", eligibility=EligibilityCriteria(min_age=55))
        job = await harness.trigger.handle_scheme_change(event)

        assert job is not None and job.profile_ids == ["rekha"]

    async def test_unscored_scheme_has_no_targets(self, harness: Harness) -> None:
        event = await harness.schemes.update("senior-pension", eligibility=EligibilityCriteria(min_age=50))
        assert await harness.trigger.handle_scheme_change(event) is None

    async def test_cosmetic_change_is_not_swept(self, harness: Harness) -> None:
        await harness.match_everyone()
        event = await harness.schemes.update("senior-pension", description="Revised wording")
        assert await harness.trigger.handle_scheme_change(event) is None

    async def test_deactivation_forgets_and_cancels(self, harness: Harness) -> None:
        await harness.match_everyone()
        update = await harness.schemes.update("senior-pension", eligibility=EligibilityCriteria(min_age=40))
        pending = await harness.trigger.handle_scheme_change(update)
        assert pending is not None

        event = await harness.schemes.deactivate("senior-pension")
        assert event.change_type is ChangeType.DEACTIVATED
        assert await harness.trigger.handle_scheme_change(event) is None

        assert pending.cancelled is True
        assert harness.orchestrator.history.eligible_schemes("asha") == set()
        assert harness.orchestrator.retriever.snapshot_size == 0

    async def test_reactivation_sweeps_like_new_scheme(self, harness: Harness) -> None:
        await harness.match_everyone()
        await harness.trigger.handle_scheme_change(await harness.schemes.deactivate("senior-pension"))

        job = await harness.trigger.handle_scheme_change(await harness.schemes.reactivate("senior-pension"))
        assert job is not None and job.kind is SweepKind.NEW_SCHEME

        await harness.trigger.run_sweep(job)
        assert [e.profile_id for e in harness.stream.recent()] == ["asha"]

    async def test_deadline_extension_reopens_scheme(self) -> None:
        closed = SchemeDocument(
            scheme_id="late-pension",
            name="Late Pension",
            category=SchemeCategory.SOCIAL_SECURITY,
            is_ongoing=False,
            deadline=date(2026, 9, 30),
            eligibility=EligibilityCriteria(min_age=60),
        )
        harness = Harness([closed], [_profile("asha", 66), _profile("meena", 45)])
        await harness.match_everyone()
        assert harness.orchestrator.history.eligible_schemes("asha") == set()

        event = await harness.schemes.update("late-pension", deadline=date(2026, 12, 31))
        job = await harness.trigger.handle_scheme_change(event)
        assert job is not None and job.kind is SweepKind.NEW_SCHEME

        await harness.trigger.run_sweep(job)
        assert [e.profile_id for e in harness.stream.recent()] == ["asha"]

    async def test_deadline_extension_of_open_scheme_is_cosmetic(self) -> None:
        open_scheme = SchemeDocument(
            scheme_id="late-pension",
            name="Late Pension",
            category=SchemeCategory.SOCIAL_SECURITY,
            is_ongoing=False,
            deadline=date(2026, 11, 30),
            eligibility=EligibilityCriteria(min_age=60),
        )
        harness = Harness([open_scheme], [_profile("asha", 66)])
        await harness.match_everyone()

        event = await harness.schemes.update("late-pension", deadline=date(2026, 12, 31))
        assert await harness.trigger.handle_scheme_change(event) is None

    async def test_scheme_deactivated_mid_sweep_emits_nothing(self, harness: Harness) -> None:
        event = await harness.schemes.upsert(_scheme("any-adult", min_age=18))
        job = await harness.trigger.handle_scheme_change(event)
        await harness.schemes.deactivate("any-adult")

        report = await harness.trigger.run_sweep(job)

        assert report.events_emitted == 0


# ---------------------------------------------------------------------------
# Profile changes
# ---------------------------------------------------------------------------


class TestProfileChanges:
    async def test_profile_update_sweeps_that_profile(self, harness: Harness) -> None:
        await harness.match_everyone()
        event = await harness.profiles.upsert(_profile("meena", 61))

        job = await harness.trigger.handle_profile_change(event)
        assert job is not None and job.profile_ids == ["meena"] and job.scheme_id is None

        report = await harness.trigger.run_sweep(job)

        assert report.profiles_evaluated == 1
        assert [(e.profile_id, e.scheme_id) for e in harness.stream.recent()] == [("meena", "senior-pension")]

    async def test_unchanged_eligibility_emits_nothing(self, harness: Harness) -> None:
        await harness.match_everyone()
        event = await harness.profiles.upsert(_profile("asha", 67))
        report = await harness.trigger.run_sweep(await harness.trigger.handle_profile_change(event))
        assert report.events_emitted == 0

    async def test_deleted_profile_is_forgotten(self, harness: Harness) -> None:
        await harness.match_everyone()
        event = await harness.profiles.delete("asha")
        assert await harness.trigger.handle_profile_change(event) is None
        assert harness.orchestrator.history.eligible_schemes("asha") == set()

    async def test_incomplete_profile_is_skipped(self) -> None:
        harness = Harness([_scheme("open")], [_profile("full", 30), UserProfile(profile_id="partial", age=30)])
        job = await harness.trigger.handle_scheme_change(await harness.schemes.upsert(_scheme("new", min_age=18)))

        report = await harness.trigger.run_sweep(job)

        assert (report.profiles_evaluated, report.profiles_skipped) == (1, 1)


# ---------------------------------------------------------------------------
# Scheduling and cancellation
# ---------------------------------------------------------------------------


class TestScheduling:
    def test_batch_size_must_be_positive(self, harness: Harness) -> None:
        with pytest.raises(ValueError):
            ReevaluationTrigger(
                harness.orchestrator, harness.schemes, harness.profiles, harness.stream, batch_size=0
            )

    async def test_newer_job_supersedes_pending_one(self, harness: Harness) -> None:
        first = await harness.trigger.handle_profile_change(await harness.profiles.upsert(_profile("meena", 50)))
        second = await harness.trigger.handle_profile_change(await harness.profiles.upsert(_profile("meena", 61)))

        assert first.cancelled is True
        assert second.cancelled is False
        assert second.deadline == first.deadline

    async def test_superseding_unions_targets(self, harness: Harness) -> None:
        now = datetime.now(UTC)
        a = SweepJob(now + timedelta(hours=1), 0, SweepKind.TARGETED, "senior-pension", ["asha"])
        b = SweepJob(now + timedelta(hours=2), 1, SweepKind.TARGETED, "senior-pension", ["rekha"])
        harness.trigger.schedule(a)
        harness.trigger.schedule(b)
        assert b.profile_ids == ["asha", "rekha"]
        assert b.deadline == a.deadline

    async def test_cancel_by_sweep_id(self, harness: Harness) -> None:
        job = await harness.trigger.handle_profile_change(await harness.profiles.upsert(_profile("asha", 70)))
        assert harness.trigger.cancel(job.sweep_id) is True
        assert harness.trigger.cancel("no-such-sweep") is False

    async def test_cancelled_sweep_stops_before_next_batch(self, harness: Harness) -> None:
        job = SweepJob(datetime.now(UTC) + timedelta(hours=1), 0, SweepKind.NEW_SCHEME, "senior-pension")
        job.cancelled = True

        report = await harness.trigger.run_sweep(job)

        assert report.cancelled is True
        assert report.batches == 0 and report.profiles_evaluated == 0

    async def test_batches_are_bounded(self) -> None:
        harness = Harness(
            [_scheme("any-adult", min_age=18)],
            [_profile(f"p{i}", 30 + i) for i in range(5)],
            batch_size=2,
        )
        job = SweepJob(datetime.now(UTC) + timedelta(hours=1), 0, SweepKind.NEW_SCHEME, "any-adult")

        report = await harness.trigger.run_sweep(job)

        assert report.batches == 3
        assert report.events_emitted == 5

    async def test_cancellation_mid_batch_finishes_that_batch_only(self) -> None:
        profiles = [_profile(f"p{i}", 30 + i) for i in range(5)]
        store = CancellingProfileStore(profiles)
        harness = Harness([_scheme("any-adult", min_age=18)], profiles, profile_store=store, batch_size=2)
        job = SweepJob(datetime.now(UTC) + timedelta(hours=1), 0, SweepKind.NEW_SCHEME, "any-adult")
        store.job = job

        report = await harness.trigger.run_sweep(job)

        assert report.cancelled is True
        assert report.batches == 1
        assert report.profiles_evaluated == 2
        assert report.events_emitted == 2
        assert sorted(store.reads) == ["p0", "p1"], "second batch must never start"
        assert {e.profile_id for e in harness.stream.recent()} == {"p0", "p1"}

    async def test_missed_deadline_is_reported(self, harness: Harness) -> None:
        job = SweepJob(datetime.now(UTC) - timedelta(seconds=1), 0, SweepKind.PROFILE, None, ["asha"])
        report = await harness.trigger.run_sweep(job)
        assert report.missed_deadline is True
        assert harness.trigger.reports == [report]

    def test_jobs_order_by_deadline(self) -> None:
        now = datetime.now(UTC)
        late = SweepJob(now + timedelta(hours=24), 0, SweepKind.NEW_SCHEME, "a")
        urgent = SweepJob(now + timedelta(hours=1), 1, SweepKind.TARGETED, "b")
        assert sorted([late, urgent]) == [urgent, late]


# ---------------------------------------------------------------------------
# Background operation
# ---------------------------------------------------------------------------


class TestBackground:
    async def test_store_changes_flow_to_events(self, harness: Harness) -> None:
        await harness.trigger.start()
        try:
            assert harness.trigger.is_running
            await harness.schemes.upsert(_scheme("women-support", gender=Gender.FEMALE, max_age=50))
            await harness.trigger.wait_idle(timeout=5)

            assert [e.profile_id for e in harness.stream.recent()] == ["meena"]
            status = harness.trigger.status()
            assert status["completed"] == 1
            assert status["events_published"] == 1
        finally:
            await harness.trigger.stop()

        assert harness.trigger.is_running is False

    async def test_stop_is_prompt_when_idle(self, harness: Harness) -> None:
        await harness.trigger.start()
        await harness.trigger.stop()
        assert harness.trigger.status()["running"] is False
