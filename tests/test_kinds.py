"""Tests for detection and enrichment analysis kinds."""

from datetime import timedelta

import pytest

from triage.analyses import (
    NO_SUGGESTION,
    AnalysisContext,
    AnalysisKind,
    ClaimKind,
    DoneKind,
    DuplicatesKind,
    GoodFirstIssueKind,
    LabelsKind,
    MissingInfoKind,
    NeedsResponseKind,
    Phase,
    PriorityKind,
    QualityKind,
    RecurringKind,
    RunOptions,
    SecurityKind,
    StaleKind,
    default_kinds,
)
from triage.config import TriageConfig
from triage.errors import TriageError
from triage.store.models import IssueComment
from triage.tracker.client import GitHubClientError, PullRequestRef
from triage_test_helpers import NOW, FakeEngine, FakeTracker, make_digest, make_snapshot


def _context(engine, tracker=None, clock=lambda: NOW) -> AnalysisContext:
    return AnalysisContext(engine=engine, tracker=tracker, clock=clock)


# =============================================================================
# Base behaviour
# =============================================================================


class TestAnalysisKindBase:
    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ValueError):
            PriorityKind(0)

    @pytest.mark.parametrize(
        "kind_cls",
        [
            DuplicatesKind,
            DoneKind,
            PriorityKind,
            SecurityKind,
            StaleKind,
            QualityKind,
            MissingInfoKind,
            NeedsResponseKind,
            LabelsKind,
            GoodFirstIssueKind,
            RecurringKind,
            ClaimKind,
        ],
    )
    def test_constructs_without_arguments(self, kind_cls):
        assert kind_cls().chunk_size >= 1

    def test_default_chunk_size(self):
        assert PriorityKind().chunk_size == AnalysisKind.DEFAULT_CHUNK_SIZE
        assert ClaimKind().chunk_size == AnalysisKind.DEFAULT_CHUNK_SIZE

    def test_unavailable_without_digests(self, store):
        store.upsert(make_snapshot(1))
        assert PriorityKind(5).is_available(store) == "no open issues with digest"

    def test_quality_available_without_digests(self, store):
        store.upsert(make_snapshot(1))
        assert QualityKind(5).is_available(store) is True

    def test_unavailable_on_empty_store(self, store):
        assert QualityKind(5).is_available(store) == "no open issues"

    def test_closed_records_not_eligible(self, populated_store):
        assert [r.number for r in PriorityKind(5).eligible(populated_store)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_up_to_date_returns_message(self, populated_store):
        engine = FakeEngine()
        kind = PriorityKind(5)
        await kind.run(populated_store, _context(engine), RunOptions())

        result = await kind.run(populated_store, _context(engine), RunOptions())

        assert engine.calls == 1
        assert "already analyzed" in result.message

    @pytest.mark.asyncio
    async def test_recheck_reruns(self, populated_store):
        engine = FakeEngine()
        kind = PriorityKind(5)
        await kind.run(populated_store, _context(engine), RunOptions())

        await kind.run(populated_store, _context(engine), RunOptions(recheck=True))

        assert engine.calls == 2

    @pytest.mark.asyncio
    async def test_exclusions_respected(self, populated_store):
        engine = FakeEngine()
        result = await PriorityKind(5).run(
            populated_store, _context(engine), RunOptions(exclude_ids=frozenset({2}))
        )

        assert result.fallbacks == 2
        assert populated_store.get(2).facet("priority").analyzed_at is None

    @pytest.mark.asyncio
    async def test_dry_run_does_not_save(self, populated_store, store_dir):
        before = (store_dir / "store.json").read_bytes()
        engine = FakeEngine({"priorities": [{"number": 1, "priority": "low"}]})

        await PriorityKind(5).run(populated_store, _context(engine), RunOptions(dry_run=True))

        assert populated_store.get(1).facet("priority").value == "low"
        assert (store_dir / "store.json").read_bytes() == before


def test_default_kinds_order_and_config():
    config = TriageConfig(
        _env_file=None, duplicate_batch_size=7, min_duplicate_confidence=0.9, stale_days_threshold=30
    )
    kinds = default_kinds(config)

    assert [k.id for k in kinds] == [
        "duplicates",
        "done",
        "priority",
        "security",
        "stale",
        "quality",
        "missing_info",
        "needs_response",
        "labels",
        "good_first_issue",
        "recurring",
        "claim",
    ]
    assert [k.phase for k in kinds[:2]] == [Phase.DETECTION, Phase.DETECTION]
    assert all(k.phase is Phase.ENRICHMENT for k in kinds[2:])
    assert kinds[0].chunk_size == 7
    assert kinds[0].min_confidence == 0.9
    assert kinds[4].days_threshold == 30
    assert len({k.facet for k in kinds}) == len(kinds)


# =============================================================================
# Detection kinds
# =============================================================================


class TestDuplicatesKind:
    @pytest.mark.asyncio
    async def test_confident_match_recorded(self, populated_store):
        engine = FakeEngine(
            {
                "duplicates": [
                    {"number": 3, "duplicate_of": 1, "confidence": 0.92, "reason": "Same crash"},
                    {"number": 2, "duplicate_of": 1, "confidence": 0.5, "reason": "Maybe"},
                ]
            }
        )
        kind = DuplicatesKind(30, min_confidence=0.8)

        result = await kind.run(populated_store, _context(engine), RunOptions())

        assert [n for n, _ in result.items] == [3]
        facet = populated_store.get(3).facet("duplicates")
        assert facet.value == 1
        assert facet.details == {"confidence": 0.92}
        assert kind.recommends_close(facet)

        low = populated_store.get(2).facet("duplicates")
        assert low.value is None
        assert low.analyzed_at == NOW
        assert not kind.recommends_close(low)

    @pytest.mark.asyncio
    async def test_self_reference_and_unknown_target_rejected(self, populated_store):
        engine = FakeEngine(
            {
                "duplicates": [
                    {"number": 1, "duplicate_of": 1, "confidence": 0.99},
                    {"number": 2, "duplicate_of": 99, "confidence": 0.99},
                    {"number": 3, "duplicate_of": 4, "confidence": 0.99},
                ]
            }
        )

        result = await DuplicatesKind().run(populated_store, _context(engine), RunOptions())

        assert result.items == []
        for number in (1, 2, 3):
            assert populated_store.get(number).facet("duplicates").value is None

    @pytest.mark.asyncio
    async def test_prompt_includes_knowledge_base(self, populated_store):
        engine = FakeEngine()
        await DuplicatesKind().run(populated_store, _context(engine), RunOptions())

        assert "#1" in engine.prompts[0]
        assert "0.80" in engine.prompts[0]


class TestDoneKind:
    @pytest.mark.asyncio
    async def test_timeline_driven_flow(self, populated_store):
        tracker = FakeTracker(
            timelines={
                1: [PullRequestRef(number=10, title="Fix SSO login")],
                2: [],
                3: GitHubClientError("timeline unavailable", status_code=502),
            }
        )
        engine = FakeEngine(
            {
                "results": [
                    {
                        "number": 1,
                        "is_done": True,
                        "confidence": 0.9,
                        "reason": "Fixed by #10",
                        "draft_comment": "Closing, fixed in #10.",
                    }
                ]
            }
        )
        kind = DoneKind(10)

        result = await kind.run(populated_store, _context(engine, tracker), RunOptions())

        assert tracker.timeline_calls == [1, 2, 3]
        assert engine.calls == 1
        assert "PR #10: Fix SSO login" in engine.prompts[0]

        done = populated_store.get(1).facet("done")
        assert done.value is True
        assert done.details["merged_prs"] == [{"number": 10, "title": "Fix SSO login"}]
        assert done.details["draft_comment"] == "Closing, fixed in #10."
        assert kind.recommends_close(done)
        assert [n for n, _ in result.items] == [1]

        no_prs = populated_store.get(2).facet("done")
        assert no_prs.value is False
        assert no_prs.analyzed_at == NOW

        assert populated_store.get(3).facet("done").analyzed_at is None

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_done(self, populated_store):
        tracker = FakeTracker(timelines={1: [PullRequestRef(number=10, title="Refactor")]})
        engine = FakeEngine(
            {"results": [{"number": 1, "is_done": True, "confidence": 0.5}]}
        )

        await DoneKind().run(populated_store, _context(engine, tracker), RunOptions())

        assert populated_store.get(1).facet("done").value is False

    @pytest.mark.asyncio
    async def test_silent_engine_uses_fallback(self, populated_store):
        tracker = FakeTracker(timelines={1: [PullRequestRef(number=10, title="Fix")]})

        await DoneKind().run(populated_store, _context(FakeEngine(), tracker), RunOptions())

        facet = populated_store.get(1).facet("done")
        assert facet.value is False
        assert facet.reason == NO_SUGGESTION
        assert facet.details["merged_prs"] == [{"number": 10, "title": "Fix"}]

    @pytest.mark.asyncio
    async def test_no_merged_prs_skips_engine(self, populated_store):
        engine = FakeEngine()

        result = await DoneKind().run(populated_store, _context(engine, FakeTracker()), RunOptions())

        assert engine.calls == 0
        assert result.message == "No issues with merged PR references found"
        assert all(
            populated_store.get(n).facet("done").value is False for n in (1, 2, 3)
        )

    @pytest.mark.asyncio
    async def test_requires_tracker(self, populated_store):
        with pytest.raises(TriageError):
            await DoneKind().run(populated_store, _context(FakeEngine()), RunOptions())


# =============================================================================
# Enrichment kinds
# =============================================================================


class TestPriorityAndSecurity:
    @pytest.mark.asyncio
    async def test_priority_merge(self, populated_store):
        engine = FakeEngine(
            {
                "priorities": [
                    {"number": 1, "priority": "critical", "reason": "Outage", "signals": ["prod down"]}
                ]
            }
        )

        result = await PriorityKind(20).run(populated_store, _context(engine), RunOptions())

        facet = populated_store.get(1).facet("priority")
        assert (facet.value, facet.reason) == ("critical", "Outage")
        assert facet.details == {"signals": ["prod down"]}
        assert result.fallbacks == 2
        assert populated_store.get(2).facet("priority").value is None

    @pytest.mark.asyncio
    async def test_security_confidence_threshold(self, populated_store):
        engine = FakeEngine(
            {
                "findings": [
                    {
                        "number": 1,
                        "is_security_related": True,
                        "confidence": 0.95,
                        "category": "auth-bypass",
                        "severity": "high",
                        "explanation": "Token accepted after logout",
                    },
                    {"number": 2, "is_security_related": True, "confidence": 0.4},
                ]
            }
        )

        result = await SecurityKind(20).run(populated_store, _context(engine), RunOptions())

        assert [n for n, _ in result.items] == [1]
        flagged = populated_store.get(1).facet("security")
        assert flagged.value is True
        assert flagged.details["severity"] == "high"
        assert populated_store.get(2).facet("security").value is False


class TestStaleKind:
    @pytest.mark.asyncio
    async def test_only_inactive_issues(self, store):
        store.upsert(make_snapshot(1, updated_at=NOW - timedelta(days=120)))
        store.upsert(make_snapshot(2, updated_at=NOW - timedelta(days=5)))
        for number in (1, 2):
            store.set_digest(number, make_digest())
        engine = FakeEngine(
            {
                "results": [
                    {
                        "number": 1,
                        "action": "label-stale",
                        "reason": "No activity",
                        "draft_comment": "Is this still relevant?",
                    }
                ]
            }
        )
        kind = StaleKind(20, days_threshold=90, close_days=14, clock=lambda: NOW)

        await kind.run(store, _context(engine), RunOptions())

        assert "#2" not in engine.prompts[0]
        facet = store.get(1).facet("stale")
        assert facet.value == "label-stale"
        assert facet.details == {"draft_comment": "Is this still relevant?"}
        assert store.get(2).facet("stale").analyzed_at is None

    @pytest.mark.asyncio
    async def test_fallback_keeps_open(self, store):
        store.upsert(make_snapshot(1, updated_at=NOW - timedelta(days=200)))
        store.set_digest(1, make_digest())

        await StaleKind(clock=lambda: NOW).run(store, _context(FakeEngine()), RunOptions())

        facet = store.get(1).facet("stale")
        assert (facet.value, facet.reason) == ("keep-open", NO_SUGGESTION)

    def test_unavailable_without_inactive_issues(self, populated_store):
        kind = StaleKind(days_threshold=90, clock=lambda: NOW)
        assert kind.is_available(populated_store) == "no issues inactive for 90+ days"


class TestQualityKind:
    @pytest.mark.asyncio
    async def test_runs_without_digest(self, store):
        store.upsert(make_snapshot(1, title="asdf", body="test"))
        store.upsert(make_snapshot(2))
        engine = FakeEngine(
            {"results": [{"number": 1, "quality": "test", "reason": "Test submission", "suggested_label": "invalid"}]}
        )

        result = await QualityKind(20).run(store, _context(engine), RunOptions())

        assert [n for n, _ in result.items] == [1]
        assert store.get(1).facet("quality").value == "test"
        assert store.get(2).facet("quality").value == "ok"


class TestMissingInfoKind:
    @pytest.mark.asyncio
    async def test_only_bugs_considered(self, populated_store):
        populated_store.upsert(make_snapshot(5))
        populated_store.set_digest(5, make_digest(category="feature"))
        engine = FakeEngine(
            {
                "results": [
                    {
                        "number": 1,
                        "has_missing_info": True,
                        "missing_fields": ["steps to reproduce", "version"],
                        "suggested_comment": "Could you share the version?",
                    },
                    {"number": 2, "has_missing_info": False},
                ]
            }
        )

        result = await MissingInfoKind(15).run(populated_store, _context(engine), RunOptions())

        assert "#5" not in engine.prompts[0]
        assert [n for n, _ in result.items] == [1]
        facet = populated_store.get(1).facet("missing_info")
        assert facet.value is True
        assert facet.reason == "steps to reproduce, version"
        assert populated_store.get(2).facet("missing_info").value is False
        assert populated_store.get(5).facet("missing_info").analyzed_at is None


class TestNeedsResponseKind:
    @pytest.mark.asyncio
    async def test_org_members_reach_prompt(self, populated_store):
        populated_store.update_meta(org_members=["maintainer"])
        populated_store.set_comments(
            1, [IssueComment(author="maintainer", body="Looking into it", created_at=NOW)], NOW
        )
        engine = FakeEngine(
            {"results": [{"number": 1, "status": "responded", "reason": "Maintainer replied"}]}
        )

        await NeedsResponseKind(15).run(populated_store, _context(engine), RunOptions())

        assert "Org members / maintainers: maintainer" in engine.prompts[0]
        assert "@maintainer [ORG]" in engine.prompts[0]
        assert populated_store.get(1).facet("needs_response").value == "responded"


class TestLabelsKind:
    @pytest.mark.asyncio
    async def test_only_new_repository_labels_kept(self, populated_store):
        populated_store.upsert(make_snapshot(1, labels=["bug"]))
        tracker = FakeTracker(labels=["bug", "area: auth", "ui"])
        engine = FakeEngine(
            {
                "labels": [
                    {"number": 1, "suggested": ["bug", "area: auth", "made-up"], "reason": "Auth bug"},
                    {"number": 2, "suggested": ["made-up"]},
                ]
            }
        )

        result = await LabelsKind(20).run(populated_store, _context(engine, tracker), RunOptions())

        assert "area: auth" in engine.prompts[0]
        assert [n for n, _ in result.items] == [1]
        assert populated_store.get(1).facet("labels").value == ["area: auth"]
        assert populated_store.get(2).facet("labels").value is None

    @pytest.mark.asyncio
    async def test_no_repository_labels(self, populated_store):
        engine = FakeEngine()

        result = await LabelsKind().run(populated_store, _context(engine, FakeTracker()), RunOptions())

        assert engine.calls == 0
        assert result.message == "No labels defined in the repository"

    @pytest.mark.asyncio
    async def test_requires_tracker(self, populated_store):
        with pytest.raises(TriageError):
            await LabelsKind().run(populated_store, _context(FakeEngine()), RunOptions())


class TestGoodFirstIssueKind:
    @pytest.mark.asyncio
    async def test_already_labeled_excluded(self, populated_store):
        populated_store.upsert(make_snapshot(2, labels=["Good First Issue"]))
        engine = FakeEngine(
            {
                "results": [
                    {
                        "number": 1,
                        "is_good_first_issue": True,
                        "reason": "Small isolated fix",
                        "code_hint": "src/auth/login.py",
                        "estimated_complexity": "small",
                    }
                ]
            }
        )

        result = await GoodFirstIssueKind(20).run(populated_store, _context(engine), RunOptions())

        assert "#2 " not in engine.prompts[0]
        assert [n for n, _ in result.items] == [1]
        assert populated_store.get(1).facet("good_first_issue").details["code_hint"] == "src/auth/login.py"
        assert populated_store.get(3).facet("good_first_issue").value is None


class TestRecurringKind:
    @pytest.mark.asyncio
    async def test_matches_closed_questions(self, populated_store):
        populated_store.upsert(make_snapshot(5, title="How do I configure SSO?"))
        populated_store.set_digest(5, make_digest(category="question"))
        engine = FakeEngine(
            {
                "questions": [
                    {
                        "number": 5,
                        "is_recurring": True,
                        "similar_closed_issues": [4],
                        "suggested_response": "See #4 for the SSO setup steps.",
                        "confidence": 0.85,
                    }
                ]
            }
        )

        result = await RecurringKind(15).run(populated_store, _context(engine), RunOptions())

        assert [n for n, _ in result.items] == [5]
        facet = populated_store.get(5).facet("recurring")
        assert facet.value is True
        assert facet.reason == "See #4 for the SSO setup steps."
        assert facet.details["similar_closed_issues"] == [4]

    @pytest.mark.asyncio
    async def test_needs_closed_issues(self, store):
        store.upsert(make_snapshot(1))
        store.set_digest(1, make_digest(category="question"))
        engine = FakeEngine()

        result = await RecurringKind().run(store, _context(engine), RunOptions())

        assert engine.calls == 0
        assert "No closed issues" in result.message
