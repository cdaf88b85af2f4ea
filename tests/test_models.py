"""Tests for store record models and snapshot versioning."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from triage.store.models import (
    SNAPSHOT_VERSION,
    Facet,
    FacetName,
    IssueRecord,
    StoreSnapshot,
    compute_content_hash,
    empty_analysis,
)
from triage_test_helpers import make_snapshot


class TestContentHash:
    def test_deterministic(self):
        assert compute_content_hash("Title", "Body") == compute_content_hash("Title", "Body")

    def test_length(self):
        assert len(compute_content_hash("Title", "Body")) == 64

    def test_title_and_body_are_separated(self):
        """Moving text between title and body changes the hash."""
        assert compute_content_hash("ab", "c") != compute_content_hash("a", "bc")

    def test_snapshot_fingerprint_ignores_labels_and_state(self):
        a = make_snapshot(1, labels=["bug"], state="open")
        b = make_snapshot(1, labels=["wontfix"], state="closed")
        assert a.fingerprint() == b.fingerprint()


class TestIssueSnapshot:
    def test_null_body_becomes_empty_string(self):
        snapshot = make_snapshot(1, body=None)
        assert snapshot.body == ""

    def test_negative_comment_count_rejected(self):
        with pytest.raises(ValidationError):
            make_snapshot(1, comment_count=-1)


class TestTimestamps:
    def test_naive_datetime_treated_as_utc(self):
        facet = Facet(analyzed_at=datetime(2026, 1, 1))
        assert facet.analyzed_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_aware_datetime_kept(self):
        moment = datetime(2026, 1, 1, 9, tzinfo=timezone(timedelta(hours=2)))
        assert Facet(analyzed_at=moment).analyzed_at.utcoffset() == timedelta(hours=2)

    def test_snapshot_naive_strings_parsed_as_utc(self):
        snapshot = make_snapshot(1, created_at="2026-01-01T00:00:00")
        assert snapshot.created_at.tzinfo == timezone.utc


class TestIssueRecord:
    def test_from_snapshot_has_empty_derived_state(self):
        snapshot = make_snapshot(7)
        record = IssueRecord.from_snapshot(snapshot)

        assert record.content_hash == snapshot.fingerprint()
        assert record.digest is None
        assert record.comments == []
        assert record.comments_fetched_at is None
        assert set(record.analysis) == set(FacetName)
        assert all(f.analyzed_at is None and f.value is None for f in record.analysis.values())

    def test_missing_facets_are_filled(self):
        """Records written before a facet existed gain it empty on load."""
        data = IssueRecord.from_snapshot(make_snapshot(1)).model_dump(mode="json")
        data["analysis"] = {"priority": {"value": "high"}}

        record = IssueRecord.model_validate(data)

        assert record.facet("priority").value == "high"
        assert record.facet(FacetName.RECURRING) == Facet()

    def test_facet_accepts_string_name(self):
        record = IssueRecord.from_snapshot(make_snapshot(1))
        assert record.facet("stale") is record.analysis[FacetName.STALE]

    def test_unknown_facet_name_raises(self):
        record = IssueRecord.from_snapshot(make_snapshot(1))
        with pytest.raises(ValueError):
            record.facet("milestone")


def test_empty_analysis_instances_are_independent():
    first = empty_analysis()
    second = empty_analysis()
    first[FacetName.PRIORITY].details["signals"] = ["crash"]
    assert second[FacetName.PRIORITY].details == {}


class TestSnapshotVersioning:
    def _legacy_document(self) -> dict:
        return {
            "meta": {"owner": "octo", "repo": "widgets", "version": 1},
            "issues": [
                {
                    "number": 1,
                    "title": "Crash on start",
                    "body": None,
                    "created_at": "2026-01-01T00:00:00Z",
                    "updated_at": "2026-01-02T00:00:00Z",
                    "analysis": {"duplicates": {"value": None}},
                }
            ],
        }

    def test_v1_document_is_upgraded(self):
        snapshot = StoreSnapshot.model_validate(self._legacy_document())

        assert snapshot.meta.version == SNAPSHOT_VERSION
        assert snapshot.meta.org_members == []
        record = snapshot.issues[0]
        assert record.content_hash == compute_content_hash("Crash on start", "")
        assert record.comments_fetched_at is None
        assert set(record.analysis) == set(FacetName)

    def test_v1_without_issues_key(self):
        snapshot = StoreSnapshot.model_validate(
            {"meta": {"owner": "octo", "repo": "widgets", "version": 1}}
        )
        assert snapshot.issues == []

    def test_future_version_rejected(self):
        with pytest.raises(ValidationError, match="newer than supported"):
            StoreSnapshot.model_validate(
                {"meta": {"owner": "octo", "repo": "widgets", "version": SNAPSHOT_VERSION + 1}}
            )

    def test_missing_meta_rejected(self):
        with pytest.raises(ValidationError):
            StoreSnapshot.model_validate({"issues": []})
