"""Tests for the query layer (two-stage filter, signing, ordering)."""

from __future__ import annotations

import logging

import pytest

from ReleaseHub.errors import StoreQueryError
from ReleaseHub.models import ArtifactKind
from ReleaseHub.query import QueryLayer
from ReleaseHub.store import InMemoryEntityStore


@pytest.fixture
def query(store, authority, make_build, make_artifact):
    store.upsert_builds(
        [
            make_build(
                "mixed",
                created=10,
                artifacts=[
                    make_artifact("mixed-ipa", "mixed", ArtifactKind.IPA),
                    make_artifact("mixed-apk", "mixed", ArtifactKind.APK),
                    make_artifact("mixed-dmg", "mixed", ArtifactKind.DMG),
                ],
            ),
            make_build("old-ipa", created=1, artifacts=[make_artifact("old", "old-ipa")]),
            make_build("undated", artifacts=[make_artifact("undated-ipa", "undated")]),
            make_build("apk", created=20, artifacts=[make_artifact("apk-1", "apk", ArtifactKind.APK)]),
        ]
    )
    return QueryLayer(store, authority)


def test_filter_precision(query):
    listing = query.list_builds(ArtifactKind.IPA)
    assert {b.id for b in listing.builds} == {"mixed", "old-ipa", "undated"}
    for build in listing.builds:
        assert build.artifacts
        assert all(a.kind is ArtifactKind.IPA for a in build.artifacts)


def test_unfiltered_listing_keeps_every_artifact(query):
    listing = query.list_builds()
    mixed = next(b for b in listing.builds if b.id == "mixed")
    assert len(mixed.artifacts) == 3
    assert len(listing.builds) == 4


def test_sorted_newest_first_with_undated_first(query):
    listing = query.list_builds()
    assert [b.id for b in listing.builds] == ["undated", "apk", "mixed", "old-ipa"]


def test_every_artifact_carries_a_verifiable_signed_url(query, authority):
    for build in query.list_builds().builds:
        for artifact in build.artifacts:
            path, _, signature = artifact.signed_url.partition("?signature=")
            assert path == f"/api/artifact-download/{artifact.id}"
            assert authority.verify("GET", path, signature)


def test_store_is_not_mutated_by_filtering(query, store):
    query.list_builds(ArtifactKind.APK)
    assert len(store.get_build("mixed").artifacts) == 3
    assert store.get_build("mixed").artifacts[0].signed_url is None


def test_db_stats_are_reported(query):
    assert query.list_builds().db_stats == {"builds": 4, "artifacts": 6}


def test_max_results(store, authority, make_build):
    store.upsert_builds([make_build(f"b{i}", created=i) for i in range(12)])
    assert len(QueryLayer(store, authority, max_results=5).list_builds().builds) == 5


def test_max_results_keeps_builds_ingested_later(store, authority, make_build):
    store.upsert_builds([make_build(f"old{i}", created=i) for i in range(1, 11)])
    store.upsert_builds([make_build("newest", created=100)])
    listing = QueryLayer(store, authority, max_results=5).list_builds()
    assert [b.id for b in listing.builds] == ["newest", "old10", "old9", "old8", "old7"]


def test_custom_api_prefix(store, authority, make_build, make_artifact):
    store.upsert_builds([make_build("b", artifacts=[make_artifact("a", "b")])])
    layer = QueryLayer(store, authority, api_prefix="/v2/")
    artifact = layer.list_builds().builds[0].artifacts[0]
    assert artifact.signed_url.startswith("/v2/artifact-download/a?signature=")


def test_store_failures_are_wrapped(authority):
    class BrokenStore(InMemoryEntityStore):
        def query_builds(self, query):
            raise StoreQueryError("disk on fire")

    with pytest.raises(StoreQueryError, match="build listing failed: disk on fire"):
        QueryLayer(BrokenStore(), authority).list_builds(ArtifactKind.IPA)


def test_stats_failure_does_not_fail_the_listing(authority, make_build, caplog):
    class NoStatsStore(InMemoryEntityStore):
        def stats(self):
            raise StoreQueryError("stats table locked")

    store = NoStatsStore()
    store.upsert_builds([make_build("b", created=1)])
    with caplog.at_level(logging.WARNING, logger="ReleaseHub.query"):
        listing = QueryLayer(store, authority).list_builds()

    assert [b.id for b in listing.builds] == ["b"]
    assert listing.db_stats is None
    assert listing.to_public_dict()["db_stats"] is None
    assert any("stats table locked" in r.getMessage() for r in caplog.records)
