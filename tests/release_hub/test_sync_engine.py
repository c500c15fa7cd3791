"""Tests for the incremental sync engine."""

from __future__ import annotations

import logging

import pytest

from ReleaseHub.errors import UpstreamFetchError
from ReleaseHub.store import BuildQuery
from ReleaseHub.sync import SyncEngine, SyncState


class TestColdFetch:
    def test_pages_until_short_page(self, engine, fake_source, at):
        recorded = engine.refresh()

        assert recorded == 240
        assert fake_source.calls == [(100, 0), (100, 100), (100, 200)]
        assert len(engine.state) == 240
        assert engine.state.cursor == at(239)
        assert engine.store.stats()["builds"] == 240

    def test_publishes_after_every_full_page(self, engine, fake_source):
        seen = []
        fake_source.on_call = lambda limit, offset: seen.append(len(engine.state))
        engine.refresh()
        assert seen == [0, 100, 200]

    def test_respects_page_budget(self, source_factory, make_build, store):
        source = source_factory([make_build(f"b{i}", finished=1000 - i) for i in range(500)])
        engine = SyncEngine(source, SyncState(), store, page_size=100, max_pages=2)
        assert engine.refresh() == 200
        assert len(source.calls) == 2
        assert engine.state.cursor is not None

    def test_exact_multiple_of_page_size(self, source_factory, make_build, store):
        source = source_factory([make_build(f"b{i}", finished=i) for i in range(200)])
        engine = SyncEngine(source, SyncState(), store, page_size=100)
        engine.refresh()
        assert len(source.calls) == 3
        assert len(engine.state) == 200

    def test_cursor_ignores_builds_without_stop_time(self, source_factory, make_build, store, at):
        source = source_factory([make_build("running", started=500), make_build("done", finished=10)])
        engine = SyncEngine(source, SyncState(), store)
        engine.refresh()
        assert engine.state.cursor == at(10)
        assert len(engine.state) == 2

    def test_failure_keeps_published_pages_and_stays_cold(self, engine, fake_source):
        fake_source.fail_on_call = 2
        with pytest.raises(UpstreamFetchError):
            engine.refresh()

        assert len(engine.state) == 100
        assert engine.state.cursor is None

        fake_source.fail_on_call = None
        fake_source.calls.clear()
        engine.refresh()
        assert fake_source.calls[0] == (100, 0)
        assert len(engine.state) == 240


class TestIncrementalFetch:
    def test_one_newer_build(self, engine, fake_source, make_build, at):
        engine.refresh()
        before = engine.state.snapshot().builds
        fake_source.builds.insert(0, make_build("new", created=300, started=299, finished=300))
        fake_source.calls.clear()

        changed = engine.refresh()

        assert changed == 1
        assert fake_source.calls == [(100, 0)]
        assert engine.state.cursor == at(300)
        after = engine.state.snapshot().builds
        assert len(after) == 241
        assert all(after[build_id] is build for build_id, build in before.items())
        assert engine.store.get_build("new") is not None

    def test_no_change_returns_zero(self, engine, fake_source, caplog):
        engine.refresh()
        cursor = engine.state.cursor
        with caplog.at_level(logging.INFO, logger="ReleaseHub.sync.engine"):
            assert engine.refresh() == 0
        assert engine.state.cursor == cursor
        assert not [r for r in caplog.records if "new builds" in r.getMessage()]

    def test_artifacts_are_attached_only_to_merged_builds(self, engine, fake_source, make_build):
        engine.refresh()
        assert len(fake_source.attached) == 3
        fake_source.attached.clear()

        assert engine.refresh() == 0
        assert fake_source.attached == []

        fake_source.builds.insert(0, make_build("new", created=300, finished=300))
        assert engine.refresh() == 1
        assert fake_source.attached == [["new"]]

    def test_running_build_update_is_merged(self, engine, fake_source, make_build, at):
        engine.refresh()
        fake_source.builds.insert(0, make_build("live", created=400, started=400))
        assert engine.refresh() == 1
        assert engine.state.cursor == at(400)

        fake_source.builds[0] = make_build("live", created=999, started=400, finished=410)
        assert engine.refresh() == 1
        live = engine.state.get("live")
        assert live.finished_at == at(410)
        assert live.created_at == at(400)
        assert engine.store.get_build("live").created_at == at(400)
        assert engine.state.cursor == at(410)

    def test_cursor_never_moves_backwards(self, engine, fake_source, make_build, at):
        engine.refresh()
        fake_source.builds = [make_build("stale", finished=5)]
        assert engine.refresh() == 0
        assert engine.state.cursor == at(239)

    def test_records_without_times_are_skipped(self, engine, fake_source, make_build):
        engine.refresh()
        fake_source.builds.insert(0, make_build("queued", created=500))
        assert engine.refresh() == 0
        assert engine.state.get("queued") is None

    def test_failure_leaves_state_untouched(self, engine, fake_source, make_build):
        engine.refresh()
        before = engine.state.snapshot()
        fake_source.builds.insert(0, make_build("new", finished=900))
        fake_source.error = UpstreamFetchError("boom", provider="fake")

        with pytest.raises(UpstreamFetchError):
            engine.refresh()

        after = engine.state.snapshot()
        assert after.cursor == before.cursor
        assert after.builds == before.builds

    def test_reingesting_same_page_is_idempotent(self, engine, fake_source):
        engine.refresh()
        stats = engine.store.stats()
        engine.store.upsert_builds(fake_source.builds[:100])
        assert engine.store.stats() == stats
        assert len(engine.store.query_builds(BuildQuery(limit=1000))) == 240

    def test_gap_warning_when_whole_page_is_new(self, source_factory, make_build, store, caplog):
        source = source_factory([make_build("b0", finished=0)])
        engine = SyncEngine(source, SyncState(), store, page_size=2)
        engine.refresh()
        source.builds = [make_build("b2", finished=2), make_build("b1", finished=1)]
        with caplog.at_level(logging.WARNING, logger="ReleaseHub.sync.engine"):
            assert engine.refresh() == 2
        assert any("missed" in record.getMessage() for record in caplog.records)
