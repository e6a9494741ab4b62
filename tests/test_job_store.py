"""Tests for JobStore: dedup by (user, run id), retry after failure, guarded status transitions."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from stefna.models.generation_job import JobStatus, MediaKind, PresetsJob
from stefna.services.jobs.service import JobStore, ledger_request_id, next_attempt


def _create(store, run_id="run-1", kind=MediaKind.PRESETS, attempt=1, user_id="user-1"):
    return store.create_or_get_job(
        user_id,
        run_id,
        kind,
        prompt="portrait",
        source_url="https://example.com/in.jpg",
        attempt=attempt,
        ledger_request_id=ledger_request_id(kind, run_id, attempt),
    )


class TestCreateOrGet:
    def test_creates_pending_job(self, db):
        store = JobStore(db)
        job, is_new = _create(store)

        assert is_new is True
        assert job.status == JobStatus.PENDING.value
        assert job.media_kind == "presets"
        assert job.attempt == 1
        assert job.ledger_request_id == "presets:run-1:1"

    def test_in_flight_job_is_returned(self, db):
        store = JobStore(db)
        first, _ = _create(store)

        second, is_new = _create(store)

        assert is_new is False
        assert second.id == first.id

    def test_completed_job_is_returned_as_is(self, db):
        store = JobStore(db)
        job, _ = _create(store)
        store.mark_processing(MediaKind.PRESETS, job.id)
        store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.COMPLETED, output_url="https://cdn/x.jpg")

        again, is_new = _create(store)

        assert is_new is False
        assert again.id == job.id
        assert again.output_url == "https://cdn/x.jpg"

    def test_failed_job_is_replaced_with_next_attempt(self, db):
        store = JobStore(db)
        job, _ = _create(store)
        old_id = job.id
        store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.FAILED, error="boom")

        retry, is_new = _create(store, attempt=2)

        assert is_new is True
        assert retry.id != old_id
        assert retry.attempt == 2
        assert retry.status == JobStatus.PENDING.value
        assert store.get(MediaKind.PRESETS, old_id) is None
        assert db.query(PresetsJob).count() == 1

    def test_same_run_id_in_different_kinds_is_independent(self, db):
        store = JobStore(db)
        _create(store, kind=MediaKind.PRESETS)
        _, is_new = _create(store, kind=MediaKind.NEO_GLITCH)
        assert is_new is True

    def test_concurrent_insert_returns_winner(self, db, session_factory):
        winner, _ = _create(JobStore(db))

        other_db = session_factory()
        try:
            store = JobStore(other_db)
            real_find = JobStore.find
            calls = {"n": 0}

            def stale_find(self, *args, **kwargs):
                calls["n"] += 1
                if calls["n"] == 1:
                    return None
                return real_find(self, *args, **kwargs)

            with patch.object(JobStore, "find", stale_find):
                job, is_new = _create(store)

            assert is_new is False
            assert job.id == winner.id
            assert other_db.query(PresetsJob).count() == 1
        finally:
            other_db.close()


class TestTransitions:
    def test_mark_processing_only_once(self, db):
        store = JobStore(db)
        job, _ = _create(store)

        assert store.mark_processing(MediaKind.PRESETS, job.id) is True
        assert store.mark_processing(MediaKind.PRESETS, job.id) is False
        db.refresh(job)
        assert job.status == JobStatus.PROCESSING.value
        assert job.started_at is not None

    def test_terminal_write_happens_once(self, db):
        store = JobStore(db)
        job, _ = _create(store)
        store.mark_processing(MediaKind.PRESETS, job.id)

        assert store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.FAILED, error="ceiling") is True
        # Late result from a swept job is discarded
        assert store.update_job_result(
            MediaKind.PRESETS, job.id, JobStatus.COMPLETED, output_url="https://cdn/late.jpg"
        ) is False

        db.refresh(job)
        assert job.status == JobStatus.FAILED.value
        assert job.output_url is None

    def test_completed_requires_output(self, db):
        store = JobStore(db)
        job, _ = _create(store)
        with pytest.raises(ValueError):
            store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.COMPLETED)

    def test_non_terminal_status_rejected(self, db):
        store = JobStore(db)
        job, _ = _create(store)
        with pytest.raises(ValueError):
            store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.PROCESSING)

    def test_find_stuck(self, db):
        store = JobStore(db)
        stuck, _ = _create(store, run_id="stuck")
        _create(store, run_id="fresh")
        db.query(PresetsJob).filter(PresetsJob.id == stuck.id).update(
            {"updated_at": datetime.now(timezone.utc) - timedelta(hours=1)}, synchronize_session=False
        )
        db.commit()

        found = store.find_stuck(MediaKind.PRESETS, older_than_seconds=600)

        assert [j.id for j in found] == [stuck.id]


class TestHelpers:
    def test_ledger_request_id(self):
        assert ledger_request_id(MediaKind.STORY_TIME, "abc", 3) == "story_time:abc:3"

    def test_next_attempt(self, db):
        store = JobStore(db)
        assert next_attempt(None) == 1
        job, _ = _create(store)
        assert next_attempt(job) == 1
        store.update_job_result(MediaKind.PRESETS, job.id, JobStatus.FAILED, error="x")
        db.refresh(job)
        assert next_attempt(job) == 2
