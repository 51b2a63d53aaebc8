"""
Tests for the job record store: creation, retention, stuck-entry
normalization and per-entry result writes.
"""
import re

from eol_checker.services.job_storage import JobStorage, job_status_snapshot, to_iso
from eol_checker.services.job_types import unknown_result


class TestCreateJob:
    def test_new_job_shape(self, storage):
        job_id = storage.create_job('Acme', 'X1')

        assert re.fullmatch(r'job_\d+_[a-z0-9]{12}', job_id)
        job = storage.get_job(job_id)
        assert job['status'] == 'created'
        assert job['maker'] == 'Acme'
        assert job['model'] == 'X1'
        assert job['urls'] == []
        assert job['urlResults'] == {}
        assert job['finalResult'] is None

    def test_ids_are_unique(self, storage):
        ids = {storage.create_job('Acme', 'X1') for _ in range(5)}
        assert len(ids) == 5

    def test_missing_job_is_none(self, storage):
        assert storage.get_job('job_0_doesnotexist') is None


class TestCleanup:
    def test_deletes_old_finished_jobs_only(self, storage, clock):
        done = storage.create_job('Acme', 'OLD')
        storage.save_final_result(done, unknown_result('x'))
        failed = storage.create_job('Acme', 'FAILED')
        storage.update_job_status(failed, 'error', error='boom')
        active = storage.create_job('Acme', 'ACTIVE')
        storage.save_job_urls(active, [{'index': 0, 'url': 'https://a'}])

        clock.advance(minutes=1441)
        storage.create_job('Acme', 'NEW')

        assert storage.get_job(done) is None
        assert storage.get_job(failed) is None
        assert storage.get_job(active) is not None

    def test_keeps_recently_finished_jobs(self, storage, clock):
        done = storage.create_job('Acme', 'X1')
        storage.save_final_result(done, unknown_result('x'))

        clock.advance(minutes=1439)
        assert storage.cleanup_old_jobs() == 0
        assert storage.get_job(done) is not None

    def test_cleanup_failure_does_not_block_creation(self, clock):
        class BrokenListStore:
            def __init__(self):
                self.docs = {}

            def list(self, prefix=None):
                raise RuntimeError('listing unavailable')

            def set(self, key, value):
                self.docs[key] = value

            def get(self, key, strong=False):
                return self.docs.get(key)

        storage = JobStorage(store=BrokenListStore(), clock=clock)
        job_id = storage.create_job('Acme', 'X1')
        assert storage.get_job(job_id)['status'] == 'created'


class TestUrlEntries:
    def test_mark_fetching_only_from_pending(self, storage, make_job):
        job_id = make_job(['pending', 'pending'])

        assert storage.mark_url_fetching(job_id, 0) is True
        assert storage.mark_url_fetching(job_id, 0) is False
        assert storage.mark_url_fetching(job_id, 7) is False

        job = storage.get_job(job_id)
        assert job['status'] == 'fetching'
        assert job['urls'][0]['status'] == 'fetching'
        assert 'fetchingSince' in job['urls'][0]
        assert job['urls'][1]['status'] == 'pending'

    def test_save_result_reports_all_terminal(self, storage, make_job):
        job_id = make_job(['pending', 'pending'])

        assert storage.save_url_result(job_id, 0, {'fullContent': 'a'}) is False
        assert storage.save_url_result(job_id, 1, {'fullContent': 'b'}, status='error') is True

        job = storage.get_job(job_id)
        assert job['urlResults'] == {'0': {'fullContent': 'a'}, '1': {'fullContent': 'b'}}
        assert [u['status'] for u in job['urls']] == ['complete', 'error']

    def test_complete_entry_is_never_downgraded(self, storage, make_job):
        job_id = make_job(['pending'])
        storage.save_url_result(job_id, 0, {'fullContent': 'good'})
        storage.save_url_result(job_id, 0, {'fullContent': '[late error]'}, status='error')

        job = storage.get_job(job_id)
        assert job['urls'][0]['status'] == 'complete'
        assert job['urlResults']['0'] == {'fullContent': 'good'}


class TestStuckNormalization:
    def test_fetching_entry_times_out(self, storage, make_job, clock):
        job_id = make_job(['pending', 'pending'])
        storage.mark_url_fetching(job_id, 0)

        clock.advance(seconds=301)
        job = storage.get_job(job_id)

        assert job['urls'][0]['status'] == 'error'
        assert job['urlResults']['0']['fullContent'] == '[Fetch timed out after 300 seconds]'
        assert job['urls'][1]['status'] == 'pending'
        # Written back, not only reported
        assert storage.store.get(job_id)['urls'][0]['status'] == 'error'

    def test_fetching_entry_within_window_is_untouched(self, storage, make_job, clock):
        job_id = make_job(['pending'])
        storage.mark_url_fetching(job_id, 0)

        clock.advance(seconds=299)
        assert storage.get_job(job_id)['urls'][0]['status'] == 'fetching'

    def test_analyzing_job_times_out(self, storage, make_job, clock):
        job_id = make_job(['complete'])
        storage.update_job_status(job_id, 'analyzing')

        clock.advance(seconds=301)
        job = storage.get_job(job_id)
        assert job['status'] == 'error'
        assert 'timed out' in job['error']
        assert job['completedAt'] == to_iso(clock())


class TestSnapshot:
    def test_result_only_when_complete(self, storage, make_job):
        job_id = make_job(['complete', 'pending'], status='fetching')
        snapshot = job_status_snapshot(storage.get_job(job_id))
        assert 'result' not in snapshot
        assert snapshot['urlCount'] == 2
        assert snapshot['completedUrls'] == 1

        storage.save_final_result(job_id, unknown_result('done'))
        snapshot = job_status_snapshot(storage.get_job(job_id))
        assert snapshot['status'] == 'complete'
        assert snapshot['result']['explanation'] == 'done'

    def test_daily_limit_metadata_is_exposed(self, storage, make_job):
        job_id = make_job(['complete'])
        storage.update_job_status(job_id, 'error', error='TPD reached', isDailyLimit=True, retrySeconds=120.0)

        snapshot = job_status_snapshot(storage.get_job(job_id))
        assert snapshot['isDailyLimit'] is True
        assert snapshot['retrySeconds'] == 120.0
