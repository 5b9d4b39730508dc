"""Conditional-update claiming against the shared job table."""

from sqlalchemy import update

from app.db.models.import_job import ImportJob, utcnow
from app.db.session import build_engine, build_session_factory
from app.repositories import import_jobs
from app.repositories.import_jobs import ImportJobRepository


def _enqueue(repository, source, created_by="user-1", job_type="full"):
    return repository.create_job(source_id=source.id, job_type=job_type, created_by=created_by)


def test_claim_race_has_exactly_one_winner(engine, repository, source):
    job = _enqueue(repository, source)

    # A second repository on its own engine stands in for another worker process
    other_engine = build_engine(str(engine.url))
    other = ImportJobRepository(build_session_factory(other_engine))
    try:
        seen_by_first = repository.find_oldest_queued()
        seen_by_second = other.find_oldest_queued()
        assert seen_by_first.id == seen_by_second.id == job.id

        assert repository.claim(job.id, started_at=utcnow()) == 1
        assert other.claim(job.id, started_at=utcnow()) == 0
    finally:
        other_engine.dispose()

    claimed = repository.get_job(job.id)
    assert claimed.status == "running"
    assert claimed.attempt == 1
    assert claimed.started_at is not None


def test_find_oldest_queued_is_fifo(repository, source):
    first = _enqueue(repository, source)
    second = _enqueue(repository, source)

    assert repository.find_oldest_queued().id == first.id
    repository.claim(first.id, started_at=utcnow())
    assert repository.find_oldest_queued().id == second.id
    repository.claim(second.id, started_at=utcnow())
    assert repository.find_oldest_queued() is None


def test_fifo_holds_when_enqueue_clock_ties(repository, source, monkeypatch):
    frozen = utcnow()
    monkeypatch.setattr(import_jobs, "utcnow", lambda: frozen)
    monkeypatch.setattr(import_jobs, "_last_enqueued_at", None)

    enqueued = [_enqueue(repository, source).id for _ in range(5)]

    claimed = []
    for _ in enqueued:
        job = repository.find_oldest_queued()
        repository.claim(job.id, started_at=frozen)
        claimed.append(job.id)
    assert claimed == enqueued


def test_claim_without_queued_row_has_no_side_effects(repository, source):
    job = _enqueue(repository, source)
    repository.transition(job.id, expected_status="queued", status="success", finished_at=utcnow())

    assert repository.find_oldest_queued() is None
    assert repository.claim(job.id, started_at=utcnow()) == 0
    assert repository.get_job(job.id).attempt == 0


def test_transition_is_guarded_by_status_and_attempt(repository, source):
    job = _enqueue(repository, source)
    repository.claim(job.id, started_at=utcnow())

    assert repository.transition(job.id, expected_status="queued", status="failed") == 0
    assert repository.transition(job.id, expected_status="running", attempt=2, status="failed") == 0
    assert repository.transition(job.id, expected_status="running", attempt=1, status="success") == 1
    assert repository.get_job(job.id).status == "success"


def test_reclaim_bumps_attempt(repository, source):
    job = _enqueue(repository, source)
    repository.claim(job.id, started_at=utcnow())
    repository.transition(job.id, expected_status="running", attempt=1, status="queued")

    assert repository.claim(job.id, started_at=utcnow()) == 1
    assert repository.get_job(job.id).attempt == 2


def test_run_once_abandons_cycle_when_claim_is_lost(queue, repository, source, session_factory):
    job = queue.enqueue_job(source.id, "full", "user-1")
    calls = []
    queue.register_processor(lambda handle, token: calls.append(handle.id))

    stale_snapshot = repository.find_oldest_queued()

    # Another worker claims between our read and our conditional write
    def find_then_lose_race():
        with session_factory.begin() as session:
            session.execute(update(ImportJob).where(ImportJob.id == job.id).values(status="running", attempt=1))
        return stale_snapshot

    queue.repository.find_oldest_queued = find_then_lose_race

    assert queue.run_once() is None
    assert queue.active_job_ids == set()
    assert calls == []
    assert queue.get_job_errors(job.id) == []
    assert [entry.level for entry in queue.get_job_logs(job.id)] == ["info"]


def test_stop_during_claim_hands_job_back(queue, repository, source):
    job = queue.enqueue_job(source.id, "full", "user-1")
    calls = []
    queue.register_processor(lambda handle, token: calls.append(token.cancelled))

    real_claim = repository.claim

    def claim_then_stop(job_id, *, started_at):
        affected = real_claim(job_id, started_at=started_at)
        queue.stop()
        return affected

    queue.repository.claim = claim_then_stop

    assert queue.run_once() is None
    assert queue.active_job_ids == set()
    assert queue.in_flight == 0
    assert calls == []
    stored = repository.get_job(job.id)
    assert stored.status == "queued"
    assert stored.started_at is None
    assert stored.error_count == 0

    # The next cycle picks it up under a fresh claim
    queue.repository.claim = real_claim
    assert queue.run_once() is not None
    assert queue.wait_for_idle(timeout=5)
    stored = repository.get_job(job.id)
    assert stored.status == "success"
    assert stored.attempt == 2
    assert calls == [False]
