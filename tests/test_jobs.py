import threading

import pytest

from registrygc.jobs import JobRunner


@pytest.fixture
def runner():
    r = JobRunner(4)
    yield r
    r.close()


def test_all_jobs_run(runner):
    results = []
    lock = threading.Lock()

    def job(i):
        with lock:
            results.append(i)

    group = runner.group()
    for i in range(20):
        group.dispatch(lambda i=i: job(i))
    outcome = group.finish()
    assert outcome is None
    assert sorted(results) == list(range(20))


def test_finish_raises_job_error(runner):
    group = runner.group()

    def fail():
        raise ValueError("boom")

    group.dispatch(lambda: None)
    group.dispatch(fail)
    with pytest.raises(ValueError, match="boom"):
        group.finish()


def test_jobs_run_concurrently():
    barrier = threading.Barrier(2, timeout=5)
    passed = []
    with JobRunner(2) as r:
        group = r.group()
        for _ in range(2):
            group.dispatch(lambda: passed.append(barrier.wait()))
        outcome = group.finish()
    assert outcome is None
    assert sorted(passed) == [0, 1]


def test_needs_a_worker():
    with pytest.raises(ValueError):
        JobRunner(0)


def test_dispatch_after_close():
    r = JobRunner(1)
    r.close()
    group = r.group()
    with pytest.raises(RuntimeError):
        group.dispatch(lambda: None)