"""A fixed pool of worker threads and groups of jobs run on it."""

from __future__ import annotations

import queue
import threading
from functools import partial
from typing import Callable


class JobRunner:
    """Runs submitted jobs on a fixed number of worker threads."""

    def __init__(self, workers: int = 10) -> None:
        if workers < 1:
            raise ValueError("a job runner needs at least one worker")
        self._queue: queue.Queue[Callable[[], None] | None] = queue.Queue()
        self._closed = False
        self._threads = [
            threading.Thread(target=self._work, daemon=True) for _ in range(workers)
        ]
        for thread in self._threads:
            thread.start()

    def _work(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                return
            job()

    def _submit(self, job: Callable[[], None]) -> None:
        if self._closed:
            raise RuntimeError("job runner is closed")
        self._queue.put(job)

    def group(self) -> JobGroup:
        return JobGroup(self)

    def close(self) -> None:
        """Stop the workers once the queued jobs are done."""
        if self._closed:
            return
        self._closed = True
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> JobRunner:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class JobGroup:
    """A set of jobs that can be waited for together."""

    def __init__(self, runner: JobRunner) -> None:
        self._runner = runner
        self._cond = threading.Condition()
        self._pending = 0
        self._error: BaseException | None = None

    def dispatch(self, fn: Callable[[], object]) -> None:
        with self._cond:
            self._pending += 1
        try:
            self._runner._submit(partial(self._run, fn))
        except BaseException:
            self._done()
            raise

    def _run(self, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception as exc:
            with self._cond:
                self._error = exc
        finally:
            self._done()

    def _done(self) -> None:
        with self._cond:
            self._pending -= 1
            self._cond.notify_all()

    def finish(self) -> None:
        """Wait for every dispatched job; re-raise the last error seen."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending == 0)
            error = self._error
        if error is not None:
            raise error