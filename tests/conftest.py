import pytest

from offmark import create_app
from offmark.config import TestConfig
from offmark.extensions import db
from offmark.services.engine import build_engine


class FakeRemote:
    def __init__(self):
        self.reachable = True
        self.health_checks = 0
        self.created = []
        self.deleted = []
        self.failures = {}
        self.delete_error = None
        self.labels = []
        self.bookmarks = []

    def health_check(self):
        self.health_checks += 1
        return self.reachable

    def create_record(self, url, title="", tags=None):
        if url in self.failures:
            raise self.failures[url]
        self.created.append((url, title, list(tags or [])))
        return f"remote-{len(self.created)}"

    def delete_record(self, record_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(record_id)

    def list_labels(self):
        return list(self.labels)

    def list_bookmarks(self):
        return list(self.bookmarks)


class ManualTaskRunner:
    def __init__(self):
        self.jobs = {}
        self._counter = 0

    def schedule(self, delay_seconds, func, *args):
        self._counter += 1
        job_id = f"job-{self._counter}"
        self.jobs[job_id] = (delay_seconds, func, args)
        return job_id

    def cancel(self, job_id):
        return self.jobs.pop(job_id, None) is not None

    def run_all(self):
        for job_id in list(self.jobs):
            job = self.jobs.pop(job_id, None)
            if job is None:
                continue
            _delay, func, args = job
            func(*args)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def tasks():
    return ManualTaskRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(app, remote, tasks, clock):
    return build_engine(app, remote=remote, tasks=tasks, clock=clock)


@pytest.fixture
def client(app, engine):
    return app.test_client()
