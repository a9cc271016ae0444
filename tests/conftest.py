import threading
import time
import pytest
from pubworker.core.interfaces import IJobRunner
from pubworker.core.models import JobDescription
from pubworker.core.protocol import encode_job
from pubworker.client.pubsub import PubSub
from pubworker.client.transport import LocalTransport
from pubworker.server.orchestrator import Orchestrator


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    raise AssertionError("condition not met within timeout")


def job_payload(job_class="demo.job", *args, **kwargs) -> bytes:
    return encode_job(
        JobDescription(job_class=job_class, arguments=list(args), keyword_arguments=kwargs)
    )


class FakeMessage:
    """Stands in for a ReceivedMessage and records every transport call."""

    def __init__(self, message_id="m-1", data=None):
        self.message_id = message_id
        self.data = data if data is not None else job_payload()
        self.attributes = {}
        self.events = []
        self.deadline_calls = []
        self._lock = threading.Lock()

    def acknowledge(self):
        with self._lock:
            self.events.append("ack")

    def reject(self):
        with self._lock:
            self.events.append("reject")

    def modify_ack_deadline(self, seconds):
        with self._lock:
            self.deadline_calls.append(seconds)
            self.events.append("extend")

    @property
    def acknowledged(self):
        return self.events.count("ack")

    @property
    def rejected(self):
        return self.events.count("reject")


class RecordingRunner(IJobRunner):
    def __init__(self, action=None):
        self.jobs = []
        self.action = action

    def execute(self, job):
        self.jobs.append(job)
        if self.action is not None:
            self.action(job)


@pytest.fixture
def orchestrator():
    return Orchestrator()


@pytest.fixture
def pubsub(orchestrator):
    client = PubSub(LocalTransport(orchestrator))
    yield client
    client.close()
