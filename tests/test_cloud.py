import threading
from concurrent.futures import Future
from types import SimpleNamespace
import pytest
from google.api_core import exceptions as api_exceptions
from pubworker.core.models import WorkerState
from pubworker.core.protocol import decode_job
from pubworker.client import cloud
from pubworker.client.cloud import CloudPubSub, CloudReceivedMessage, project_from_env
from pubworker.client.producer import JobPublisher
from pubworker.worker.jobs import JobRegistry
from pubworker.worker.runner import Worker
from conftest import job_payload, wait_until


class FakePublisher:
    def __init__(self):
        self.topics = set()
        self.published = []

    def topic_path(self, project, topic):
        return f"projects/{project}/topics/{topic}"

    def get_topic(self, request):
        if request["topic"] not in self.topics:
            raise api_exceptions.NotFound("Resource not found")
        return SimpleNamespace(name=request["topic"])

    def create_topic(self, request):
        if request["name"] in self.topics:
            raise api_exceptions.AlreadyExists("Resource already exists")
        self.topics.add(request["name"])
        return SimpleNamespace(name=request["name"])

    def publish(self, topic, data, **attributes):
        self.published.append((topic, data, attributes))
        future = Future()
        future.set_result(f"msg-{len(self.published)}")
        return future


class FakeStream(Future):
    """Streaming pull future; cancel() waits for running callbacks."""

    def __init__(self, path, callback, options):
        super().__init__()
        self.path = path
        self.callback = callback
        self.options = options
        self.cancel_calls = 0
        self._callbacks = []

    def deliver(self, message):
        thread = threading.Thread(target=self.callback, args=(message,), daemon=True)
        self._callbacks.append(thread)
        thread.start()
        return thread

    def cancel(self):
        self.cancel_calls += 1
        for thread in self._callbacks:
            thread.join(5)
        if not self.done():
            self.set_result(True)
        return True


class FakeSubscriber:
    def __init__(self):
        self.subscriptions = {}
        self.streams = []
        self.closed = False

    def subscription_path(self, project, subscription):
        return f"projects/{project}/subscriptions/{subscription}"

    def get_subscription(self, request):
        try:
            return self.subscriptions[request["subscription"]]
        except KeyError:
            raise api_exceptions.NotFound("Resource not found")

    def create_subscription(self, request):
        if request["name"] in self.subscriptions:
            raise api_exceptions.AlreadyExists("Resource already exists")
        created = SimpleNamespace(**request)
        self.subscriptions[request["name"]] = created
        return created

    def subscribe(self, subscription, callback, **options):
        stream = FakeStream(subscription, callback, options)
        self.streams.append(stream)
        return stream

    def close(self):
        self.closed = True


class FakeCloudMessage:
    def __init__(self, message_id="m-1", data=None, delivery_attempt=None):
        self.message_id = message_id
        self.data = data if data is not None else job_payload()
        self.attributes = {"origin": "test"}
        self.publish_time = None
        self.delivery_attempt = delivery_attempt
        self.events = []

    def ack(self):
        self.events.append("ack")

    def nack(self):
        self.events.append("nack")

    def modify_ack_deadline(self, seconds):
        self.events.append(f"extend:{seconds}")


@pytest.fixture
def clients():
    return FakePublisher(), FakeSubscriber()


@pytest.fixture
def cloud_pubsub(clients):
    publisher, subscriber = clients
    return CloudPubSub(project="acme", publisher=publisher, subscriber=subscriber)


def test_subscription_for_creates_topic_and_subscription(cloud_pubsub, clients):
    publisher, subscriber = clients

    subscription = cloud_pubsub.subscription_for("mail", deadline=30)

    assert subscription.name == "activejob-worker-mail"
    assert subscription.deadline == 30
    assert subscription.path == "projects/acme/subscriptions/activejob-worker-mail"
    assert publisher.topics == {"projects/acme/topics/activejob-queue-mail"}
    created = subscriber.subscriptions[subscription.path]
    assert created.topic == "projects/acme/topics/activejob-queue-mail"

    again = cloud_pubsub.subscription_for("mail")
    assert again.name == subscription.name
    assert again.deadline == 30
    assert len(subscriber.subscriptions) == 1


def test_missing_resources_are_none(cloud_pubsub):
    assert cloud_pubsub.topic("nope") is None
    assert cloud_pubsub.subscription("nope") is None


def test_job_publisher_publishes_to_queue_topic(cloud_pubsub, clients):
    publisher, _ = clients

    job = JobPublisher(cloud_pubsub).enqueue("demo.job", 1, queue="mail")

    assert job.provider_job_id == "msg-1"
    topic, data, _ = publisher.published[0]
    assert topic == "projects/acme/topics/activejob-queue-mail"
    assert decode_job(data).arguments == [1]


def test_received_message_maps_onto_client_library():
    raw = FakeCloudMessage("A", b"payload")
    message = CloudReceivedMessage(raw)

    message.modify_ack_deadline(60)
    message.acknowledge()
    message.reject()

    assert raw.events == ["extend:60", "ack", "nack"]
    assert message.message_id == "A"
    assert message.data == b"payload"
    assert message.attributes == {"origin": "test"}
    assert message.delivery_attempt == 1


def test_worker_runs_jobs_from_cloud_stream(cloud_pubsub, clients):
    _, subscriber = clients
    jobs = JobRegistry()
    results = []
    message = FakeCloudMessage("A", job_payload("math.add", 1, 2))

    @jobs.register(name="math.add")
    def add(a, b):
        wait_until(lambda: "extend:60" in message.events)
        results.append(a + b)

    worker = Worker(queue="default", pubsub=cloud_pubsub, runner=jobs, poll_interval=0.05)
    thread = threading.Thread(target=worker.run, daemon=True)
    thread.start()
    wait_until(lambda: worker.state is WorkerState.RUNNING)

    stream = subscriber.streams[0]
    assert stream.path == "projects/acme/subscriptions/activejob-worker-default"
    assert stream.options["flow_control"].max_messages == 1
    assert stream.options["await_callbacks_on_shutdown"] is True

    stream.deliver(message).join(5)
    duplicate = FakeCloudMessage("A", job_payload("math.add", 1, 2))
    stream.deliver(duplicate).join(5)

    worker.request_shutdown()
    thread.join(5)
    assert not thread.is_alive()
    assert worker.state is WorkerState.STOPPED

    assert results == [3]
    assert message.events[0] == "extend:60"
    assert message.events[-1] == "ack"
    assert duplicate.events == []
    assert stream.cancel_calls == 1


def test_stream_failure_is_reported(cloud_pubsub):
    errors = []
    subscriber = cloud_pubsub.subscription_for("q").listen(lambda message: None)
    subscriber.on_error(errors.append)
    subscriber.start()

    subscriber._futures[0].set_exception(RuntimeError("stream broke"))

    assert [str(e) for e in errors] == ["stream broke"]
    assert subscriber.stop().wait(1) is True


def test_callback_error_is_reported(cloud_pubsub, clients):
    _, fake = clients
    errors = []

    def fail(message):
        raise ValueError(f"cannot handle {message.message_id}")

    subscriber = cloud_pubsub.subscription_for("q").listen(fail, streams=2, callback_threads=3)
    subscriber.on_error(errors.append)
    subscriber.start()

    assert len(fake.streams) == 2
    assert fake.streams[1].options["flow_control"].max_messages == 3
    fake.streams[1].deliver(FakeCloudMessage("B")).join(5)

    assert [str(e) for e in errors] == ["cannot handle B"]
    assert subscriber.stop().wait(1) is True


def test_worker_defaults_to_cloud_pubsub(monkeypatch):
    monkeypatch.setenv("PUBSUB_PROJECT_ID", "acme")
    monkeypatch.setattr(cloud.pubsub_v1, "PublisherClient", FakePublisher)
    monkeypatch.setattr(cloud.pubsub_v1, "SubscriberClient", FakeSubscriber)

    worker = Worker(runner=JobRegistry())

    assert isinstance(worker.pubsub, CloudPubSub)
    assert worker.pubsub.project == "acme"


def test_project_from_env(monkeypatch):
    for name in ("PUBSUB_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "PUBSUB_EMULATOR_HOST"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValueError):
        project_from_env()

    monkeypatch.setenv("PUBSUB_EMULATOR_HOST", "localhost:8681")
    assert project_from_env() == "emulator-project"

    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "acme")
    assert project_from_env() == "acme"
