import time
import pytest
from pubworker.core.errors import AlreadyExistsError, NotFoundError
from pubworker.server.orchestrator import Orchestrator


@pytest.fixture
def broker():
    orch = Orchestrator()
    orch.create_topic("jobs")
    orch.create_subscription("workers", "jobs", ack_deadline_seconds=1)
    return orch


def test_publish_fans_out_to_every_subscription(broker):
    broker.create_subscription("audit", "jobs", ack_deadline_seconds=30)
    message_id = broker.publish("jobs", b"payload", {"kind": "test"})

    for name in ("workers", "audit"):
        [lease] = broker.pull(name, 10)
        assert lease.message.message_id == message_id
        assert lease.message.data == b"payload"
        assert lease.message.attributes == {"kind": "test"}


def test_messages_before_subscription_are_not_retained(broker):
    broker.publish("jobs", b"early")
    broker.create_subscription("late", "jobs")
    assert broker.pull("late", 10) == []


def test_acknowledged_message_is_gone(broker):
    broker.publish("jobs", b"a")
    [lease] = broker.pull("workers")
    broker.acknowledge("workers", [lease.ack_id])

    time.sleep(1.1)
    assert broker.pull("workers", 10) == []


def test_expired_lease_is_redelivered_with_same_message_id(broker):
    message_id = broker.publish("jobs", b"a")
    [first] = broker.pull("workers")
    assert broker.pull("workers") == []

    time.sleep(1.1)
    [second] = broker.pull("workers")
    assert second.message.message_id == message_id
    assert second.ack_id != first.ack_id
    assert second.delivery_attempt == 2


def test_zero_deadline_hands_message_back(broker):
    broker.publish("jobs", b"a")
    [lease] = broker.pull("workers")
    broker.modify_ack_deadline("workers", [lease.ack_id], 0)

    [again] = broker.pull("workers")
    assert again.message.message_id == lease.message.message_id


def test_extended_lease_is_not_redelivered(broker):
    broker.publish("jobs", b"a")
    [lease] = broker.pull("workers")
    time.sleep(0.6)
    broker.modify_ack_deadline("workers", [lease.ack_id], 5)
    time.sleep(0.6)
    assert broker.pull("workers") == []


def test_reaper_returns_expired_leases(broker):
    broker.publish("jobs", b"a")
    broker.pull("workers")
    time.sleep(1.1)
    assert broker.reap_expired() == 1
    assert broker.storage.backlog_size("workers") == 1


def test_pull_respects_max_messages(broker):
    for i in range(5):
        broker.publish("jobs", str(i).encode())
    assert [l.message.data for l in broker.pull("workers", 3)] == [b"0", b"1", b"2"]
    assert len(broker.pull("workers", 10)) == 2


def test_errors(broker):
    with pytest.raises(AlreadyExistsError):
        broker.create_topic("jobs")
    with pytest.raises(AlreadyExistsError):
        broker.create_subscription("workers", "jobs")
    with pytest.raises(NotFoundError):
        broker.publish("missing", b"a")
    with pytest.raises(NotFoundError):
        broker.create_subscription("s", "missing")
    with pytest.raises(NotFoundError):
        broker.pull("missing")
    with pytest.raises(ValueError):
        broker.create_subscription("too-long", "jobs", ack_deadline_seconds=601)
    with pytest.raises(ValueError):
        broker.modify_ack_deadline("workers", [], -1)
