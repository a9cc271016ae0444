import pytest
from pubworker.client.pubsub import PubSub
from pubworker.client.transport import LocalTransport
from pubworker.worker import run
from pubworker.worker.jobs import JobRegistry

registry = JobRegistry()
not_a_runner = object()


def test_load_runner_imports_module_attribute():
    assert run.load_runner("test_run:registry") is registry


@pytest.mark.parametrize("path", ["test_run", "test_run:", ":registry"])
def test_load_runner_requires_module_and_attribute(path):
    with pytest.raises(ValueError):
        run.load_runner(path)


def test_load_runner_rejects_non_runners():
    with pytest.raises(TypeError):
        run.load_runner("test_run:not_a_runner")


def test_ensure_subscription_flag(monkeypatch, orchestrator):
    monkeypatch.setattr(run, "PubSub", lambda url: PubSub(LocalTransport(orchestrator)))

    assert run.main(["--ensure-subscription", "--queue", "mail", "--broker", "http://broker"]) == 0
    assert orchestrator.get_subscription("activejob-worker-mail").topic == "activejob-queue-mail"


def test_jobs_flag_is_required(monkeypatch, orchestrator):
    monkeypatch.setattr(run, "PubSub", lambda url: PubSub(LocalTransport(orchestrator)))
    with pytest.raises(SystemExit):
        run.main([])


def test_cloud_pubsub_is_used_without_broker(monkeypatch, orchestrator):
    projects = []

    def cloud(project=None):
        projects.append(project)
        return PubSub(LocalTransport(orchestrator))

    monkeypatch.setattr(run, "CloudPubSub", cloud)
    monkeypatch.setattr(run, "PubSub", lambda url: pytest.fail("bundled broker used"))

    assert run.main(["--ensure-subscription", "--project", "acme"]) == 0
    assert projects == ["acme"]
    assert orchestrator.get_subscription("activejob-worker-default")
